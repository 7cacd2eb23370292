"""
Replication Query Service

Reads inbound replication neighbor metadata from a single domain controller
over LDAP. Each naming context hosted by the DC exposes the constructed
attribute msDS-NCReplInboundNeighbors, one DS_REPL_NEIGHBOR XML document per
source partner.
"""

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ldap3 import BASE
from ldap3.core.exceptions import LDAPException

from ..config_manager import LdapConfig
from ..exceptions import DCQueryError, QueryDeniedError, wrap_ldap_exception
from ..models.replication_models import DomainController, ReplicationPartnerMetadata
from .ldap_connection import create_ldap_connection

logger = logging.getLogger(__name__)

REPL_NEIGHBORS_ATTRIBUTE = "msDS-NCReplInboundNeighbors"
ALL_PARTITIONS = "*"

# DS_REPL_NEIGHBOR replica flags
DS_REPL_NBR_WRITEABLE = 0x00000010
DS_REPL_NBR_SYNC_ON_STARTUP = 0x00000020
DS_REPL_NBR_DO_SCHEDULED_SYNCS = 0x00000040
DS_REPL_NBR_TWO_WAY_SYNC = 0x00000200
DS_REPL_NBR_IGNORE_CHANGE_NOTIFICATIONS = 0x04000000
DS_REPL_NBR_DISABLE_SCHEDULED_SYNC = 0x08000000
DS_REPL_NBR_COMPRESS_CHANGES = 0x10000000

NULL_GUID = "00000000-0000-0000-0000-000000000000"
# FILETIME zero, reported before the first sync attempt
NEVER = datetime(1601, 1, 1, tzinfo=timezone.utc)

# LDAP result codes answered by a reachable DC that refuses the read
_DENIED_RESULTS = {49, 50}
_NO_SUCH_OBJECT = 32


def _text(node: ET.Element, tag: str) -> Optional[str]:
    child = node.find(tag)
    if child is None or child.text is None:
        return None
    value = child.text.strip()
    return value or None


def _int(node: ET.Element, tag: str) -> Optional[int]:
    value = _text(node, tag)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _guid(node: ET.Element, tag: str) -> Optional[str]:
    value = _text(node, tag)
    if value is None or value == NULL_GUID:
        return None
    return value.lower()


def _filetime(node: ET.Element, tag: str) -> Optional[datetime]:
    value = _text(node, tag)
    if value is None:
        return None
    try:
        parsed = datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(
            tzinfo=timezone.utc
        )
    except ValueError:
        return None
    if parsed <= NEVER:
        return None
    return parsed


def transport_type_from_dn(transport_dn: Optional[str]) -> str:
    """Derive the intersite transport type from its DN; intrasite links use RPC."""
    if not transport_dn:
        return "RPC"
    first = transport_dn.split(",", 1)[0]
    if first.upper().startswith("CN="):
        return first[3:].upper()
    return "RPC"


def parse_replication_neighbor(
    document: str, server: str
) -> ReplicationPartnerMetadata:
    """
    Parse one DS_REPL_NEIGHBOR XML document into partner metadata.

    Args:
        document: XML value of msDS-NCReplInboundNeighbors
        server: Host name of the DC the value was read from

    Returns:
        ReplicationPartnerMetadata for the inbound link

    Raises:
        ValueError: If the document is not a DS_REPL_NEIGHBOR element
    """
    try:
        node = ET.fromstring(document)
    except ET.ParseError as exc:
        raise ValueError(f"Malformed replication neighbor document: {exc}") from exc
    if node.tag != "DS_REPL_NEIGHBOR":
        raise ValueError(f"Unexpected replication neighbor element: {node.tag}")

    flags = _int(node, "dwReplicaFlags") or 0
    transport_dn = _text(node, "pszAsyncIntersiteTransportDN")

    return ReplicationPartnerMetadata(
        server=server,
        partition=_text(node, "pszNamingContext"),
        partner=_text(node, "pszSourceDsaDN"),
        partner_address=_text(node, "pszSourceDsaAddress"),
        partner_guid=_guid(node, "uuidSourceDsaObjGuid"),
        partner_invocation_id=_guid(node, "uuidSourceDsaInvocationID"),
        partner_type="Inbound",
        partition_guid=_guid(node, "uuidNamingContextObjGuid"),
        last_replication_attempt=_filetime(node, "ftimeLastSyncAttempt"),
        last_replication_result=_int(node, "dwLastSyncResult"),
        last_replication_success=_filetime(node, "ftimeLastSyncSuccess"),
        consecutive_replication_failures=_int(node, "cNumConsecutiveSyncFailures"),
        last_change_usn=_int(node, "usnLastObjChangeSynced"),
        two_way_sync=bool(flags & DS_REPL_NBR_TWO_WAY_SYNC),
        scheduled_sync=bool(flags & DS_REPL_NBR_DO_SCHEDULED_SYNCS),
        sync_on_startup=bool(flags & DS_REPL_NBR_SYNC_ON_STARTUP),
        compress_changes=bool(flags & DS_REPL_NBR_COMPRESS_CHANGES),
        disable_scheduled_sync=bool(flags & DS_REPL_NBR_DISABLE_SCHEDULED_SYNC),
        ignore_change_notifications=bool(
            flags & DS_REPL_NBR_IGNORE_CHANGE_NOTIFICATIONS
        ),
        intersite_transport=transport_dn,
        intersite_transport_guid=_guid(node, "uuidAsyncIntersiteTransportObjGuid"),
        intersite_transport_type=transport_type_from_dn(transport_dn),
        usn_filter=_int(node, "usnAttributeFilter"),
        writable=bool(flags & DS_REPL_NBR_WRITEABLE),
    )


class LdapReplicationQueryService:
    """
    Queries one domain controller for its inbound replication partners.

    One LDAP connection is opened per query and unbound before returning.
    Failures surface as DCQueryError subclasses attributed to the DC.
    """

    def __init__(
        self,
        config: Optional[LdapConfig] = None,
        connection_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        """
        Args:
            config: LDAP connection settings
            connection_factory: Optional factory returning a bound ldap3
                Connection for a host name (for testing)
        """
        self.config = config or LdapConfig()
        self.connection_factory = connection_factory or self._connect

    def _connect(self, host_name: str) -> Any:
        return create_ldap_connection(self.config, host_name)

    def query(
        self, dc: DomainController, partition_filter: str = ALL_PARTITIONS
    ) -> List[ReplicationPartnerMetadata]:
        """
        Read inbound replication metadata for every partition hosted by a DC.

        Args:
            dc: Domain controller to query
            partition_filter: "*" for every naming context, or one naming context DN

        Returns:
            One ReplicationPartnerMetadata per (partition, partner); may be empty

        Raises:
            DCQueryError: If the DC cannot be contacted or refuses the query
        """
        logger.debug(f"Querying replication metadata on {dc.host_name}")
        connection = None
        try:
            connection = self.connection_factory(dc.host_name)
            records: List[ReplicationPartnerMetadata] = []
            for naming_context in self._naming_contexts(connection, partition_filter):
                records.extend(
                    self._query_naming_context(connection, dc.host_name, naming_context)
                )
            logger.debug(
                f"Read {len(records)} replication links from {dc.host_name}"
            )
            return records
        except DCQueryError:
            raise
        except (LDAPException, OSError) as exc:
            raise wrap_ldap_exception(exc, server=dc.host_name) from exc
        finally:
            if connection is not None:
                try:
                    connection.unbind()
                except LDAPException as exc:
                    logger.debug(f"Unbind from {dc.host_name} failed: {exc}")

    def _naming_contexts(self, connection: Any, partition_filter: str) -> List[str]:
        info = getattr(connection.server, "info", None)
        naming_contexts = [str(nc) for nc in (getattr(info, "naming_contexts", None) or [])]
        if partition_filter == ALL_PARTITIONS:
            return naming_contexts
        wanted = partition_filter.strip().lower()
        return [nc for nc in naming_contexts if nc.lower() == wanted]

    def _query_naming_context(
        self, connection: Any, host_name: str, naming_context: str
    ) -> List[ReplicationPartnerMetadata]:
        found = connection.search(
            naming_context,
            "(objectClass=*)",
            search_scope=BASE,
            attributes=[REPL_NEIGHBORS_ATTRIBUTE],
        )
        if not found:
            result: Dict[str, Any] = connection.result or {}
            code = result.get("result", 0)
            if code in (0, _NO_SUCH_OBJECT):
                return []
            message = result.get("message") or result.get("description") or "query failed"
            if code in _DENIED_RESULTS:
                raise QueryDeniedError(
                    f"Access denied reading {naming_context}: {message}",
                    server=host_name,
                )
            raise DCQueryError(
                f"Replication query for {naming_context} failed: {message}",
                server=host_name,
            )

        records = []
        for entry in connection.response or []:
            if entry.get("type") != "searchResEntry":
                continue
            values = entry.get("attributes", {}).get(REPL_NEIGHBORS_ATTRIBUTE) or []
            if isinstance(values, (str, bytes)):
                values = [values]
            for value in values:
                if isinstance(value, bytes):
                    value = value.decode("utf-8", errors="replace")
                try:
                    records.append(parse_replication_neighbor(value, server=host_name))
                except ValueError as exc:
                    logger.warning(
                        f"⚠️  Skipping unreadable replication neighbor on {host_name} ({naming_context}): {exc}"
                    )
        return records
