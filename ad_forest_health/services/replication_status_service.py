"""
Replication Status Service

Aggregates the replication health of a forest into report rows:

1. resolve the domain controllers in scope,
2. query each DC in turn for its replication partner metadata,
3. turn every partner record into a row (addresses resolved best effort),
4. turn every DC whose query failed into a placeholder row.

Rows for successful links come first, followed by one placeholder row per
failed DC in the order the failures were recorded.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional, Protocol, Tuple

import structlog

from ..config_manager import ADForestHealthConfig, ReplicationScanConfig
from ..exceptions import DCQueryError, wrap_ldap_exception
from ..models.replication_models import (
    LOOPBACK_IPV4,
    UNKNOWN_PARTNER,
    AnyReplicationRow,
    DomainController,
    ExtendedReplicationReportRow,
    QueryFailure,
    QueryOutcome,
    ReplicationPartnerMetadata,
    ReplicationReportRow,
    ResolvedAddress,
)
from .address_resolver import DnsAddressResolver
from .forest_scope_service import ForestScopeService
from .replication_query_service import LdapReplicationQueryService

logger = logging.getLogger(__name__)
events = structlog.get_logger(__name__)

STATUS_MESSAGE_TEMPLATE = (
    "Last successful replication time was {success}, Consecutive Failures: {failures}"
)

# Metadata fields copied verbatim onto every success row
_COPIED_FIELDS = (
    "last_replication_attempt",
    "last_replication_result",
    "last_replication_success",
    "consecutive_replication_failures",
    "last_change_usn",
    "partner_type",
    "partition",
    "two_way_sync",
    "scheduled_sync",
    "sync_on_startup",
    "compress_changes",
    "disable_scheduled_sync",
    "ignore_change_notifications",
    "intersite_transport",
    "intersite_transport_guid",
    "intersite_transport_type",
    "usn_filter",
    "writable",
)

_EXTENDED_FIELDS = (
    "partner",
    "partner_address",
    "partner_guid",
    "partner_invocation_id",
    "partition_guid",
)


class ScopeResolver(Protocol):
    def resolve(
        self,
        forest: Optional[str] = None,
        include_domains: Optional[List[str]] = None,
        exclude_domains: Optional[List[str]] = None,
        include_domain_controllers: Optional[List[str]] = None,
        exclude_domain_controllers: Optional[List[str]] = None,
        skip_rodc: bool = False,
        forest_options: Optional[dict] = None,
    ) -> List[DomainController]: ...


class ReplicationQuery(Protocol):
    def query(
        self, dc: DomainController, partition_filter: str = "*"
    ) -> List[ReplicationPartnerMetadata]: ...


class AddressResolver(Protocol):
    def resolve(self, name: Optional[str]) -> ResolvedAddress: ...


def replication_succeeded(last_replication_result: Optional[int]) -> bool:
    """Only a result code of exactly 0 means the last replication succeeded."""
    return last_replication_result == 0


def _render(value: Any) -> str:
    return "" if value is None else str(value)


def format_status_message(
    last_replication_success: Optional[datetime],
    consecutive_replication_failures: Optional[int],
) -> str:
    return STATUS_MESSAGE_TEMPLATE.format(
        success=_render(last_replication_success),
        failures=_render(consecutive_replication_failures),
    )


class ReplicationStatusService:
    """
    Service producing forest replication report rows.

    Collaborators are injected so that the LDAP and DNS backed implementations
    can be replaced, and mocked in tests. The scan is sequential: one DC is
    queried at a time, in scope order.
    """

    def __init__(
        self,
        scope_resolver: ScopeResolver,
        replication_query: ReplicationQuery,
        address_resolver: AddressResolver,
    ) -> None:
        """
        Initialize the Replication Status Service.

        Args:
            scope_resolver: Enumerates the domain controllers of a forest
            replication_query: Reads replication partner metadata from one DC
            address_resolver: Best-effort host name to IPv4 resolution
        """
        self.scope_resolver = scope_resolver
        self.replication_query = replication_query
        self.address_resolver = address_resolver

    def get_forest_replication(
        self,
        scan: ReplicationScanConfig,
        failures: Optional[List[QueryFailure]] = None,
    ) -> List[AnyReplicationRow]:
        """
        Scan a forest and return its replication report rows.

        Args:
            scan: Scope, output variant and resolver options of the scan
            failures: Optional caller-owned list receiving the failed DCs

        Returns:
            Success rows in scope and partner order, then one placeholder row
            per failed DC

        Raises:
            ScopeResolutionError: If the domain controllers cannot be enumerated
        """
        domain_controllers = self.scope_resolver.resolve(
            forest=scan.forest,
            include_domains=scan.include_domains,
            exclude_domains=scan.exclude_domains,
            include_domain_controllers=scan.include_domain_controllers,
            exclude_domain_controllers=scan.exclude_domain_controllers,
            skip_rodc=scan.skip_rodc,
            forest_options=scan.forest_options,
        )
        logger.info(
            f"🔍 Querying replication metadata on {len(domain_controllers)} domain controllers"
        )

        outcomes = self.query_domain_controllers(
            domain_controllers, scan.partition_filter
        )
        records, failed = self.split_outcomes(outcomes)
        if failures is not None:
            failures.extend(failed)

        rows: List[AnyReplicationRow] = [
            self.build_success_row(record, scan.extended) for record in records
        ]
        rows.extend(self.build_failure_row(failure, scan.extended) for failure in failed)

        events.info(
            "replication.scan",
            forest=scan.forest,
            domain_controllers=len(domain_controllers),
            links=len(records),
            failed_domain_controllers=len(failed),
            unhealthy_links=sum(1 for row in rows[: len(records)] if not row.status),
            extended=scan.extended,
        )
        logger.info(
            f"✅ Replication scan complete: {len(records)} links, {len(failed)} unreachable domain controllers"
        )
        return rows

    def query_domain_controllers(
        self, domain_controllers: List[DomainController], partition_filter: str = "*"
    ) -> List[QueryOutcome]:
        return [
            self.query_domain_controller(dc, partition_filter)
            for dc in domain_controllers
        ]

    def query_domain_controller(
        self, dc: DomainController, partition_filter: str = "*"
    ) -> QueryOutcome:
        """Query one DC, capturing a failed query as a QueryFailure."""
        try:
            records = self.replication_query.query(dc, partition_filter=partition_filter)
        except DCQueryError as exc:
            return self._failed_outcome(dc, exc)
        except (OSError, TimeoutError) as exc:
            return self._failed_outcome(
                dc, wrap_ldap_exception(exc, server=dc.host_name)
            )
        return QueryOutcome(domain_controller=dc, records=list(records))

    @staticmethod
    def _failed_outcome(dc: DomainController, error: DCQueryError) -> QueryOutcome:
        logger.warning(
            f"⚠️  Replication query failed on {error.server}: {error.message}"
        )
        return QueryOutcome(
            domain_controller=dc,
            failure=QueryFailure(server=error.server, status_message=error.message),
        )

    @staticmethod
    def split_outcomes(
        outcomes: List[QueryOutcome],
    ) -> Tuple[List[ReplicationPartnerMetadata], List[QueryFailure]]:
        records: List[ReplicationPartnerMetadata] = []
        failures: List[QueryFailure] = []
        for outcome in outcomes:
            if outcome.failure is not None:
                failures.append(outcome.failure)
            else:
                records.extend(outcome.records)
        return records, failures

    def build_success_row(
        self, record: ReplicationPartnerMetadata, extended: bool = False
    ) -> AnyReplicationRow:
        """Normalize one partner record into a report row."""
        initiating = self.address_resolver.resolve(record.server)
        partner = self.address_resolver.resolve(record.partner_address)

        values = {name: getattr(record, name) for name in _COPIED_FIELDS}
        values.update(
            server=record.server,
            server_ipv4=initiating.ipv4,
            server_partner=partner.host_name,
            server_partner_ipv4=partner.ipv4,
            status=replication_succeeded(record.last_replication_result),
            status_message=format_status_message(
                record.last_replication_success,
                record.consecutive_replication_failures,
            ),
        )
        if extended:
            values.update({name: getattr(record, name) for name in _EXTENDED_FIELDS})
            return ExtendedReplicationReportRow(**values)
        return ReplicationReportRow(**values)

    def build_failure_row(
        self, failure: QueryFailure, extended: bool = False
    ) -> AnyReplicationRow:
        """Build the placeholder row for a DC whose query failed."""
        if failure.server is not None:
            server_ipv4 = self.address_resolver.resolve(failure.server).ipv4
        else:
            server_ipv4 = LOOPBACK_IPV4

        values = dict(
            server=failure.server,
            server_ipv4=server_ipv4,
            server_partner=UNKNOWN_PARTNER,
            server_partner_ipv4=LOOPBACK_IPV4,
            status=False,
            status_message=failure.status_message,
        )
        if extended:
            return ExtendedReplicationReportRow(**values)
        return ReplicationReportRow(**values)


def create_replication_status_service(
    config: ADForestHealthConfig,
    scope_resolver: Optional[ScopeResolver] = None,
    replication_query: Optional[ReplicationQuery] = None,
    address_resolver: Optional[AddressResolver] = None,
) -> ReplicationStatusService:
    """
    Factory function to create a Replication Status Service.

    Args:
        config: Configuration object
        scope_resolver: Optional scope resolver (defaults to ForestScopeService)
        replication_query: Optional query (defaults to LdapReplicationQueryService)
        address_resolver: Optional resolver (defaults to DnsAddressResolver)

    Returns:
        ReplicationStatusService: Configured service instance
    """
    return ReplicationStatusService(
        scope_resolver or ForestScopeService(config.ldap),
        replication_query or LdapReplicationQueryService(config.ldap),
        address_resolver or DnsAddressResolver(config.dns),
    )
