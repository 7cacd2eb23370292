"""
Forest Scope Service

Enumerates the domains and domain controllers of an Active Directory forest
from its configuration partition and applies the include/exclude rules of a
scan. Without a scope there is nothing to scan, so every failure here is
raised as ScopeResolutionError.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from ldap3 import SUBTREE
from ldap3.core.exceptions import LDAPException

from ..config_manager import LdapConfig
from ..exceptions import ScopeResolutionError
from ..models.replication_models import DomainController
from ..models.scope_filter import ForestScopeFilter
from .ldap_connection import (
    create_ldap_connection,
    dn_components,
    first_value,
    parent_dn,
    rdn_value,
    root_dse_value,
)

logger = logging.getLogger(__name__)

# crossRef systemFlags bit marking a domain partition
FLAG_CR_NTDS_DOMAIN = 0x2
# nTDSDSA options bit marking a global catalog
NTDSDSA_OPT_IS_GC = 0x1

DEFAULT_PAGE_SIZE = 500


def select_domain_controllers(
    candidates: Iterable[DomainController], scope_filter: ForestScopeFilter
) -> List[DomainController]:
    """
    Apply inclusion, then exclusion, then the RODC rule to candidate DCs.

    Matching is case-insensitive on the domain DNS name, and on either the DC
    host name or its short name. Candidate order is preserved and duplicate
    host names are dropped (first occurrence wins).

    Args:
        candidates: Domain controllers in enumeration order
        scope_filter: Include/exclude rules

    Returns:
        Selected domain controllers
    """

    def _dc_names(dc: DomainController) -> set:
        return {dc.host_name.lower(), dc.name.lower()}

    selected: List[DomainController] = []
    seen = set()
    for dc in candidates:
        key = dc.host_name.lower()
        if key in seen:
            continue
        domain = dc.domain.lower()

        if scope_filter.include_domains and domain not in scope_filter.include_domains:
            logger.debug(f"Excluding {dc.host_name}: domain {domain} not included")
            continue
        if scope_filter.include_domain_controllers and not (
            _dc_names(dc) & set(scope_filter.include_domain_controllers)
        ):
            logger.debug(f"Excluding {dc.host_name}: not in included DCs")
            continue
        if domain in scope_filter.exclude_domains:
            logger.debug(f"Excluding {dc.host_name}: domain {domain} excluded")
            continue
        if _dc_names(dc) & set(scope_filter.exclude_domain_controllers):
            logger.debug(f"Excluding {dc.host_name}: DC excluded")
            continue
        if scope_filter.skip_rodc and dc.is_read_only:
            logger.debug(f"Excluding {dc.host_name}: read-only DC")
            continue

        seen.add(key)
        selected.append(dc)
    return selected


def _is_true(value: Any) -> bool:
    value = first_value(value)
    if isinstance(value, bool):
        return value
    return str(value).strip().upper() == "TRUE" if value is not None else False


def _as_int(value: Any) -> int:
    value = first_value(value)
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


class ForestScopeService:
    """Resolves the domain controllers of a forest over LDAP."""

    def __init__(
        self,
        config: Optional[LdapConfig] = None,
        connection_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.config = config or LdapConfig()
        self.connection_factory = connection_factory or self._connect

    def _connect(self, host_name: str) -> Any:
        return create_ldap_connection(self.config, host_name)

    def resolve(
        self,
        forest: Optional[str] = None,
        include_domains: Optional[List[str]] = None,
        exclude_domains: Optional[List[str]] = None,
        include_domain_controllers: Optional[List[str]] = None,
        exclude_domain_controllers: Optional[List[str]] = None,
        skip_rodc: bool = False,
        forest_options: Optional[Dict[str, Any]] = None,
    ) -> List[DomainController]:
        """
        Enumerate and filter the domain controllers of a forest.

        Args:
            forest: Forest DNS name; defaults to the forest of the configured LDAP server
            include_domains: Domains to keep (empty = all)
            exclude_domains: Domains to remove after inclusion
            include_domain_controllers: DCs to keep (empty = all)
            exclude_domain_controllers: DCs to remove after inclusion
            skip_rodc: Remove read-only DCs
            forest_options: Resolver tuning, e.g. ``page_size``

        Returns:
            Selected domain controllers, ordered by domain then host name

        Raises:
            ScopeResolutionError: If the forest cannot be enumerated
        """
        options = forest_options or {}
        try:
            scope_filter = ForestScopeFilter(
                include_domains=include_domains,
                exclude_domains=exclude_domains,
                include_domain_controllers=include_domain_controllers,
                exclude_domain_controllers=exclude_domain_controllers,
                skip_rodc=skip_rodc,
            )
        except ValueError as exc:
            raise ScopeResolutionError(
                f"Invalid scope filter: {exc}", forest=forest, cause=exc
            ) from exc

        target = forest or self.config.server
        if not target:
            raise ScopeResolutionError(
                "No forest name given and no LDAP server configured"
            )

        logger.info(f"🔍 Resolving domain controllers for forest {target}")
        connection = None
        try:
            connection = self.connection_factory(target)
            candidates = self._enumerate(connection, forest, options)
        except ScopeResolutionError:
            raise
        except (LDAPException, OSError, KeyError, ValueError) as exc:
            raise ScopeResolutionError(
                f"Failed to enumerate domain controllers: {exc}",
                forest=target,
                cause=exc,
            ) from exc
        finally:
            if connection is not None:
                try:
                    connection.unbind()
                except LDAPException as exc:
                    logger.debug(f"Unbind from {target} failed: {exc}")

        selected = select_domain_controllers(candidates, scope_filter)
        logger.info(
            f"✅ Selected {len(selected)}/{len(candidates)} domain controllers ({scope_filter})"
        )
        return selected

    def _search(
        self, connection: Any, base: str, search_filter: str, attributes: List[str], page_size: int
    ) -> List[Dict[str, Any]]:
        response = connection.extend.standard.paged_search(
            search_base=base,
            search_filter=search_filter,
            search_scope=SUBTREE,
            attributes=attributes,
            paged_size=page_size,
            generator=False,
        )
        return [
            entry for entry in (response or []) if entry.get("type") == "searchResEntry"
        ]

    def _enumerate(
        self, connection: Any, forest: Optional[str], options: Dict[str, Any]
    ) -> List[DomainController]:
        page_size = int(options.get("page_size", DEFAULT_PAGE_SIZE))
        config_nc = root_dse_value(connection, "configurationNamingContext")
        if not config_nc:
            raise ScopeResolutionError(
                "Root DSE did not return a configuration naming context", forest=forest
            )
        root_domain_nc = (root_dse_value(connection, "rootDomainNamingContext") or "").lower()

        # Domains, in partition order
        domains: Dict[str, str] = {}
        forest_name = forest
        for entry in self._search(
            connection,
            f"CN=Partitions,{config_nc}",
            f"(&(objectClass=crossRef)(systemFlags:1.2.840.113556.1.4.803:={FLAG_CR_NTDS_DOMAIN}))",
            ["dnsRoot", "nCName"],
            page_size,
        ):
            attributes = entry.get("attributes", {})
            nc_name = str(first_value(attributes.get("nCName")) or "").lower()
            dns_root = str(first_value(attributes.get("dnsRoot")) or "").lower()
            if not nc_name or not dns_root:
                continue
            domains[nc_name] = dns_root
            if nc_name == root_domain_nc and not forest_name:
                forest_name = dns_root
        if not domains:
            raise ScopeResolutionError("No domain partitions found", forest=forest)
        forest_name = (forest_name or next(iter(domains.values()))).lower()

        # Server objects carry the DNS host names
        host_names: Dict[str, str] = {}
        for entry in self._search(
            connection,
            f"CN=Sites,{config_nc}",
            "(objectClass=server)",
            ["dNSHostName"],
            page_size,
        ):
            host = first_value(entry.get("attributes", {}).get("dNSHostName"))
            if host:
                host_names[entry["dn"].lower()] = str(host).lower()

        domain_order = {name: index for index, name in enumerate(domains.values())}
        candidates = []
        for entry in self._search(
            connection,
            f"CN=Sites,{config_nc}",
            "(objectClass=nTDSDSA)",
            ["options", "msDS-isRODC", "msDS-HasDomainNCs", "hasMasterNCs"],
            page_size,
        ):
            dc = self._build_domain_controller(entry, host_names, domains, forest_name)
            if dc is not None:
                candidates.append(dc)

        candidates.sort(
            key=lambda dc: (domain_order.get(dc.domain, len(domain_order)), dc.host_name)
        )
        logger.debug(
            f"Forest {forest_name}: {len(domains)} domains, {len(candidates)} domain controllers"
        )
        return candidates

    def _build_domain_controller(
        self,
        entry: Dict[str, Any],
        host_names: Dict[str, str],
        domains: Dict[str, str],
        forest_name: str,
    ) -> Optional[DomainController]:
        ntds_dn = entry["dn"]
        server_dn = parent_dn(ntds_dn)
        host_name = host_names.get(server_dn.lower())
        if not host_name:
            logger.warning(f"⚠️  Skipping {server_dn}: no dNSHostName registered")
            return None

        attributes = entry.get("attributes", {})
        domain = None
        domain_ncs = attributes.get("msDS-HasDomainNCs") or attributes.get("hasMasterNCs") or []
        if isinstance(domain_ncs, str):
            domain_ncs = [domain_ncs]
        for nc in domain_ncs:
            domain = domains.get(str(nc).lower())
            if domain:
                break
        if not domain:
            # Fall back to the host name's DNS suffix
            domain = host_name.split(".", 1)[1] if "." in host_name else forest_name

        # CN=NTDS Settings,CN=<dc>,CN=Servers,CN=<site>,CN=Sites,...
        components = dn_components(ntds_dn)
        site = rdn_value(components[3]) if len(components) > 3 else None

        return DomainController(
            host_name=host_name,
            domain=domain,
            forest=forest_name,
            name=rdn_value(components[1]) if len(components) > 1 else "",
            site=site,
            is_read_only=_is_true(attributes.get("msDS-isRODC")),
            is_global_catalog=bool(_as_int(attributes.get("options")) & NTDSDSA_OPT_IS_GC),
            ntds_settings_dn=ntds_dn,
        )
