"""
Services package for AD Forest Health.

This package contains the collectors and the aggregation service used to
build forest replication reports.
"""

from .address_resolver import DnsAddressResolver
from .forest_scope_service import ForestScopeService, select_domain_controllers
from .replication_query_service import (
    LdapReplicationQueryService,
    parse_replication_neighbor,
)
from .replication_status_service import (
    ReplicationStatusService,
    create_replication_status_service,
)
from .replication_summary import summarize_replication

__all__ = [
    "DnsAddressResolver",
    "ForestScopeService",
    "LdapReplicationQueryService",
    "ReplicationStatusService",
    "create_replication_status_service",
    "parse_replication_neighbor",
    "select_domain_controllers",
    "summarize_replication",
]
