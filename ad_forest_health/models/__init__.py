"""Models for AD Forest Health."""

from .replication_models import (
    EXTENDED_COLUMNS,
    LOOPBACK_IPV4,
    UNKNOWN_PARTNER,
    AnyReplicationRow,
    DomainController,
    ExtendedReplicationReportRow,
    QueryFailure,
    QueryOutcome,
    ReplicationPartnerMetadata,
    ReplicationReportRow,
    ReplicationSummary,
    ResolvedAddress,
    rows_to_dicts,
)
from .scope_filter import ForestScopeFilter

__all__ = [
    "EXTENDED_COLUMNS",
    "LOOPBACK_IPV4",
    "UNKNOWN_PARTNER",
    "AnyReplicationRow",
    "DomainController",
    "ExtendedReplicationReportRow",
    "ForestScopeFilter",
    "QueryFailure",
    "QueryOutcome",
    "ReplicationPartnerMetadata",
    "ReplicationReportRow",
    "ReplicationSummary",
    "ResolvedAddress",
    "rows_to_dicts",
]
