"""
Replication data models.

Value records passed between the scope resolver, the replication query, the
address resolver and the report rows handed to renderers. Every record is
frozen; a scan builds them once and never mutates them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

LOOPBACK_IPV4 = "127.0.0.1"
UNKNOWN_PARTNER = "Unknown"

# Report column names, in emission order.
BASE_COLUMNS: Dict[str, str] = {
    "server": "Server",
    "server_ipv4": "ServerIPV4",
    "server_partner": "ServerPartner",
    "server_partner_ipv4": "ServerPartnerIPV4",
    "last_replication_attempt": "LastReplicationAttempt",
    "last_replication_result": "LastReplicationResult",
    "last_replication_success": "LastReplicationSuccess",
    "consecutive_replication_failures": "ConsecutiveReplicationFailures",
    "last_change_usn": "LastChangeUsn",
    "partner_type": "PartnerType",
    "partition": "Partition",
    "two_way_sync": "TwoWaySync",
    "scheduled_sync": "ScheduledSync",
    "sync_on_startup": "SyncOnStartup",
    "compress_changes": "CompressChanges",
    "disable_scheduled_sync": "DisableScheduledSync",
    "ignore_change_notifications": "IgnoreChangeNotifications",
    "intersite_transport": "IntersiteTransport",
    "intersite_transport_guid": "IntersiteTransportGuid",
    "intersite_transport_type": "IntersiteTransportType",
    "usn_filter": "UsnFilter",
    "writable": "Writable",
    "status": "Status",
    "status_message": "StatusMessage",
}

EXTENDED_COLUMNS: Dict[str, str] = {
    "partner": "Partner",
    "partner_address": "PartnerAddress",
    "partner_guid": "PartnerGuid",
    "partner_invocation_id": "PartnerInvocationId",
    "partition_guid": "PartitionGuid",
}


@dataclass(frozen=True)
class DomainController:
    """A domain controller selected for a replication scan."""

    host_name: str
    domain: str
    forest: str
    name: str = ""
    site: Optional[str] = None
    is_read_only: bool = False
    is_global_catalog: bool = False
    ntds_settings_dn: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.host_name:
            raise ValueError("Domain controller host name is required")
        if not self.name:
            object.__setattr__(self, "name", self.host_name.split(".")[0])


@dataclass(frozen=True)
class ReplicationPartnerMetadata:
    """One inbound replication link of a server for one partition."""

    server: str
    partition: Optional[str] = None
    partner: Optional[str] = None
    partner_address: Optional[str] = None
    partner_guid: Optional[str] = None
    partner_invocation_id: Optional[str] = None
    partner_type: Optional[str] = None
    partition_guid: Optional[str] = None
    last_replication_attempt: Optional[datetime] = None
    last_replication_result: Optional[int] = None
    last_replication_success: Optional[datetime] = None
    consecutive_replication_failures: Optional[int] = None
    last_change_usn: Optional[int] = None
    two_way_sync: Optional[bool] = None
    scheduled_sync: Optional[bool] = None
    sync_on_startup: Optional[bool] = None
    compress_changes: Optional[bool] = None
    disable_scheduled_sync: Optional[bool] = None
    ignore_change_notifications: Optional[bool] = None
    intersite_transport: Optional[str] = None
    intersite_transport_guid: Optional[str] = None
    intersite_transport_type: Optional[str] = None
    usn_filter: Optional[int] = None
    writable: Optional[bool] = None


@dataclass(frozen=True)
class QueryFailure:
    """A domain controller whose replication query failed."""

    server: Optional[str]
    status_message: str


@dataclass(frozen=True)
class QueryOutcome:
    """Result of querying one domain controller: records or a failure."""

    domain_controller: DomainController
    records: List[ReplicationPartnerMetadata] = field(default_factory=list)
    failure: Optional[QueryFailure] = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class ResolvedAddress:
    """Outcome of a best-effort forward DNS lookup."""

    ipv4: Optional[str] = None
    host_name: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.ipv4 is not None


@dataclass(frozen=True)
class ReplicationReportRow:
    """Canonical report row for one replication link or one failed server."""

    server: Optional[str]
    server_ipv4: Optional[str]
    server_partner: Optional[str]
    server_partner_ipv4: Optional[str]
    status: bool
    status_message: str
    last_replication_attempt: Optional[datetime] = None
    last_replication_result: Optional[int] = None
    last_replication_success: Optional[datetime] = None
    consecutive_replication_failures: Optional[int] = None
    last_change_usn: Optional[int] = None
    partner_type: Optional[str] = None
    partition: Optional[str] = None
    two_way_sync: Optional[bool] = None
    scheduled_sync: Optional[bool] = None
    sync_on_startup: Optional[bool] = None
    compress_changes: Optional[bool] = None
    disable_scheduled_sync: Optional[bool] = None
    ignore_change_notifications: Optional[bool] = None
    intersite_transport: Optional[str] = None
    intersite_transport_guid: Optional[str] = None
    intersite_transport_type: Optional[str] = None
    usn_filter: Optional[int] = None
    writable: Optional[bool] = None

    @property
    def is_extended(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to an ordered dictionary keyed by report column names."""
        columns = dict(BASE_COLUMNS)
        if self.is_extended:
            columns.update(EXTENDED_COLUMNS)
        return {column: getattr(self, attr) for attr, column in columns.items()}


@dataclass(frozen=True)
class ExtendedReplicationReportRow(ReplicationReportRow):
    """Report row carrying the partner and partition identity fields."""

    partner: Optional[str] = None
    partner_address: Optional[str] = None
    partner_guid: Optional[str] = None
    partner_invocation_id: Optional[str] = None
    partition_guid: Optional[str] = None

    @property
    def is_extended(self) -> bool:
        return True


AnyReplicationRow = Union[ReplicationReportRow, ExtendedReplicationReportRow]


@dataclass
class ReplicationSummary:
    """Per-server roll-up of replication rows.

    A failed query placeholder sets ``query_failed``; it is not counted as a link.
    """

    server: Optional[str]
    total_links: int = 0
    failed_links: int = 0
    largest_delta: Optional[timedelta] = None
    max_consecutive_failures: int = 0
    failure_messages: List[str] = field(default_factory=list)
    query_failed: bool = False

    @property
    def healthy(self) -> bool:
        return self.failed_links == 0 and not self.query_failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Server": self.server,
            "TotalLinks": self.total_links,
            "FailedLinks": self.failed_links,
            "LargestDelta": self.largest_delta,
            "MaxConsecutiveFailures": self.max_consecutive_failures,
            "FailureMessages": list(self.failure_messages),
            "QueryFailed": self.query_failed,
            "Healthy": self.healthy,
        }


def rows_to_dicts(rows: List[AnyReplicationRow]) -> List[Dict[str, Any]]:
    """Convert report rows to dictionaries for serializers."""
    return [row.to_dict() for row in rows]

