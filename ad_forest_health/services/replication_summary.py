"""Per-server roll-up of replication report rows."""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from ..models.replication_models import (
    UNKNOWN_PARTNER,
    AnyReplicationRow,
    ReplicationSummary,
)


def summarize_replication(
    rows: Iterable[AnyReplicationRow], now: Optional[datetime] = None
) -> List[ReplicationSummary]:
    """
    Group report rows by initiating server.

    Args:
        rows: Report rows as returned by ReplicationStatusService
        now: Reference time for the largest delta (defaults to current UTC time)

    Returns:
        One ReplicationSummary per server, in first-seen order
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    summaries: Dict[Optional[str], ReplicationSummary] = {}

    for row in rows:
        key = row.server.lower() if row.server else None
        summary = summaries.get(key)
        if summary is None:
            summary = ReplicationSummary(server=row.server)
            summaries[key] = summary

        # Placeholder rows stand for a failed query, not a replication link
        if row.server_partner == UNKNOWN_PARTNER and row.partition is None:
            summary.query_failed = True
            summary.failure_messages.append(row.status_message)
            continue

        summary.total_links += 1
        if not row.status:
            summary.failed_links += 1
            summary.failure_messages.append(row.status_message)
        if row.consecutive_replication_failures:
            summary.max_consecutive_failures = max(
                summary.max_consecutive_failures, row.consecutive_replication_failures
            )
        if row.last_replication_success is not None:
            success = row.last_replication_success
            if success.tzinfo is None:
                success = success.replace(tzinfo=timezone.utc)
            delta = now - success
            if summary.largest_delta is None or delta > summary.largest_delta:
                summary.largest_delta = delta

    return list(summaries.values())
