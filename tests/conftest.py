from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from unittest.mock import Mock

import pytest

from ad_forest_health.models.replication_models import (
    DomainController,
    ReplicationPartnerMetadata,
    ResolvedAddress,
)

# ============================================================================
# Domain Controller Fixtures
# ============================================================================


@pytest.fixture
def dc1() -> DomainController:
    """Provide a writable domain controller of the forest root domain."""
    return DomainController(
        host_name="dc1.contoso.com",
        domain="contoso.com",
        forest="contoso.com",
        site="Default-First-Site-Name",
        is_global_catalog=True,
    )


@pytest.fixture
def dc2() -> DomainController:
    """Provide a second domain controller of the forest root domain."""
    return DomainController(
        host_name="dc2.contoso.com",
        domain="contoso.com",
        forest="contoso.com",
        site="Branch",
    )


@pytest.fixture
def rodc() -> DomainController:
    """Provide a read-only domain controller of a child domain."""
    return DomainController(
        host_name="rodc1.emea.contoso.com",
        domain="emea.contoso.com",
        forest="contoso.com",
        site="Branch",
        is_read_only=True,
    )


# ============================================================================
# Replication Metadata Fixtures
# ============================================================================


@pytest.fixture
def last_success() -> datetime:
    return datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_metadata(last_success: datetime) -> Callable[..., ReplicationPartnerMetadata]:
    """Factory for partner metadata records with realistic defaults."""

    def _make(
        server: str = "dc1.contoso.com",
        partner_address: str = "3f6b1a9e-0c2d-4c41-9a53-7c1f0b2d9e11._msdcs.contoso.com",
        last_replication_result: Optional[int] = 0,
        consecutive_replication_failures: Optional[int] = 0,
        partition: str = "DC=contoso,DC=com",
        **overrides: Any,
    ) -> ReplicationPartnerMetadata:
        values: Dict[str, Any] = {
            "server": server,
            "partition": partition,
            "partner": "CN=NTDS Settings,CN=DC2,CN=Servers,CN=Branch,CN=Sites,CN=Configuration,DC=contoso,DC=com",
            "partner_address": partner_address,
            "partner_guid": "3f6b1a9e-0c2d-4c41-9a53-7c1f0b2d9e11",
            "partner_invocation_id": "a1b2c3d4-e5f6-4711-8899-aabbccddeeff",
            "partner_type": "Inbound",
            "partition_guid": "5d3c2b1a-0f9e-48d7-b6a5-948372615041",
            "last_replication_attempt": last_success,
            "last_replication_result": last_replication_result,
            "last_replication_success": last_success,
            "consecutive_replication_failures": consecutive_replication_failures,
            "last_change_usn": 20517,
            "two_way_sync": False,
            "scheduled_sync": True,
            "sync_on_startup": True,
            "compress_changes": False,
            "disable_scheduled_sync": False,
            "ignore_change_notifications": False,
            "intersite_transport": None,
            "intersite_transport_guid": None,
            "intersite_transport_type": "RPC",
            "usn_filter": 20517,
            "writable": True,
        }
        values.update(overrides)
        return ReplicationPartnerMetadata(**values)

    return _make


# ============================================================================
# Collaborator Fixtures
# ============================================================================


@pytest.fixture
def dns_table() -> Dict[str, ResolvedAddress]:
    """Provide the answers served by the mock address resolver."""
    return {
        "dc1.contoso.com": ResolvedAddress("10.0.0.11", "dc1.contoso.com"),
        "dc2.contoso.com": ResolvedAddress("10.0.0.12", "dc2.contoso.com"),
        "3f6b1a9e-0c2d-4c41-9a53-7c1f0b2d9e11._msdcs.contoso.com": ResolvedAddress(
            "10.0.0.12", "dc2.contoso.com"
        ),
    }


@pytest.fixture
def mock_address_resolver(dns_table: Dict[str, ResolvedAddress]) -> Mock:
    """Provide an address resolver answering from dns_table."""
    resolver = Mock()
    resolver.resolve.side_effect = lambda name: dns_table.get(
        name, ResolvedAddress()
    )
    return resolver
