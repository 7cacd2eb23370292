"""
Tests for Replication Status Service.

Covers row construction for healthy and failing links, placeholder rows for
unreachable domain controllers, extended rows, and error propagation.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List
from unittest.mock import Mock, patch

import pytest
import structlog.testing

from ad_forest_health.config_manager import (
    ADForestHealthConfig,
    ReplicationScanConfig,
)
from ad_forest_health.exceptions import (
    DCUnreachableError,
    QueryDeniedError,
    ScopeResolutionError,
)
from ad_forest_health.models.replication_models import (
    BASE_COLUMNS,
    EXTENDED_COLUMNS,
    DomainController,
    ExtendedReplicationReportRow,
    QueryFailure,
    ReplicationPartnerMetadata,
    ReplicationReportRow,
    ResolvedAddress,
)
from ad_forest_health.services.address_resolver import DnsAddressResolver
from ad_forest_health.services.forest_scope_service import ForestScopeService
from ad_forest_health.services.replication_query_service import (
    LdapReplicationQueryService,
)
from ad_forest_health.services.replication_status_service import (
    ReplicationStatusService,
    create_replication_status_service,
    format_status_message,
    replication_succeeded,
)


def _scan(**overrides) -> ReplicationScanConfig:
    values = dict(
        forest="contoso.com",
        include_domains=[],
        exclude_domains=[],
        include_domain_controllers=[],
        exclude_domain_controllers=[],
        skip_rodc=False,
        extended=False,
    )
    values.update(overrides)
    return ReplicationScanConfig(**values)


class TestStatusHelpers:
    """Test cases for the status derivation helpers."""

    @pytest.mark.parametrize(
        "result,expected",
        [(0, True), (1, False), (8606, False), (1722, False), (None, False)],
    )
    def test_replication_succeeded(self, result, expected) -> None:
        assert replication_succeeded(result) is expected

    def test_format_status_message(self, last_success: datetime) -> None:
        message = format_status_message(last_success, 3)

        assert message == (
            f"Last successful replication time was {last_success}, "
            "Consecutive Failures: 3"
        )

    def test_format_status_message_renders_missing_values_empty(self) -> None:
        assert format_status_message(None, None) == (
            "Last successful replication time was , Consecutive Failures: "
        )


class TestReplicationStatusService:
    """Test cases for ReplicationStatusService."""

    @pytest.fixture
    def mock_scope_resolver(
        self, dc1: DomainController, dc2: DomainController
    ) -> Mock:
        resolver = Mock()
        resolver.resolve.return_value = [dc1, dc2]
        return resolver

    @pytest.fixture
    def mock_replication_query(self) -> Mock:
        return Mock()

    @pytest.fixture
    def service(
        self,
        mock_scope_resolver: Mock,
        mock_replication_query: Mock,
        mock_address_resolver: Mock,
    ) -> ReplicationStatusService:
        return ReplicationStatusService(
            mock_scope_resolver, mock_replication_query, mock_address_resolver
        )

    @pytest.fixture
    def dc2_unreachable(
        self,
        mock_replication_query: Mock,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
    ) -> List[ReplicationPartnerMetadata]:
        """DC1 reports one healthy link; DC2 cannot be contacted."""
        records = [make_metadata()]

        def _query(dc, partition_filter="*"):
            if dc.host_name == "dc2.contoso.com":
                raise DCUnreachableError(
                    "The RPC server is unavailable", server="dc2.contoso.com"
                )
            return records

        mock_replication_query.query.side_effect = _query
        return records

    def test_healthy_link_row(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
        last_success: datetime,
    ) -> None:
        mock_replication_query.query.side_effect = [[make_metadata()], []]

        rows = service.get_forest_replication(_scan())

        assert len(rows) == 1
        row = rows[0]
        assert isinstance(row, ReplicationReportRow)
        assert not row.is_extended
        assert row.server == "dc1.contoso.com"
        assert row.server_ipv4 == "10.0.0.11"
        assert row.server_partner == "dc2.contoso.com"
        assert row.server_partner_ipv4 == "10.0.0.12"
        assert row.status is True
        assert row.last_replication_result == 0
        assert row.partition == "DC=contoso,DC=com"
        assert row.status_message == (
            f"Last successful replication time was {last_success}, "
            "Consecutive Failures: 0"
        )

    def test_one_row_per_record_in_order(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
    ) -> None:
        dc1_records = [
            make_metadata(partition="DC=contoso,DC=com"),
            make_metadata(partition="CN=Configuration,DC=contoso,DC=com"),
        ]
        dc2_records = [make_metadata(server="dc2.contoso.com")]
        mock_replication_query.query.side_effect = [dc1_records, dc2_records]

        rows = service.get_forest_replication(_scan())

        assert [(r.server, r.partition) for r in rows] == [
            ("dc1.contoso.com", "DC=contoso,DC=com"),
            ("dc1.contoso.com", "CN=Configuration,DC=contoso,DC=com"),
            ("dc2.contoso.com", "DC=contoso,DC=com"),
        ]

    @pytest.mark.parametrize(
        "result,expected", [(0, True), (1, False), (8606, False), (None, False)]
    )
    def test_status_follows_result_code(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
        result,
        expected,
    ) -> None:
        mock_replication_query.query.side_effect = [
            [make_metadata(last_replication_result=result)],
            [],
        ]

        rows = service.get_forest_replication(_scan())

        assert rows[0].status is expected

    def test_unresolvable_addresses_are_null(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
    ) -> None:
        record = make_metadata(
            server="ghost.contoso.com", partner_address="gone._msdcs.contoso.com"
        )
        mock_replication_query.query.side_effect = [[record], []]

        row = service.get_forest_replication(_scan())[0]

        assert row.server == "ghost.contoso.com"
        assert row.server_ipv4 is None
        assert row.server_partner is None
        assert row.server_partner_ipv4 is None
        assert row.status is True

    def test_unreachable_dc_becomes_placeholder_row(
        self,
        service: ReplicationStatusService,
        dc2_unreachable: List[ReplicationPartnerMetadata],
    ) -> None:
        rows = service.get_forest_replication(_scan())

        assert len(rows) == 2
        assert rows[0].server == "dc1.contoso.com"
        assert rows[0].status is True

        placeholder = rows[1]
        assert placeholder.server == "dc2.contoso.com"
        assert placeholder.server_ipv4 == "10.0.0.12"
        assert placeholder.server_partner == "Unknown"
        assert placeholder.server_partner_ipv4 == "127.0.0.1"
        assert placeholder.status is False
        assert placeholder.status_message == "The RPC server is unavailable"
        assert placeholder.last_replication_result is None
        assert placeholder.partition is None

    def test_mixed_forest_scenario(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
    ) -> None:
        """DC1 has a healthy and a failing partner; DC2 cannot be reached."""
        dc1_records = [
            make_metadata(last_replication_result=0),
            make_metadata(
                last_replication_result=8606, consecutive_replication_failures=4
            ),
        ]

        def _query(dc, partition_filter="*"):
            if dc.host_name == "dc2.contoso.com":
                raise DCUnreachableError(
                    "The RPC server is unavailable", server=dc.host_name
                )
            return dc1_records

        mock_replication_query.query.side_effect = _query
        failures: List[QueryFailure] = []

        rows = service.get_forest_replication(_scan(), failures=failures)

        assert len(rows) == len(dc1_records) + len(failures) == 3
        assert [(r.server, r.status) for r in rows] == [
            ("dc1.contoso.com", True),
            ("dc1.contoso.com", False),
            ("dc2.contoso.com", False),
        ]
        assert rows[1].status_message.endswith("Consecutive Failures: 4")
        assert rows[2].server_partner == "Unknown"
        assert rows[2].status_message == "The RPC server is unavailable"

    def test_failure_rows_follow_success_rows(
        self,
        service: ReplicationStatusService,
        mock_scope_resolver: Mock,
        mock_replication_query: Mock,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
        dc1: DomainController,
        dc2: DomainController,
        rodc: DomainController,
    ) -> None:
        mock_scope_resolver.resolve.return_value = [rodc, dc1, dc2]

        def _query(dc, partition_filter="*"):
            if dc.host_name == "rodc1.emea.contoso.com":
                raise QueryDeniedError("Access is denied", server=dc.host_name)
            return [make_metadata(server=dc.host_name)]

        mock_replication_query.query.side_effect = _query

        rows = service.get_forest_replication(_scan())

        assert [r.server for r in rows] == [
            "dc1.contoso.com",
            "dc2.contoso.com",
            "rodc1.emea.contoso.com",
        ]
        assert [r.status for r in rows] == [True, True, False]
        assert rows[-1].status_message == "Access is denied"

    def test_failure_without_server_uses_loopback(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
        mock_address_resolver: Mock,
    ) -> None:
        mock_replication_query.query.side_effect = [
            DCUnreachableError("No logon servers are currently available"),
            [],
        ]

        rows = service.get_forest_replication(_scan())

        assert len(rows) == 1
        assert rows[0].server is None
        assert rows[0].server_ipv4 == "127.0.0.1"
        assert rows[0].server_partner == "Unknown"
        assert rows[0].server_partner_ipv4 == "127.0.0.1"
        mock_address_resolver.resolve.assert_not_called()

    def test_dc_without_partners_contributes_no_rows(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
    ) -> None:
        mock_replication_query.query.side_effect = [[], []]

        assert service.get_forest_replication(_scan()) == []

    def test_no_domain_controllers_in_scope(
        self,
        service: ReplicationStatusService,
        mock_scope_resolver: Mock,
        mock_replication_query: Mock,
    ) -> None:
        mock_scope_resolver.resolve.return_value = []

        assert service.get_forest_replication(_scan()) == []
        mock_replication_query.query.assert_not_called()

    def test_failures_are_reported_to_caller(
        self,
        service: ReplicationStatusService,
        dc2_unreachable: List[ReplicationPartnerMetadata],
    ) -> None:
        failures: List[QueryFailure] = []

        service.get_forest_replication(_scan(), failures=failures)

        assert failures == [
            QueryFailure(
                server="dc2.contoso.com",
                status_message="The RPC server is unavailable",
            )
        ]

    def test_failure_is_logged_as_warning(
        self,
        service: ReplicationStatusService,
        dc2_unreachable: List[ReplicationPartnerMetadata],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.WARNING):
            service.get_forest_replication(_scan())

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "dc2.contoso.com" in warnings[0].getMessage()
        assert "The RPC server is unavailable" in warnings[0].getMessage()

    def test_scan_event_is_emitted(
        self,
        service: ReplicationStatusService,
        dc2_unreachable: List[ReplicationPartnerMetadata],
    ) -> None:
        with structlog.testing.capture_logs() as captured:
            service.get_forest_replication(_scan(extended=True))

        scan_events = [e for e in captured if e["event"] == "replication.scan"]
        assert scan_events == [
            {
                "event": "replication.scan",
                "log_level": "info",
                "forest": "contoso.com",
                "domain_controllers": 2,
                "links": 1,
                "failed_domain_controllers": 1,
                "unhealthy_links": 0,
                "extended": True,
            }
        ]

    def test_scope_resolution_error_propagates(
        self,
        service: ReplicationStatusService,
        mock_scope_resolver: Mock,
        mock_replication_query: Mock,
    ) -> None:
        mock_scope_resolver.resolve.side_effect = ScopeResolutionError(
            "Forest not found", forest="fabrikam.com"
        )

        with pytest.raises(ScopeResolutionError):
            service.get_forest_replication(_scan(forest="fabrikam.com"))
        mock_replication_query.query.assert_not_called()

    @pytest.mark.parametrize(
        "error",
        [TimeoutError("timed out"), ConnectionResetError("connection reset by peer")],
    )
    def test_socket_level_errors_become_placeholder_rows(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
        error: Exception,
    ) -> None:
        mock_replication_query.query.side_effect = [
            error,
            [make_metadata(server="dc2.contoso.com")],
        ]
        failures: List[QueryFailure] = []

        rows = service.get_forest_replication(_scan(), failures=failures)

        assert [(r.server, r.status) for r in rows] == [
            ("dc2.contoso.com", True),
            ("dc1.contoso.com", False),
        ]
        assert rows[1].server_partner == "Unknown"
        assert rows[1].server_ipv4 == "10.0.0.11"
        assert rows[1].status_message == str(error)
        assert failures == [
            QueryFailure(server="dc1.contoso.com", status_message=str(error))
        ]

    def test_unexpected_errors_are_not_captured(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
    ) -> None:
        mock_replication_query.query.side_effect = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            service.get_forest_replication(_scan())

    def test_scope_options_are_passed_through(
        self,
        service: ReplicationStatusService,
        mock_scope_resolver: Mock,
        mock_replication_query: Mock,
    ) -> None:
        mock_replication_query.query.return_value = []
        scan = _scan(
            include_domains=["contoso.com"],
            exclude_domain_controllers=["dc9.contoso.com"],
            skip_rodc=True,
            forest_options={"page_size": 200},
            partition_filter="DC=contoso,DC=com",
        )

        service.get_forest_replication(scan)

        mock_scope_resolver.resolve.assert_called_once_with(
            forest="contoso.com",
            include_domains=["contoso.com"],
            exclude_domains=[],
            include_domain_controllers=[],
            exclude_domain_controllers=["dc9.contoso.com"],
            skip_rodc=True,
            forest_options={"page_size": 200},
        )
        for call in mock_replication_query.query.call_args_list:
            assert call.kwargs["partition_filter"] == "DC=contoso,DC=com"

    def test_extended_rows_add_identity_columns(
        self,
        service: ReplicationStatusService,
        dc2_unreachable: List[ReplicationPartnerMetadata],
    ) -> None:
        base = service.get_forest_replication(_scan(extended=False))
        extended = service.get_forest_replication(_scan(extended=True))

        assert all(isinstance(r, ExtendedReplicationReportRow) for r in extended)
        for base_row, extended_row in zip(base, extended):
            base_keys = set(base_row.to_dict())
            extended_keys = set(extended_row.to_dict())
            assert base_keys == set(BASE_COLUMNS.values())
            assert extended_keys - base_keys == set(EXTENDED_COLUMNS.values())
            assert len(extended_keys) == len(base_keys) + 5

        link = extended[0]
        assert link.partner_address == (
            "3f6b1a9e-0c2d-4c41-9a53-7c1f0b2d9e11._msdcs.contoso.com"
        )
        assert link.partner_guid == "3f6b1a9e-0c2d-4c41-9a53-7c1f0b2d9e11"
        assert link.partition_guid == "5d3c2b1a-0f9e-48d7-b6a5-948372615041"

        placeholder = extended[1]
        assert placeholder.partner is None
        assert placeholder.partner_guid is None

    def test_repeated_scans_are_identical(
        self,
        service: ReplicationStatusService,
        dc2_unreachable: List[ReplicationPartnerMetadata],
    ) -> None:
        first = service.get_forest_replication(_scan())
        second = service.get_forest_replication(_scan())

        assert first == second

    def test_partner_resolved_by_address_not_dn(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
        mock_address_resolver: Mock,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
    ) -> None:
        record = make_metadata()
        mock_replication_query.query.side_effect = [[record], []]

        service.get_forest_replication(_scan())

        resolved = [call.args[0] for call in mock_address_resolver.resolve.call_args_list]
        assert resolved == ["dc1.contoso.com", record.partner_address]

    def test_query_domain_controller_success(
        self,
        service: ReplicationStatusService,
        mock_replication_query: Mock,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
        dc1: DomainController,
    ) -> None:
        mock_replication_query.query.return_value = [make_metadata()]

        outcome = service.query_domain_controller(dc1)

        assert outcome.succeeded
        assert outcome.domain_controller is dc1
        assert len(outcome.records) == 1

    def test_build_failure_row_resolves_server(
        self, service: ReplicationStatusService
    ) -> None:
        row = service.build_failure_row(
            QueryFailure(server="dc1.contoso.com", status_message="Access is denied"),
            extended=True,
        )

        assert isinstance(row, ExtendedReplicationReportRow)
        assert row.server_ipv4 == "10.0.0.11"
        assert row.status is False

    def test_build_failure_row_unresolvable_server(
        self, service: ReplicationStatusService
    ) -> None:
        row = service.build_failure_row(
            QueryFailure(server="ghost.contoso.com", status_message="timeout")
        )

        assert row.server_ipv4 is None
        assert row.server_partner_ipv4 == "127.0.0.1"


class TestCreateReplicationStatusService:
    """Test cases for the service factory."""

    def test_defaults_to_directory_backed_collaborators(self) -> None:
        config = ADForestHealthConfig()

        with patch("dns.resolver.Resolver"):
            service = create_replication_status_service(config)

        assert isinstance(service.scope_resolver, ForestScopeService)
        assert isinstance(service.replication_query, LdapReplicationQueryService)
        assert isinstance(service.address_resolver, DnsAddressResolver)

    def test_injected_collaborators_are_used(self) -> None:
        config = ADForestHealthConfig()
        scope, query, resolver = Mock(), Mock(), Mock()
        resolver.resolve.return_value = ResolvedAddress()

        service = create_replication_status_service(
            config,
            scope_resolver=scope,
            replication_query=query,
            address_resolver=resolver,
        )

        assert service.scope_resolver is scope
        assert service.replication_query is query
        assert service.address_resolver is resolver

    def test_factory_service_scans_with_mocks(
        self,
        dc1: DomainController,
        make_metadata: Callable[..., ReplicationPartnerMetadata],
        mock_address_resolver: Mock,
    ) -> None:
        scope, query = Mock(), Mock()
        scope.resolve.return_value = [dc1]
        query.query.return_value = [
            make_metadata(
                last_replication_result=8606,
                consecutive_replication_failures=12,
                last_replication_success=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
        ]
        service = create_replication_status_service(
            ADForestHealthConfig(),
            scope_resolver=scope,
            replication_query=query,
            address_resolver=mock_address_resolver,
        )

        rows = service.get_forest_replication(_scan())

        assert rows[0].status is False
        assert rows[0].consecutive_replication_failures == 12
        assert rows[0].status_message.endswith("Consecutive Failures: 12")
