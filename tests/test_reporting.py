"""
Tests for the ReportingService.
"""

import pytest

from credential_engine.reporting import ReportingService


class TestReportingService:
    """Test cases for ReportingService."""

    @pytest.fixture
    def reports(self, store, audit_logger):
        return ReportingService(store, audit_logger)

    @pytest.fixture
    def populated(self, engine, member, credential_types):
        vpn, github, _ = credential_types
        confirmed = engine.assign_credential(member.id, vpn.id).grant
        problem = engine.assign_credential(member.id, github.id).grant
        engine.confirm_grant(confirmed.id, member.id)
        engine.report_problem(problem.id, member.id, note="No access")

        other = engine.register_identity("leaver@company.com", "Leaver")
        revoked = engine.assign_credential(other.id, vpn.id).grant
        engine.revoke_grant(revoked.id)
        return member, other

    def test_dashboard_stats(self, reports, populated):
        stats = reports.dashboard_stats()

        assert stats["total"] == 2
        assert stats["pending"] == 1
        assert stats["offboarded"] == 1
        assert stats["issues"] == 1
        assert stats["total_grants"] == 3
        assert stats["credential_types"] == 3

    def test_grant_lifecycle_report(self, reports, populated):
        rows = reports.grant_lifecycle_report()

        assert len(rows) == 3
        assert {r["status"] for r in rows} == {"Confirmed", "Problematic", "Inactive"}
        confirmed = [r for r in rows if r["status"] == "Confirmed"][0]
        assert confirmed["credential_name"] == "VPN"
        assert confirmed["confirmed_at"] is not None

    def test_identity_activity_summary(self, reports, populated):
        summary = {row["email"]: row for row in reports.identity_activity_summary()}

        assert summary["jane.doe@company.com"]["total_grants"] == 2
        assert summary["jane.doe@company.com"]["problematic_grants"] == 1
        assert summary["leaver@company.com"]["inactive_grants"] == 1
        assert summary["leaver@company.com"]["status"] == "Offboarded"

    def test_credential_status_summary(self, reports, populated):
        summary = {row["name"]: row for row in reports.credential_status_summary()}

        assert summary["VPN"]["total_grants"] == 2
        assert summary["VPN"]["inactive_grants"] == 1
        assert summary["Laptop"]["total_grants"] == 0

    def test_activity_logs_and_summary(self, reports, processor, populated):
        processor.process_pending()

        entries = reports.activity_logs(action="report_problem")
        assert len(entries) == 1
        assert entries[0].details["note"] == "No access"

        summary = reports.audit_summary(days=1)
        assert summary["entries_by_action"]["assign"] == 3
        assert summary["entries_by_severity"]["medium"] >= 2
