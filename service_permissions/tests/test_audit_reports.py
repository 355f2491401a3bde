"""
Unit tests for the audit log and security reporting.
"""

import pytest

from service_permissions.app.audit.log import AuditLog
from service_permissions.app.audit.models import (
    PermissionAuditAction, PermissionAuditLog, PermissionResult, SecurityRiskLevel,
    SecurityViolationType
)
from service_permissions.app.audit.reports import (
    SecurityAuditor, assess_security_risk, identify_security_violations
)
from service_permissions.app.clock import ManualClock
from service_permissions.app.persistence.base import InMemoryStore
from service_permissions.app.rules.models import TimeRange


def record_checks(audit_log, total, denied, user_id="u1", resource="doc-1"):
    for index in range(total):
        audit_log.append(
            user_id=user_id,
            action=PermissionAuditAction.PERMISSION_CHECKED,
            result=PermissionResult.DENIED if index < denied else PermissionResult.GRANTED,
            resource=resource,
            context={"evaluation_time_ms": 2.0},
        )


class TestAuditLog:
    """Test cases for AuditLog."""

    @pytest.fixture
    def clock(self):
        """Create a manual clock."""
        return ManualClock()

    def test_sequence_is_monotonic(self, clock):
        """Test every entry gets the next sequence number."""
        audit_log = AuditLog(clock=clock)

        entries = [
            audit_log.append("u1", PermissionAuditAction.PERMISSION_CHECKED, PermissionResult.GRANTED)
            for _ in range(5)
        ]

        assert [e.sequence for e in entries] == [1, 2, 3, 4, 5]
        assert audit_log.last_sequence == 5
        assert len(audit_log) == 5

    def test_entries_window(self, clock):
        """Test entries can be filtered by time."""
        audit_log = AuditLog(clock=clock)
        audit_log.append("u1", PermissionAuditAction.PERMISSION_CHECKED, PermissionResult.GRANTED)
        clock.advance(hours=2)
        later = audit_log.append("u2", PermissionAuditAction.PERMISSION_CHECKED, PermissionResult.DENIED)

        recent = audit_log.entries(start=TimeRange.LAST_HOUR.start_date(clock.now()))

        assert recent == [later]

    def test_record_change(self, clock):
        """Test change entries carry the actor and details."""
        audit_log = AuditLog(clock=clock)

        entry = audit_log.record_change(
            PermissionAuditAction.POLICY_CREATED, "admin-user", "admin-user", "Permission policy 'P' created"
        )

        assert entry.result == PermissionResult.GRANTED
        assert entry.context == {"changed_by": "admin-user", "details": "Permission policy 'P' created"}

    def test_load_continues_sequence(self, clock):
        """Test appends after a load continue from the persisted sequence."""
        audit_log = AuditLog(clock=clock)
        persisted = PermissionAuditLog(
            id="a-41",
            sequence=41,
            timestamp=clock.now(),
            user_id="u1",
            action=PermissionAuditAction.PERMISSION_CHECKED,
            result=PermissionResult.DENIED,
        )

        audit_log.load([persisted])
        entry = audit_log.append("u1", PermissionAuditAction.PERMISSION_CHECKED, PermissionResult.GRANTED)

        assert entry.sequence == 42
        assert [e.id for e in audit_log.entries()][0] == "a-41"

    def test_retention_evicts_oldest_entries(self, clock):
        """Test memory holds at most ``retention`` entries."""
        audit_log = AuditLog(clock=clock, retention=3)

        record_checks(audit_log, total=5, denied=0)

        assert len(audit_log) == 3
        assert [e.sequence for e in audit_log.entries()] == [3, 4, 5]
        assert audit_log.last_sequence == 5
        assert audit_log.get_stats()["retention"] == 3

    def test_load_respects_retention(self, clock):
        """Test loading more entries than the retention keeps the newest."""
        audit_log = AuditLog(clock=clock, retention=2)
        persisted = [
            PermissionAuditLog(
                id=f"a-{sequence}",
                sequence=sequence,
                timestamp=clock.now(),
                user_id="u1",
                action=PermissionAuditAction.PERMISSION_CHECKED,
                result=PermissionResult.GRANTED,
            )
            for sequence in (1, 2, 3)
        ]

        audit_log.load(persisted)

        assert [e.id for e in audit_log.entries()] == ["a-2", "a-3"]
        assert audit_log.append("u1", PermissionAuditAction.PERMISSION_CHECKED, PermissionResult.GRANTED).sequence == 4

    @pytest.mark.asyncio
    async def test_writer_persists_in_sequence_order(self, clock):
        """Test the background writer persists every entry."""
        store = InMemoryStore()
        audit_log = AuditLog(store=store, clock=clock)
        await audit_log.start()
        try:
            record_checks(audit_log, total=3, denied=1)
            await audit_log.flush()
        finally:
            await audit_log.stop()

        persisted = await store.fetch_all(PermissionAuditLog)

        assert [e.sequence for e in persisted] == [1, 2, 3]
        assert persisted[0].result == PermissionResult.DENIED
        assert audit_log.get_stats()["writer_running"] is False

    @pytest.mark.asyncio
    async def test_writer_survives_store_errors(self, clock):
        """Test a failing save does not stop the writer."""
        store = InMemoryStore()
        audit_log = AuditLog(store=store, clock=clock)
        original_save = store.save
        calls = []

        async def flaky_save(entity):
            calls.append(entity.sequence)
            if entity.sequence == 1:
                raise ConnectionError("reset")
            await original_save(entity)

        store.save = flaky_save
        await audit_log.start()
        try:
            record_checks(audit_log, total=2, denied=0)
            await audit_log.flush()
        finally:
            await audit_log.stop()

        persisted = await store.fetch_all(PermissionAuditLog)
        assert calls == [1, 2]
        assert [e.sequence for e in persisted] == [2]
        assert len(audit_log) == 2


class TestSecurityReports:
    """Test cases for risk assessment and audit reports."""

    @pytest.fixture
    def clock(self):
        """Create a manual clock."""
        return ManualClock()

    @pytest.fixture
    def audit_log(self, clock):
        """Create an in-memory audit log."""
        return AuditLog(clock=clock)

    @pytest.fixture
    def auditor(self, audit_log, clock):
        """Create SecurityAuditor instance."""
        return SecurityAuditor(audit_log, clock, denied_attempts_threshold=10)

    @pytest.mark.parametrize("denied,expected", [
        (31, SecurityRiskLevel.HIGH),
        (30, SecurityRiskLevel.MEDIUM),
        (16, SecurityRiskLevel.MEDIUM),
        (15, SecurityRiskLevel.LOW),
        (0, SecurityRiskLevel.LOW),
    ])
    def test_risk_levels(self, audit_log, denied, expected):
        """Test risk levels follow the denial rate thresholds."""
        record_checks(audit_log, total=100, denied=denied)

        assessment = assess_security_risk(audit_log.entries())

        assert assessment.risk_level == expected
        assert assessment.risk_score == pytest.approx(denied)

    def test_risk_factors(self, audit_log):
        """Test the factor strings."""
        record_checks(audit_log, total=100, denied=31)

        assessment = assess_security_risk(audit_log.entries())

        assert assessment.factors == [
            "Denial rate: 31.00%",
            "Total permission checks: 100",
            "Denied attempts: 31",
        ]

    def test_high_risk_recommendations(self, audit_log):
        """Test high risk adds review and investigation recommendations."""
        record_checks(audit_log, total=100, denied=31)

        recommendations = assess_security_risk(audit_log.entries()).recommendations

        assert "Review and update permission policies" in recommendations
        assert "Investigate users with excessive denied attempts" in recommendations
        assert "Review role assignments and permissions" in recommendations

    def test_low_risk_recommendations(self, audit_log):
        """Test low risk only recommends monitoring."""
        record_checks(audit_log, total=100, denied=5)

        recommendations = assess_security_risk(audit_log.entries()).recommendations

        assert recommendations == [
            "Continue monitoring security metrics",
            "Regular security audits recommended",
        ]

    def test_empty_log_is_low_risk(self):
        """Test an empty window has no risk."""
        assessment = assess_security_risk([])

        assert assessment.risk_level == SecurityRiskLevel.LOW
        assert assessment.risk_score == 0

    def test_violation_threshold(self, audit_log):
        """Test principals are flagged above the threshold only."""
        record_checks(audit_log, total=11, denied=11, user_id="u1")
        record_checks(audit_log, total=10, denied=10, user_id="u2")

        violations = identify_security_violations(audit_log.entries(), threshold=10)

        assert [v.user_id for v in violations] == ["u1"]
        assert violations[0].type == SecurityViolationType.EXCESSIVE_DENIED_ATTEMPTS
        assert violations[0].description == "User has 11 denied permission attempts"
        assert len(violations[0].related_logs) == 11

    def test_generate_report(self, auditor, audit_log):
        """Test report counts, summaries and change entries."""
        record_checks(audit_log, total=4, denied=1, user_id="u1", resource="doc-1")
        record_checks(audit_log, total=2, denied=0, user_id="u2", resource="doc-2")
        audit_log.record_change(PermissionAuditAction.ROLE_ASSIGNED, "u1", "admin-user", "Role 'Viewer' assigned to user")

        report = auditor.generate_security_audit_report(TimeRange.LAST_DAY)

        assert report.total_permission_checks == 6
        assert report.successful_checks == 5
        assert report.denied_checks == 1
        assert [c.action for c in report.permission_changes] == [PermissionAuditAction.ROLE_ASSIGNED]
        assert {s.user_id for s in report.user_activity_summary} == {"u1", "u2"}
        assert {s.resource_id for s in report.resource_access_summary} == {"doc-1", "doc-2"}
        assert report.security_violations == []

    def test_report_include_flags(self, auditor, audit_log):
        """Test excluded sections are empty."""
        record_checks(audit_log, total=20, denied=20)
        audit_log.record_change(PermissionAuditAction.POLICY_CREATED, "admin-user", "admin-user", "created")

        report = auditor.generate_security_audit_report(
            TimeRange.LAST_DAY,
            include_permission_changes=False,
            include_access_attempts=False,
            include_violations=False
        )

        assert report.permission_changes == []
        assert report.user_activity_summary == []
        assert report.resource_access_summary == []
        assert report.security_violations == []
        assert report.total_permission_checks == 20
        assert report.risk_assessment.risk_level == SecurityRiskLevel.HIGH

    def test_report_window(self, auditor, audit_log, clock):
        """Test entries outside the window are ignored."""
        record_checks(audit_log, total=3, denied=3)
        clock.advance(days=2)
        record_checks(audit_log, total=1, denied=0)

        report = auditor.generate_security_audit_report(TimeRange.LAST_DAY)

        assert report.total_permission_checks == 1
        assert report.denied_checks == 0

    def test_security_metrics(self, auditor, audit_log):
        """Test metrics derive the score from the risk assessment."""
        record_checks(audit_log, total=10, denied=2, user_id="u1", resource="doc-1")
        record_checks(audit_log, total=10, denied=0, user_id="u2", resource="doc-2")

        metrics = auditor.get_security_metrics(TimeRange.LAST_HOUR)

        assert metrics.total_permission_checks == 20
        assert metrics.denied_checks == 2
        assert metrics.unique_users == 2
        assert metrics.unique_resources == 2
        assert metrics.average_response_time_ms == pytest.approx(2.0)
        assert metrics.security_score == pytest.approx(90.0)
        assert metrics.risk_level == SecurityRiskLevel.LOW
