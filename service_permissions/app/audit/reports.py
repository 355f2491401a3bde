"""
Security reporting over the audit log.

All functions here are read-side aggregations; they never modify the log.
"""

import uuid
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from shared.logging import get_logger
from ..clock import Clock, SystemClock
from ..rules.models import TimeRange
from .log import AuditLog
from .models import (
    PermissionAuditLog, PermissionAuditAction, PermissionResult,
    SecurityViolation, SecurityViolationType, SecurityViolationSeverity,
    SecurityRiskLevel, SecurityRiskAssessment, UserActivitySummary,
    ResourceAccessSummary, SecurityAuditReport, SecurityMetrics
)


DEFAULT_DENIED_ATTEMPTS_THRESHOLD = 10
HIGH_RISK_DENIAL_RATE = 0.30
MEDIUM_RISK_DENIAL_RATE = 0.15
REVIEW_DENIAL_RATE = 0.20


def denial_rate(logs: Sequence[PermissionAuditLog]) -> float:
    if not logs:
        return 0.0
    denied = sum(1 for log in logs if log.result == PermissionResult.DENIED)
    return denied / len(logs)


def risk_level_for(rate: float) -> SecurityRiskLevel:
    if rate > HIGH_RISK_DENIAL_RATE:
        return SecurityRiskLevel.HIGH
    if rate > MEDIUM_RISK_DENIAL_RATE:
        return SecurityRiskLevel.MEDIUM
    return SecurityRiskLevel.LOW


def security_recommendations(level: SecurityRiskLevel, rate: float) -> List[str]:
    recommendations = []

    if level == SecurityRiskLevel.HIGH:
        recommendations.append("Review and update permission policies")
        recommendations.append("Investigate users with excessive denied attempts")
        recommendations.append("Consider implementing additional security measures")

    if rate > REVIEW_DENIAL_RATE:
        recommendations.append("Review role assignments and permissions")
        recommendations.append("Provide additional user training on system access")

    if not recommendations:
        recommendations.append("Continue monitoring security metrics")
        recommendations.append("Regular security audits recommended")

    return recommendations


def assess_security_risk(logs: Sequence[PermissionAuditLog]) -> SecurityRiskAssessment:
    """Risk from the denial rate over every entry in ``logs``."""
    rate = denial_rate(logs)
    denied = sum(1 for log in logs if log.result == PermissionResult.DENIED)
    level = risk_level_for(rate)

    return SecurityRiskAssessment(
        risk_level=level,
        risk_score=rate * 100,
        factors=[
            f"Denial rate: {rate * 100:.2f}%",
            f"Total permission checks: {len(logs)}",
            f"Denied attempts: {denied}",
        ],
        recommendations=security_recommendations(level, rate),
    )


def identify_security_violations(
    logs: Sequence[PermissionAuditLog],
    threshold: int = DEFAULT_DENIED_ATTEMPTS_THRESHOLD,
    detected_at=None
) -> List[SecurityViolation]:
    """Flag principals with more than ``threshold`` denied entries."""
    denied_by_user: Dict[str, List[PermissionAuditLog]] = defaultdict(list)
    for log in logs:
        if log.result == PermissionResult.DENIED:
            denied_by_user[log.user_id].append(log)

    violations = []
    for user_id, attempts in denied_by_user.items():
        if len(attempts) > threshold:
            violations.append(SecurityViolation(
                id=str(uuid.uuid4()),
                type=SecurityViolationType.EXCESSIVE_DENIED_ATTEMPTS,
                severity=SecurityViolationSeverity.HIGH,
                user_id=user_id,
                description=f"User has {len(attempts)} denied permission attempts",
                detected_at=detected_at or attempts[-1].timestamp,
                related_logs=[a.id for a in attempts],
            ))
    return violations


def user_activity_summary(logs: Sequence[PermissionAuditLog]) -> List[UserActivitySummary]:
    groups: Dict[str, List[PermissionAuditLog]] = defaultdict(list)
    for log in logs:
        groups[log.user_id].append(log)

    return [
        UserActivitySummary(
            user_id=user_id,
            total_checks=len(entries),
            successful_checks=sum(1 for e in entries if e.result == PermissionResult.GRANTED),
            denied_checks=sum(1 for e in entries if e.result == PermissionResult.DENIED),
            unique_resources=len({e.resource for e in entries if e.resource}),
            last_activity=max(e.timestamp for e in entries),
        )
        for user_id, entries in groups.items()
    ]


def resource_access_summary(logs: Sequence[PermissionAuditLog]) -> List[ResourceAccessSummary]:
    groups: Dict[str, List[PermissionAuditLog]] = defaultdict(list)
    for log in logs:
        if log.resource:
            groups[log.resource].append(log)

    return [
        ResourceAccessSummary(
            resource_id=resource_id,
            total_accesses=len(entries),
            successful_accesses=sum(1 for e in entries if e.result == PermissionResult.GRANTED),
            denied_accesses=sum(1 for e in entries if e.result == PermissionResult.DENIED),
            unique_users=len({e.user_id for e in entries}),
            last_access=max(e.timestamp for e in entries),
        )
        for resource_id, entries in groups.items()
    ]


class SecurityAuditor:
    """Builds audit reports and security metrics from an ``AuditLog``."""

    def __init__(
        self,
        audit_log: AuditLog,
        clock: Optional[Clock] = None,
        denied_attempts_threshold: int = DEFAULT_DENIED_ATTEMPTS_THRESHOLD
    ):
        self.logger = get_logger("permissions.audit.reports")
        self.audit_log = audit_log
        self.clock = clock or SystemClock()
        self.denied_attempts_threshold = denied_attempts_threshold

    def _window(self, time_range: TimeRange) -> List[PermissionAuditLog]:
        now = self.clock.now()
        return self.audit_log.entries(start=time_range.start_date(now), end=now)

    def generate_security_audit_report(
        self,
        time_range: TimeRange,
        include_permission_changes: bool = True,
        include_access_attempts: bool = True,
        include_violations: bool = True
    ) -> SecurityAuditReport:
        now = self.clock.now()
        logs = self._window(time_range)
        checks = [log for log in logs if log.action == PermissionAuditAction.PERMISSION_CHECKED]

        report = SecurityAuditReport(
            id=str(uuid.uuid4()),
            generated_at=now,
            time_range=time_range,
            total_permission_checks=len(checks),
            successful_checks=sum(1 for c in checks if c.result == PermissionResult.GRANTED),
            denied_checks=sum(1 for c in checks if c.result == PermissionResult.DENIED),
            permission_changes=(
                [log for log in logs if log.action.is_change_action] if include_permission_changes else []
            ),
            security_violations=(
                identify_security_violations(logs, self.denied_attempts_threshold, now)
                if include_violations else []
            ),
            user_activity_summary=user_activity_summary(logs) if include_access_attempts else [],
            resource_access_summary=resource_access_summary(logs) if include_access_attempts else [],
            risk_assessment=assess_security_risk(logs),
        )

        self.logger.info(
            "Security audit report generated",
            report_id=report.id,
            time_range=time_range.value,
            entries=len(logs),
            violations=len(report.security_violations),
            risk_level=report.risk_assessment.risk_level.value,
        )
        return report

    def get_security_metrics(self, time_range: TimeRange) -> SecurityMetrics:
        logs = self._window(time_range)
        checks = [log for log in logs if log.action == PermissionAuditAction.PERMISSION_CHECKED]
        risk = assess_security_risk(logs)

        timings = [
            float(c.context["evaluation_time_ms"])
            for c in checks
            if c.context and "evaluation_time_ms" in c.context
        ]

        return SecurityMetrics(
            total_permission_checks=len(checks),
            successful_checks=sum(1 for c in checks if c.result == PermissionResult.GRANTED),
            denied_checks=sum(1 for c in checks if c.result == PermissionResult.DENIED),
            unique_users=len({c.user_id for c in checks}),
            unique_resources=len({c.resource for c in checks if c.resource}),
            average_response_time_ms=sum(timings) / len(timings) if timings else 0.0,
            security_score=100.0 - risk.risk_score,
            risk_level=risk.risk_level,
        )
