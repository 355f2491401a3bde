"""
Audit and security report models.
"""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..rules.models import TimeRange


class PermissionAuditAction(str, Enum):
    """What an audit entry records."""
    PERMISSION_CHECKED = "permission_checked"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REVOKED = "role_revoked"
    ROLE_CREATED = "role_created"
    ROLE_UPDATED = "role_updated"
    POLICY_CREATED = "policy_created"
    POLICY_UPDATED = "policy_updated"
    POLICY_DELETED = "policy_deleted"
    RESOURCE_PERMISSIONS_SET = "resource_permissions_set"
    ACL_CREATED = "acl_created"
    DIRECT_PERMISSION_GRANTED = "direct_permission_granted"
    DIRECT_PERMISSION_REVOKED = "direct_permission_revoked"

    @property
    def is_change_action(self) -> bool:
        return self is not PermissionAuditAction.PERMISSION_CHECKED


class PermissionResult(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


class SecurityViolationType(str, Enum):
    EXCESSIVE_DENIED_ATTEMPTS = "excessive_denied_attempts"


class SecurityViolationSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class PermissionAuditLog:
    """Immutable audit entry. ``sequence`` is assigned on append."""
    id: str
    sequence: int
    timestamp: datetime
    user_id: str
    action: PermissionAuditAction
    result: PermissionResult
    resource: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


@dataclass
class SecurityViolation:
    id: str
    type: SecurityViolationType
    severity: SecurityViolationSeverity
    user_id: str
    description: str
    detected_at: datetime
    related_logs: List[str] = field(default_factory=list)


@dataclass
class UserActivitySummary:
    user_id: str
    total_checks: int
    successful_checks: int
    denied_checks: int
    unique_resources: int
    last_activity: datetime


@dataclass
class ResourceAccessSummary:
    resource_id: str
    total_accesses: int
    successful_accesses: int
    denied_accesses: int
    unique_users: int
    last_access: datetime


@dataclass
class SecurityRiskAssessment:
    risk_level: SecurityRiskLevel
    risk_score: float
    factors: List[str]
    recommendations: List[str]


@dataclass
class SecurityAuditReport:
    id: str
    generated_at: datetime
    time_range: TimeRange
    total_permission_checks: int
    successful_checks: int
    denied_checks: int
    permission_changes: List[PermissionAuditLog]
    security_violations: List[SecurityViolation]
    user_activity_summary: List[UserActivitySummary]
    resource_access_summary: List[ResourceAccessSummary]
    risk_assessment: SecurityRiskAssessment


@dataclass
class SecurityMetrics:
    total_permission_checks: int
    successful_checks: int
    denied_checks: int
    unique_users: int
    unique_resources: int
    average_response_time_ms: float
    security_score: float
    risk_level: SecurityRiskLevel
