"""
Permission data models for the Permissions Service.

Domain records are frozen dataclasses: the policy store replaces them
wholesale instead of mutating them in place.
"""

from typing import Dict, Any, Optional, List, Mapping, Tuple
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum, IntEnum

from shared.errors import ValidationError


class PermissionAction(str, Enum):
    """Actions a principal can request."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    SHARE = "share"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    MANAGE = "manage"
    ADMIN = "admin"


class ResourceType(str, Enum):
    """Concrete resource types."""
    DOCUMENT = "document"
    FOLDER = "folder"
    USER = "user"
    TEAM = "team"
    PROJECT = "project"
    SYSTEM = "system"


class PermissionResourceType(str, Enum):
    """Resource type a permission statement is scoped to."""
    ANY = "any"
    DOCUMENT = "document"
    OWN_DOCUMENT = "own_document"
    FOLDER = "folder"
    USER = "user"
    TEAM = "team"
    PROJECT = "project"
    SYSTEM = "system"

    def matches(self, resource: "PermissionResource", principal_id: Optional[str] = None) -> bool:
        """Check whether a concrete resource falls under this type."""
        if self is PermissionResourceType.ANY:
            return True
        if self is PermissionResourceType.OWN_DOCUMENT:
            owner = resource.attributes.get("owner")
            return (
                resource.type == ResourceType.DOCUMENT
                and principal_id is not None
                and owner is not None
                and str(owner) == principal_id
            )
        return self.value == resource.type.value


class PermissionScope(str, Enum):
    """Scope a policy or role assignment applies to."""
    GLOBAL = "global"
    ORGANIZATION = "organization"
    DEPARTMENT = "department"
    TEAM = "team"
    PROJECT = "project"
    RESOURCE = "resource"


class PolicyPriority(IntEnum):
    """Policy priority; higher values are evaluated first."""
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


class RuleEffect(str, Enum):
    """Effect of a policy rule whose conditions hold."""
    ALLOW = "allow"
    DENY = "deny"


class PolicyResult(str, Enum):
    """Outcome of evaluating a rule or policy."""
    GRANTED = "granted"
    DENIED = "denied"
    NOT_APPLICABLE = "not_applicable"


class ConditionType(str, Enum):
    """Where the attribute of a condition is looked up."""
    USER_ATTRIBUTE = "user_attribute"
    RESOURCE_ATTRIBUTE = "resource_attribute"
    CONTEXTUAL = "contextual"
    TEMPORAL = "temporal"
    ENVIRONMENTAL = "environmental"


class ConditionOperator(str, Enum):
    """Condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    MATCHES = "matches"


class PrincipalType(str, Enum):
    """Kind of principal an ACL entry or grant names."""
    USER = "user"
    GROUP = "group"
    ROLE = "role"
    SYSTEM = "system"


class DecisionSource(str, Enum):
    """Precedence step that produced a decision."""
    DIRECT = "direct"
    ROLE = "role"
    POLICY = "policy"
    RESOURCE_GRANT = "resource_grant"
    ACL = "acl"
    DEFAULT = "default"
    CACHE = "cache"
    ERROR = "error"


@dataclass(frozen=True)
class PermissionCondition:
    """Single attribute test."""
    type: ConditionType
    attribute: str
    operator: ConditionOperator
    value: str


@dataclass(frozen=True)
class Permission:
    """Atomic grant/deny statement scoped to a resource type."""
    action: PermissionAction
    resource_type: PermissionResourceType
    is_granted: bool = True
    conditions: Tuple[PermissionCondition, ...] = ()

    def applies_to(self, resource: "PermissionResource", principal_id: Optional[str] = None) -> bool:
        return self.resource_type.matches(resource, principal_id)


@dataclass(frozen=True)
class RoleDefinition:
    """Named bundle of permissions."""
    id: str
    name: str
    description: str
    permissions: Tuple[Permission, ...] = ()
    is_system_role: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class RoleAssignment:
    """Role held by a principal.

    Assignments are never deleted; revocation produces a new inactive
    record and expiration is derived at read time.
    """
    id: str
    principal_id: str
    role_id: str
    scope: PermissionScope
    assigned_by: str
    assigned_at: datetime
    expiration_date: Optional[datetime] = None
    is_active: bool = True
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    revocation_reason: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expiration_date is not None and now > self.expiration_date

    def is_effective(self, now: datetime) -> bool:
        return self.is_active and not self.is_expired(now)

    def revoke(self, revoked_by: str, now: datetime, reason: Optional[str] = None) -> "RoleAssignment":
        if not self.is_active:
            raise ValidationError(
                f"Role assignment {self.id} is already revoked",
                {"assignment_id": self.id}
            )
        return replace(
            self,
            is_active=False,
            revoked_at=now,
            revoked_by=revoked_by,
            revocation_reason=reason,
        )


@dataclass(frozen=True)
class DirectPermission:
    """Permission granted to one principal outside any role."""
    id: str
    principal_id: str
    permission: Permission
    granted_by: str
    granted_at: datetime


@dataclass(frozen=True)
class PermissionRule:
    """Rule inside a policy; applies only when every condition holds."""
    id: str
    conditions: Tuple[PermissionCondition, ...]
    effect: RuleEffect


@dataclass(frozen=True)
class PermissionPolicy:
    """Prioritized bundle of rules."""
    id: str
    name: str
    description: str
    rules: Tuple[PermissionRule, ...]
    scope: PermissionScope
    priority: PolicyPriority
    is_active: bool
    created_by: str
    created_at: datetime
    scope_id: Optional[str] = None
    modified_by: Optional[str] = None
    modified_at: Optional[datetime] = None

    def applies_to(self, resource: "PermissionResource", context: Optional["PermissionContext"]) -> bool:
        """Check whether the policy scope covers the request."""
        if self.scope is PermissionScope.GLOBAL or self.scope_id is None:
            return True
        if self.scope is PermissionScope.RESOURCE:
            return self.scope_id == resource.id
        if context is None:
            return False
        return str(context.to_dict().get(self.scope.value)) == self.scope_id


@dataclass(frozen=True)
class PermissionGrant:
    """Grant scoped to a single resource instance."""
    principal_id: str
    action: PermissionAction
    is_granted: bool = True
    principal_type: PrincipalType = PrincipalType.USER
    conditions: Tuple[PermissionCondition, ...] = ()


@dataclass(frozen=True)
class ResourcePermissions:
    """Direct grants set on a resource."""
    resource_id: str
    resource_type: ResourceType
    permissions: Tuple[PermissionGrant, ...]
    inherit_from_parent: bool
    set_by: str
    set_at: datetime


@dataclass(frozen=True)
class InheritanceRule:
    """Actions a resource inherits from its parent."""
    parent_resource_id: str
    inherited_actions: Tuple[PermissionAction, ...] = ()
    conditions: Tuple[PermissionCondition, ...] = ()


@dataclass(frozen=True)
class ACLEntry:
    """Principal-specific entry of an access control list."""
    principal_id: str
    action: PermissionAction
    is_granted: bool = True
    principal_type: PrincipalType = PrincipalType.USER


@dataclass(frozen=True)
class AccessControlList:
    """Access control list attached to a resource."""
    id: str
    resource_id: str
    resource_type: ResourceType
    entries: Tuple[ACLEntry, ...]
    created_by: str
    created_at: datetime
    inheritance_rules: Tuple[InheritanceRule, ...] = ()


@dataclass(frozen=True)
class PermissionResource:
    """Typed, identified target of an action."""
    id: str
    type: ResourceType
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PermissionContext:
    """Request context used by contextual and environmental conditions."""
    request_time: Optional[datetime] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    device_id: Optional[str] = None
    location: Optional[str] = None
    session_id: Optional[str] = None
    additional_data: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"session_id": self.session_id or ""}
        if self.request_time is not None:
            data["request_time"] = self.request_time.isoformat()
        if self.client_ip:
            data["client_ip"] = self.client_ip
        if self.user_agent:
            data["user_agent"] = self.user_agent
        if self.device_id:
            data["device_id"] = self.device_id
        if self.location:
            data["location"] = self.location
        data.update(self.additional_data)
        return data


@dataclass
class UserPermissions:
    """Effective-permission snapshot of a principal."""
    user_id: str
    role_ids: List[str]
    direct_permissions: List[Permission]
    effective_permissions: Dict[PermissionAction, List[Permission]]
    last_updated: datetime


@dataclass
class EvaluationRequest:
    """Input of a single evaluation."""
    principal_id: str
    action: PermissionAction
    resource: PermissionResource
    timestamp: datetime
    context: Optional[PermissionContext] = None


@dataclass
class EvaluationResult:
    """Result of a single evaluation."""
    allowed: bool
    reason: str
    source: DecisionSource
    matched_id: Optional[str] = None
    applied_policies: List[str] = field(default_factory=list)
    evaluation_time_ms: float = 0.0
    cache_hit: bool = False


@dataclass
class EvaluationDetail:
    """Trace of one (action, resource) pair of a composite evaluation."""
    action: PermissionAction
    resource: PermissionResource
    has_permission: bool
    applied_policies: List[str]
    evaluated_at: datetime


@dataclass
class ComplexEvaluationResult:
    """Result of evaluating several actions over several resources."""
    user_id: str
    results: Dict[PermissionAction, bool]
    conditions_result: bool
    evaluation_details: List[EvaluationDetail]
    evaluated_at: datetime


class TimeRange(str, Enum):
    """Reporting windows ending now."""
    LAST_HOUR = "last_hour"
    LAST_DAY = "last_day"
    LAST_WEEK = "last_week"
    LAST_MONTH = "last_month"
    LAST_QUARTER = "last_quarter"
    LAST_YEAR = "last_year"

    def start_date(self, now: datetime) -> datetime:
        return now - _TIME_RANGE_SPANS[self]


_TIME_RANGE_SPANS = {
    TimeRange.LAST_HOUR: timedelta(hours=1),
    TimeRange.LAST_DAY: timedelta(days=1),
    TimeRange.LAST_WEEK: timedelta(weeks=1),
    TimeRange.LAST_MONTH: timedelta(days=30),
    TimeRange.LAST_QUARTER: timedelta(days=91),
    TimeRange.LAST_YEAR: timedelta(days=365),
}
