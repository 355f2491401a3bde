"""
Request and response models for the Permissions Service API.
"""

import uuid
from datetime import datetime
from typing import Dict, Any, Optional, List

from pydantic import BaseModel, Field

from .rules.models import (
    ConditionType, ConditionOperator, PermissionAction, PermissionResourceType,
    ResourceType, PermissionScope, PolicyPriority, RuleEffect, PrincipalType,
    DecisionSource, PermissionCondition, Permission, PermissionResource,
    PermissionContext, PermissionRule, PermissionGrant, ACLEntry, InheritanceRule
)


class ConditionModel(BaseModel):
    """Attribute condition."""
    type: ConditionType
    attribute: str
    operator: ConditionOperator
    value: str

    def to_domain(self) -> PermissionCondition:
        return PermissionCondition(
            type=self.type,
            attribute=self.attribute,
            operator=self.operator,
            value=self.value
        )


class PermissionModel(BaseModel):
    action: PermissionAction
    resource_type: PermissionResourceType = PermissionResourceType.ANY
    is_granted: bool = True
    conditions: List[ConditionModel] = Field(default_factory=list)

    def to_domain(self) -> Permission:
        return Permission(
            action=self.action,
            resource_type=self.resource_type,
            is_granted=self.is_granted,
            conditions=tuple(c.to_domain() for c in self.conditions)
        )


class ResourceModel(BaseModel):
    id: str = Field(..., description="Resource ID")
    type: ResourceType = Field(..., description="Resource type")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Resource attributes")

    def to_domain(self) -> PermissionResource:
        return PermissionResource(id=self.id, type=self.type, attributes=dict(self.attributes))


class ContextModel(BaseModel):
    request_time: Optional[datetime] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    device_id: Optional[str] = None
    location: Optional[str] = None
    session_id: Optional[str] = None
    additional_data: Dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> PermissionContext:
        return PermissionContext(
            request_time=self.request_time,
            client_ip=self.client_ip,
            user_agent=self.user_agent,
            device_id=self.device_id,
            location=self.location,
            session_id=self.session_id,
            additional_data=dict(self.additional_data)
        )


class PermissionCheckRequest(BaseModel):
    """Request model for a permission check."""
    user_id: str = Field(..., description="Principal ID")
    action: PermissionAction = Field(..., description="Requested action")
    resource: ResourceModel
    context: Optional[ContextModel] = None


class PermissionCheckResponse(BaseModel):
    """Response model for a permission check."""
    allowed: bool = Field(..., description="Whether the action is allowed")
    reason: str = Field(..., description="Reason for the decision")
    source: DecisionSource = Field(..., description="Step that produced the decision")
    matched_id: Optional[str] = None
    applied_policies: List[str] = Field(default_factory=list)
    evaluation_time_ms: float = 0.0
    cache_hit: bool = False
    ttl_seconds: Optional[int] = Field(None, description="Decision cache TTL in seconds")


class ComplexEvaluationRequest(BaseModel):
    """Request model for evaluating several actions over several resources."""
    user_id: str
    actions: List[PermissionAction] = Field(..., min_length=1)
    resources: List[ResourceModel] = Field(default_factory=list)
    conditions: List[ConditionModel] = Field(default_factory=list)
    context: Optional[ContextModel] = None


class RoleCreateRequest(BaseModel):
    name: str
    description: str = ""
    permissions: List[PermissionModel] = Field(default_factory=list)
    created_by: str
    role_id: Optional[str] = Field(None, description="Explicit role ID; generated when omitted")


class RoleUpdateRequest(BaseModel):
    updated_by: str
    name: Optional[str] = None
    description: Optional[str] = None
    permissions: Optional[List[PermissionModel]] = None


class RoleAssignRequest(BaseModel):
    user_id: str
    role_id: str
    assigned_by: str
    scope: PermissionScope = PermissionScope.GLOBAL
    expiration_date: Optional[datetime] = None


class RoleRevokeRequest(BaseModel):
    user_id: str
    role_id: str
    revoked_by: str
    reason: Optional[str] = None


class RuleModel(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conditions: List[ConditionModel] = Field(default_factory=list)
    effect: RuleEffect

    def to_domain(self) -> PermissionRule:
        return PermissionRule(
            id=self.id,
            conditions=tuple(c.to_domain() for c in self.conditions),
            effect=self.effect
        )


class PolicyCreateRequest(BaseModel):
    """Request model for creating a policy."""
    name: str
    description: str = ""
    rules: List[RuleModel] = Field(default_factory=list)
    scope: PermissionScope = PermissionScope.GLOBAL
    scope_id: Optional[str] = None
    priority: PolicyPriority = PolicyPriority.NORMAL
    is_active: bool = True
    created_by: str


class PolicyUpdateRequest(BaseModel):
    """Request model for updating a policy."""
    modified_by: str
    name: Optional[str] = None
    description: Optional[str] = None
    rules: Optional[List[RuleModel]] = None
    is_active: Optional[bool] = None
    priority: Optional[PolicyPriority] = None


class DirectPermissionRequest(BaseModel):
    permission: PermissionModel
    granted_by: str


class GrantModel(BaseModel):
    principal_id: str
    action: PermissionAction
    is_granted: bool = True
    principal_type: PrincipalType = PrincipalType.USER
    conditions: List[ConditionModel] = Field(default_factory=list)

    def to_domain(self) -> PermissionGrant:
        return PermissionGrant(
            principal_id=self.principal_id,
            action=self.action,
            is_granted=self.is_granted,
            principal_type=self.principal_type,
            conditions=tuple(c.to_domain() for c in self.conditions)
        )


class ResourcePermissionsRequest(BaseModel):
    resource_type: ResourceType
    permissions: List[GrantModel] = Field(default_factory=list)
    inherit_from_parent: bool = True
    set_by: str


class InheritPermissionsRequest(BaseModel):
    parent_resource_id: str
    inherited_by: str


class ACLEntryModel(BaseModel):
    principal_id: str
    action: PermissionAction
    is_granted: bool = True
    principal_type: PrincipalType = PrincipalType.USER

    def to_domain(self) -> ACLEntry:
        return ACLEntry(
            principal_id=self.principal_id,
            action=self.action,
            is_granted=self.is_granted,
            principal_type=self.principal_type
        )


class InheritanceRuleModel(BaseModel):
    parent_resource_id: str
    inherited_actions: List[PermissionAction] = Field(default_factory=list)
    conditions: List[ConditionModel] = Field(default_factory=list)

    def to_domain(self) -> InheritanceRule:
        return InheritanceRule(
            parent_resource_id=self.parent_resource_id,
            inherited_actions=tuple(self.inherited_actions),
            conditions=tuple(c.to_domain() for c in self.conditions)
        )


class ACLCreateRequest(BaseModel):
    """Request model for creating an access control list."""
    resource_id: str
    resource_type: ResourceType
    entries: List[ACLEntryModel] = Field(default_factory=list)
    inheritance_rules: List[InheritanceRuleModel] = Field(default_factory=list)
    created_by: str
