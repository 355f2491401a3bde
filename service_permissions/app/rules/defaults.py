"""
System roles and policies seeded into every policy store.
"""

from datetime import datetime, timezone
from typing import Tuple

from .models import (
    Permission, PermissionAction, PermissionResourceType, RoleDefinition,
    PermissionPolicy, PermissionRule, PermissionCondition, ConditionType,
    ConditionOperator, RuleEffect, PermissionScope, PolicyPriority
)


SYSTEM_USER = "system"
SYSTEM_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _grants(resource_type: PermissionResourceType, *actions: PermissionAction) -> Tuple[Permission, ...]:
    return tuple(Permission(action=action, resource_type=resource_type) for action in actions)


def default_roles() -> Tuple[RoleDefinition, ...]:
    """Built-in roles. These are system roles and cannot be modified."""
    return (
        RoleDefinition(
            id="admin",
            name="Administrator",
            description="Full system access",
            permissions=_grants(
                PermissionResourceType.ANY,
                PermissionAction.CREATE,
                PermissionAction.READ,
                PermissionAction.UPDATE,
                PermissionAction.DELETE,
                PermissionAction.MANAGE,
            ),
            is_system_role=True,
            created_at=SYSTEM_EPOCH,
        ),
        RoleDefinition(
            id="manager",
            name="Manager",
            description="Department management access",
            permissions=_grants(
                PermissionResourceType.DOCUMENT,
                PermissionAction.CREATE,
                PermissionAction.READ,
                PermissionAction.UPDATE,
                PermissionAction.APPROVE,
            ) + _grants(PermissionResourceType.TEAM, PermissionAction.MANAGE),
            is_system_role=True,
            created_at=SYSTEM_EPOCH,
        ),
        RoleDefinition(
            id="user",
            name="User",
            description="Standard user access",
            permissions=_grants(
                PermissionResourceType.DOCUMENT,
                PermissionAction.CREATE,
                PermissionAction.READ,
            ) + _grants(PermissionResourceType.OWN_DOCUMENT, PermissionAction.UPDATE),
            is_system_role=True,
            created_at=SYSTEM_EPOCH,
        ),
        RoleDefinition(
            id="viewer",
            name="Viewer",
            description="Read-only access",
            permissions=_grants(PermissionResourceType.DOCUMENT, PermissionAction.READ),
            is_system_role=True,
            created_at=SYSTEM_EPOCH,
        ),
    )


def default_policies() -> Tuple[PermissionPolicy, ...]:
    return (
        PermissionPolicy(
            id="security-policy",
            name="Security Policy",
            description="Default security policy",
            rules=(
                PermissionRule(
                    id="admin-full-access",
                    conditions=(
                        PermissionCondition(
                            type=ConditionType.USER_ATTRIBUTE,
                            attribute="role",
                            operator=ConditionOperator.EQUALS,
                            value="admin",
                        ),
                    ),
                    effect=RuleEffect.ALLOW,
                ),
                PermissionRule(
                    id="owner-access",
                    conditions=(
                        PermissionCondition(
                            type=ConditionType.RESOURCE_ATTRIBUTE,
                            attribute="owner",
                            operator=ConditionOperator.EQUALS,
                            value="{{user.id}}",
                        ),
                    ),
                    effect=RuleEffect.ALLOW,
                ),
            ),
            scope=PermissionScope.GLOBAL,
            priority=PolicyPriority.HIGH,
            is_active=True,
            created_by=SYSTEM_USER,
            created_at=SYSTEM_EPOCH,
        ),
    )
