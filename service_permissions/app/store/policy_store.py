"""
Copy-on-write policy store.

A ``PolicySnapshot`` is never mutated. Every store mutation builds a new
snapshot and swaps it in under the store lock, so readers always see a
fully applied state.
"""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple, List, Iterable

from shared.logging import get_logger
from ..rules.defaults import default_roles, default_policies
from ..rules.models import (
    RoleDefinition, PermissionPolicy, RoleAssignment, DirectPermission,
    ResourcePermissions, AccessControlList
)


def _frozen(mapping: Dict) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable view of every authorization record."""
    roles: Mapping[str, RoleDefinition] = field(default_factory=lambda: _frozen({}))
    policies: Tuple[PermissionPolicy, ...] = ()
    assignments: Tuple[RoleAssignment, ...] = ()
    direct_permissions: Tuple[DirectPermission, ...] = ()
    resource_permissions: Mapping[str, ResourcePermissions] = field(default_factory=lambda: _frozen({}))
    acls: Tuple[AccessControlList, ...] = ()
    version: int = 0

    def get_policy(self, policy_id: str) -> Optional[PermissionPolicy]:
        for policy in self.policies:
            if policy.id == policy_id:
                return policy
        return None

    def sorted_policies(self) -> List[PermissionPolicy]:
        """Active policies by descending priority, stable on load order."""
        policies = [p for p in self.policies if p.is_active]
        policies.sort(key=lambda p: p.priority, reverse=True)
        return policies

    def assignments_for(self, principal_id: str) -> List[RoleAssignment]:
        return [a for a in self.assignments if a.principal_id == principal_id]

    def effective_assignments(self, principal_id: str, now: datetime) -> List[RoleAssignment]:
        return [a for a in self.assignments_for(principal_id) if a.is_effective(now)]

    def roles_for(self, principal_id: str, now: datetime) -> List[RoleDefinition]:
        """Roles of active, non-expired assignments in assignment order."""
        roles = []
        for assignment in self.effective_assignments(principal_id, now):
            role = self.roles.get(assignment.role_id)
            if role is not None:
                roles.append(role)
        return roles

    def direct_permissions_for(self, principal_id: str) -> List[DirectPermission]:
        return [d for d in self.direct_permissions if d.principal_id == principal_id]

    def acls_for(self, resource_id: str) -> List[AccessControlList]:
        return [acl for acl in self.acls if acl.resource_id == resource_id]

    def inheriting_resources(self, parent_resource_id: str) -> List[str]:
        """Resources whose ACL inheritance rules name ``parent_resource_id``."""
        return sorted({
            acl.resource_id for acl in self.acls
            if any(rule.parent_resource_id == parent_resource_id for rule in acl.inheritance_rules)
        })

    def evolve(self, **changes) -> "PolicySnapshot":
        """Return a new snapshot with ``changes`` applied and the version bumped."""
        for name in ("roles", "resource_permissions"):
            if name in changes:
                changes[name] = _frozen(changes[name])
        return replace(self, version=self.version + 1, **changes)


def seeded_snapshot() -> PolicySnapshot:
    """Snapshot holding only the system roles and policies."""
    return PolicySnapshot(
        roles=_frozen({role.id: role for role in default_roles()}),
        policies=default_policies(),
    )


class PolicyStore:
    """Holder of the current snapshot.

    ``lock`` is re-entrant so callers can hold it across a snapshot swap and
    a cache invalidation.
    """

    def __init__(self, snapshot: Optional[PolicySnapshot] = None):
        self.logger = get_logger("permissions.store")
        self.lock = threading.RLock()
        self._snapshot = snapshot or seeded_snapshot()

    @property
    def snapshot(self) -> PolicySnapshot:
        with self.lock:
            return self._snapshot

    def swap(self, snapshot: PolicySnapshot) -> PolicySnapshot:
        with self.lock:
            previous = self._snapshot
            self._snapshot = snapshot
        self.logger.debug("Snapshot replaced", version=snapshot.version, previous_version=previous.version)
        return previous

    def put_role(self, role: RoleDefinition) -> PolicySnapshot:
        with self.lock:
            roles = dict(self._snapshot.roles)
            roles[role.id] = role
            return self.swap_to(roles=roles)

    def put_policy(self, policy: PermissionPolicy) -> PolicySnapshot:
        """Insert or replace a policy, keeping its load position."""
        with self.lock:
            policies = list(self._snapshot.policies)
            for index, existing in enumerate(policies):
                if existing.id == policy.id:
                    policies[index] = policy
                    break
            else:
                policies.append(policy)
            return self.swap_to(policies=tuple(policies))

    def remove_policy(self, policy_id: str) -> PolicySnapshot:
        with self.lock:
            policies = tuple(p for p in self._snapshot.policies if p.id != policy_id)
            return self.swap_to(policies=policies)

    def put_assignment(self, assignment: RoleAssignment) -> PolicySnapshot:
        """Append a new assignment or replace one with the same id."""
        with self.lock:
            assignments = list(self._snapshot.assignments)
            for index, existing in enumerate(assignments):
                if existing.id == assignment.id:
                    assignments[index] = assignment
                    break
            else:
                assignments.append(assignment)
            return self.swap_to(assignments=tuple(assignments))

    def add_direct_permission(self, direct: DirectPermission) -> PolicySnapshot:
        with self.lock:
            return self.swap_to(direct_permissions=self._snapshot.direct_permissions + (direct,))

    def remove_direct_permission(self, permission_id: str) -> PolicySnapshot:
        with self.lock:
            remaining = tuple(d for d in self._snapshot.direct_permissions if d.id != permission_id)
            return self.swap_to(direct_permissions=remaining)

    def set_resource_permissions(self, permissions: ResourcePermissions) -> PolicySnapshot:
        with self.lock:
            resource_permissions = dict(self._snapshot.resource_permissions)
            resource_permissions[permissions.resource_id] = permissions
            return self.swap_to(resource_permissions=resource_permissions)

    def add_acl(self, acl: AccessControlList) -> PolicySnapshot:
        with self.lock:
            return self.swap_to(acls=self._snapshot.acls + (acl,))

    def swap_to(self, **changes) -> PolicySnapshot:
        with self.lock:
            snapshot = self._snapshot.evolve(**changes)
            self.swap(snapshot)
            return snapshot

    def load(
        self,
        roles: Iterable[RoleDefinition] = (),
        policies: Iterable[PermissionPolicy] = (),
        assignments: Iterable[RoleAssignment] = (),
        direct_permissions: Iterable[DirectPermission] = (),
        resource_permissions: Iterable[ResourcePermissions] = (),
        acls: Iterable[AccessControlList] = ()
    ) -> PolicySnapshot:
        """Replace the snapshot with persisted records layered over the defaults."""
        base = seeded_snapshot()

        role_map = dict(base.roles)
        for role in roles:
            existing = role_map.get(role.id)
            if existing is not None and existing.is_system_role:
                continue
            role_map[role.id] = role

        policy_list = list(base.policies)
        for policy in policies:
            policy_list = [p for p in policy_list if p.id != policy.id]
            policy_list.append(policy)

        with self.lock:
            snapshot = replace(
                base,
                roles=_frozen(role_map),
                policies=tuple(policy_list),
                assignments=tuple(assignments),
                direct_permissions=tuple(direct_permissions),
                resource_permissions=_frozen({rp.resource_id: rp for rp in resource_permissions}),
                acls=tuple(acls),
                version=self._snapshot.version + 1,
            )
            self.swap(snapshot)

        self.logger.info(
            "Policy store loaded",
            roles=len(snapshot.roles),
            policies=len(snapshot.policies),
            assignments=len(snapshot.assignments),
            acls=len(snapshot.acls),
        )
        return snapshot

    def get_stats(self) -> Dict[str, int]:
        snapshot = self.snapshot
        return {
            "version": snapshot.version,
            "roles": len(snapshot.roles),
            "policies": len(snapshot.policies),
            "active_policies": len([p for p in snapshot.policies if p.is_active]),
            "role_assignments": len(snapshot.assignments),
            "active_role_assignments": len([a for a in snapshot.assignments if a.is_active]),
            "direct_permissions": len(snapshot.direct_permissions),
            "resource_permissions": len(snapshot.resource_permissions),
            "acls": len(snapshot.acls),
        }
