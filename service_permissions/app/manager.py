"""
Authorization manager for the Permissions Service.

Ties the policy store, decision cache, evaluator and audit log together.
Decisions are read-mostly: a short critical section reads the cache
generation, the current snapshot and any cached decision, and evaluation
runs outside the lock. Mutations persist first, then swap the snapshot and
invalidate the cache inside one critical section, then audit.
"""

import time
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Dict, Any, Optional, List, Iterable, Sequence, Set, Tuple

from shared.errors import (
    AccessLayerException, NotFoundError, InvalidRuleError, PersistenceError,
    ValidationError
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .audit.log import AuditLog, DEFAULT_RETENTION
from .audit.models import (
    PermissionAuditAction, PermissionResult, PermissionAuditLog, SecurityAuditReport,
    SecurityMetrics
)
from .audit.reports import SecurityAuditor, DEFAULT_DENIED_ATTEMPTS_THRESHOLD
from .cache.decision_cache import DecisionCache, DEFAULT_TTL_SECONDS
from .clock import Clock, SystemClock
from .persistence.base import DurableStore, InMemoryStore
from .rules.conditions import AttributeProvider, InMemoryAttributeProvider, ConditionRegistry
from .rules.engine import PermissionEvaluator
from .rules.models import (
    PermissionAction, PermissionResource, PermissionContext, Permission,
    PermissionCondition, PermissionRule, PermissionPolicy, PermissionScope,
    PolicyPriority, RoleDefinition, RoleAssignment, DirectPermission,
    PermissionGrant, ResourcePermissions, ResourceType, ACLEntry,
    InheritanceRule, AccessControlList, UserPermissions, EvaluationRequest,
    EvaluationResult, EvaluationDetail, ComplexEvaluationResult,
    DecisionSource, TimeRange
)
from .rules.defaults import default_policies
from .store.policy_store import PolicyStore, PolicySnapshot


_SYSTEM_POLICY_IDS = frozenset(policy.id for policy in default_policies())


def validate_conditions(conditions: Iterable[PermissionCondition], owner: str):
    """Every condition needs a non-empty attribute and value."""
    for index, condition in enumerate(conditions):
        if not condition.attribute or not condition.attribute.strip():
            raise InvalidRuleError(
                "Condition attribute must not be empty",
                {"owner": owner, "condition_index": index}
            )
        if not condition.value or not condition.value.strip():
            raise InvalidRuleError(
                "Condition value must not be empty",
                {"owner": owner, "condition_index": index}
            )


def validate_rules(rules: Iterable[PermissionRule]):
    for rule in rules:
        validate_conditions(rule.conditions, rule.id)


def validate_permissions(permissions: Iterable[Permission], owner: str):
    for permission in permissions:
        validate_conditions(permission.conditions, owner)


class AuthorizationManager:
    """Decision and administration entry point."""

    def __init__(
        self,
        durable_store: Optional[DurableStore] = None,
        policy_store: Optional[PolicyStore] = None,
        cache: Optional[DecisionCache] = None,
        clock: Optional[Clock] = None,
        attribute_provider: Optional[AttributeProvider] = None,
        audit_log: Optional[AuditLog] = None,
        metrics: Optional[MetricsCollector] = None,
        cache_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        denied_attempts_threshold: int = DEFAULT_DENIED_ATTEMPTS_THRESHOLD,
        audit_queue_size: int = 10000,
        audit_retention: Optional[int] = DEFAULT_RETENTION
    ):
        self.logger = get_logger("permissions.manager")
        self.clock = clock or SystemClock()
        self.durable_store = durable_store or InMemoryStore()
        self.policy_store = policy_store or PolicyStore()
        self.cache = cache or DecisionCache(ttl_seconds=cache_ttl_seconds, clock=self.clock)
        self.attributes = attribute_provider or InMemoryAttributeProvider()
        self.conditions = ConditionRegistry(self.attributes)
        self.evaluator = PermissionEvaluator(self.conditions)
        self.audit_log = audit_log or AuditLog(
            self.durable_store, self.clock, audit_queue_size, audit_retention
        )
        self.auditor = SecurityAuditor(self.audit_log, self.clock, denied_attempts_threshold)
        self.metrics = metrics

        # Snapshot swaps and cache invalidation share one lock.
        self._lock = self.policy_store.lock
        self._user_permissions: Dict[str, Tuple[UserPermissions, Optional[datetime]]] = {}
        # Assignment ids claimed by an in-flight revocation.
        self._revoking: Set[str] = set()

    async def start(self):
        await self.durable_store.start()
        await self.audit_log.start()
        await self.refresh()

    async def stop(self):
        await self.audit_log.stop()
        await self.durable_store.stop()

    # Decisions

    def has_permission(
        self,
        principal_id: str,
        action: PermissionAction,
        resource: PermissionResource,
        context: Optional[PermissionContext] = None
    ) -> bool:
        """Decide. Never raises; internal failures deny."""
        return self.check_permission(principal_id, action, resource, context).allowed

    def check_permission(
        self,
        principal_id: str,
        action: PermissionAction,
        resource: PermissionResource,
        context: Optional[PermissionContext] = None
    ) -> EvaluationResult:
        """Decide and return the full evaluation result."""
        start_time = time.time()
        lookup = "miss"

        try:
            with self._lock:
                generation = self.cache.generation
                snapshot = self.policy_store.snapshot
                cached, found = self.cache.get(principal_id, action.value, resource.id)

            if found:
                lookup = "hit"
                result = EvaluationResult(
                    allowed=cached,
                    reason="Cached decision",
                    source=DecisionSource.CACHE,
                    cache_hit=True,
                )
            else:
                request = EvaluationRequest(
                    principal_id=principal_id,
                    action=action,
                    resource=resource,
                    timestamp=self.clock.now(),
                    context=context,
                )
                result = self.evaluator.evaluate(request, snapshot)
                if result.source != DecisionSource.ERROR:
                    self.cache.put(principal_id, action.value, resource.id, result.allowed, generation=generation)

        except Exception as e:
            self.logger.error(
                "EvaluationFailure",
                principal_id=principal_id,
                action=getattr(action, "value", action),
                resource_id=getattr(resource, "id", None),
                error=str(e),
            )
            result = EvaluationResult(
                allowed=False,
                reason="Permission evaluation error",
                source=DecisionSource.ERROR,
            )

        result.evaluation_time_ms = (time.time() - start_time) * 1000
        self._record_check(principal_id, action, resource, context, result, lookup)
        return result

    def _record_check(
        self,
        principal_id: str,
        action: PermissionAction,
        resource: PermissionResource,
        context: Optional[PermissionContext],
        result: EvaluationResult,
        lookup: str
    ):
        try:
            audit_context: Dict[str, Any] = context.to_dict() if context is not None else {}
            audit_context.update({
                "requested_action": action.value,
                "decision_source": result.source.value,
                "evaluation_time_ms": round(result.evaluation_time_ms, 3),
            })
            self.audit_log.append(
                user_id=principal_id,
                action=PermissionAuditAction.PERMISSION_CHECKED,
                result=PermissionResult.GRANTED if result.allowed else PermissionResult.DENIED,
                resource=resource.id,
                context=audit_context,
            )

            if self.metrics:
                self.metrics.record_permission_check(
                    result.allowed, result.source.value, result.evaluation_time_ms / 1000
                )
                self.metrics.increment_counter("decision_cache_lookups_total", result=lookup)
                self.metrics.set_gauge("decision_cache_entries", len(self.cache))

        except Exception as e:
            self.logger.error("Failed to record permission check", principal_id=principal_id, error=str(e))

    def evaluate_complex(
        self,
        user_id: str,
        actions: Sequence[PermissionAction],
        resources: Sequence[PermissionResource],
        conditions: Sequence[PermissionCondition] = (),
        context: Optional[PermissionContext] = None
    ) -> ComplexEvaluationResult:
        """Decide every (action, resource) pair.

        An action is granted only when it is granted on every resource; with
        no resources it is denied. Supplemental conditions are checked
        against every resource and ANDed.
        """
        results: Dict[PermissionAction, bool] = {}
        details: List[EvaluationDetail] = []

        for action in actions:
            granted = bool(resources)
            for resource in resources:
                allowed = self.has_permission(user_id, action, resource, context)
                granted = granted and allowed
                details.append(EvaluationDetail(
                    action=action,
                    resource=resource,
                    has_permission=allowed,
                    applied_policies=self.applied_policies(user_id, action, resource, context),
                    evaluated_at=self.clock.now(),
                ))
            results[action] = granted

        return ComplexEvaluationResult(
            user_id=user_id,
            results=results,
            conditions_result=self._evaluate_supplemental(user_id, conditions, resources, context),
            evaluation_details=details,
            evaluated_at=self.clock.now(),
        )

    def applied_policies(
        self,
        principal_id: str,
        action: PermissionAction,
        resource: PermissionResource,
        context: Optional[PermissionContext] = None
    ) -> List[str]:
        request = EvaluationRequest(principal_id, action, resource, self.clock.now(), context)
        return [p.id for p in self.evaluator.applicable_policies(request, self.policy_store.snapshot)]

    def _evaluate_supplemental(
        self,
        user_id: str,
        conditions: Sequence[PermissionCondition],
        resources: Sequence[PermissionResource],
        context: Optional[PermissionContext]
    ) -> bool:
        if not conditions:
            return True

        targets = list(resources) or [PermissionResource(id="", type=ResourceType.SYSTEM)]
        try:
            return all(
                self.conditions.evaluate_all(
                    conditions,
                    EvaluationRequest(user_id, PermissionAction.READ, target, self.clock.now(), context)
                )
                for target in targets
            )
        except Exception as e:
            self.logger.error("EvaluationFailure", user_id=user_id, error=str(e))
            return False

    # Role administration

    async def assign_role(
        self,
        principal_id: str,
        role_id: str,
        assigned_by: str,
        scope: PermissionScope = PermissionScope.GLOBAL,
        expiration_date: Optional[datetime] = None
    ) -> RoleAssignment:
        """Create a new active assignment. Repeated calls create independent assignments."""
        role = self.policy_store.snapshot.roles.get(role_id)
        if role is None:
            raise NotFoundError(f"Role '{role_id}' not found", {"role_id": role_id})

        assignment = RoleAssignment(
            id=str(uuid.uuid4()),
            principal_id=principal_id,
            role_id=role_id,
            scope=scope,
            assigned_by=assigned_by,
            assigned_at=self.clock.now(),
            expiration_date=expiration_date,
        )
        await self._persist(assignment)

        with self._lock:
            snapshot = self.policy_store.put_assignment(assignment)
            self._refresh_user_permissions(principal_id, snapshot)
            self.cache.clear_for_principal(principal_id)

        self._audit_change(
            PermissionAuditAction.ROLE_ASSIGNED,
            user_id=principal_id,
            changed_by=assigned_by,
            details=f"Role '{role.name}' assigned to user",
        )
        self.logger.info("Role assigned", principal_id=principal_id, role_id=role_id, assignment_id=assignment.id)
        return assignment

    async def revoke_role(
        self,
        principal_id: str,
        role_id: str,
        revoked_by: str,
        reason: Optional[str] = None
    ) -> RoleAssignment:
        """Revoke the earliest active assignment of ``role_id``.

        The assignment is claimed under the lock, so concurrent revocations
        each take a different assignment or fail with ``NotFoundError``.
        """
        with self._lock:
            assignment = next(
                (
                    a for a in self.policy_store.snapshot.assignments_for(principal_id)
                    if a.role_id == role_id and a.is_active and a.id not in self._revoking
                ),
                None
            )
            if assignment is None:
                raise NotFoundError(
                    f"No active assignment of role '{role_id}' for '{principal_id}'",
                    {"principal_id": principal_id, "role_id": role_id}
                )
            self._revoking.add(assignment.id)

        try:
            revoked = assignment.revoke(revoked_by, self.clock.now(), reason)
            await self._persist(revoked)

            with self._lock:
                snapshot = self.policy_store.put_assignment(revoked)
                self._refresh_user_permissions(principal_id, snapshot)
                self.cache.clear_for_principal(principal_id)
        finally:
            with self._lock:
                self._revoking.discard(assignment.id)

        self._audit_change(
            PermissionAuditAction.ROLE_REVOKED,
            user_id=principal_id,
            changed_by=revoked_by,
            details=f"Role '{role_id}' revoked from user. Reason: {reason or 'No reason provided'}",
        )
        self.logger.info("Role revoked", principal_id=principal_id, role_id=role_id, assignment_id=revoked.id)
        return revoked

    async def create_role(
        self,
        name: str,
        description: str,
        permissions: Sequence[Permission],
        created_by: str,
        role_id: Optional[str] = None
    ) -> RoleDefinition:
        if not name or not name.strip():
            raise ValidationError("Role name must not be empty")
        role_id = role_id or str(uuid.uuid4())
        if role_id in self.policy_store.snapshot.roles:
            raise ValidationError(f"Role '{role_id}' already exists", {"role_id": role_id})
        validate_permissions(permissions, role_id)

        role = RoleDefinition(
            id=role_id,
            name=name,
            description=description,
            permissions=tuple(permissions),
            is_system_role=False,
            created_at=self.clock.now(),
        )
        await self._persist(role)

        with self._lock:
            self.policy_store.put_role(role)
            self._user_permissions.clear()
            self.cache.clear_all()

        self._audit_change(
            PermissionAuditAction.ROLE_CREATED,
            user_id=created_by,
            changed_by=created_by,
            details=f"Role '{name}' created",
        )
        self.logger.info("Role created", role_id=role.id, name=name)
        return role

    async def update_role(
        self,
        role_id: str,
        updated_by: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        permissions: Optional[Sequence[Permission]] = None
    ) -> RoleDefinition:
        role = self.policy_store.snapshot.roles.get(role_id)
        if role is None:
            raise NotFoundError(f"Role '{role_id}' not found", {"role_id": role_id})
        if role.is_system_role:
            raise ValidationError(f"System role '{role_id}' cannot be modified", {"role_id": role_id})

        changes: Dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Role name must not be empty")
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if permissions is not None:
            validate_permissions(permissions, role_id)
            changes["permissions"] = tuple(permissions)

        updated = replace(role, **changes)
        await self._persist(updated)

        with self._lock:
            self.policy_store.put_role(updated)
            self._user_permissions.clear()
            self.cache.clear_all()

        self._audit_change(
            PermissionAuditAction.ROLE_UPDATED,
            user_id=updated_by,
            changed_by=updated_by,
            details=f"Role '{updated.name}' updated",
        )
        self.logger.info("Role updated", role_id=role_id)
        return updated

    def list_roles(self) -> List[RoleDefinition]:
        return list(self.policy_store.snapshot.roles.values())

    # Policy administration

    async def create_policy(
        self,
        name: str,
        description: str,
        rules: Sequence[PermissionRule],
        scope: PermissionScope,
        created_by: str,
        priority: PolicyPriority = PolicyPriority.NORMAL,
        is_active: bool = True,
        scope_id: Optional[str] = None
    ) -> PermissionPolicy:
        validate_rules(rules)

        policy = PermissionPolicy(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            rules=tuple(rules),
            scope=scope,
            priority=priority,
            is_active=is_active,
            created_by=created_by,
            created_at=self.clock.now(),
            scope_id=scope_id,
        )
        await self._persist(policy)

        with self._lock:
            self.policy_store.put_policy(policy)
            self.cache.clear_all()

        self._audit_change(
            PermissionAuditAction.POLICY_CREATED,
            user_id=created_by,
            changed_by=created_by,
            details=f"Permission policy '{name}' created",
        )
        self.logger.info("Policy created", policy_id=policy.id, name=name, priority=int(priority))
        return policy

    async def update_policy(
        self,
        policy_id: str,
        modified_by: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        rules: Optional[Sequence[PermissionRule]] = None,
        is_active: Optional[bool] = None,
        priority: Optional[PolicyPriority] = None
    ) -> PermissionPolicy:
        policy = self.policy_store.snapshot.get_policy(policy_id)
        if policy is None:
            raise NotFoundError(f"Policy '{policy_id}' not found", {"policy_id": policy_id})

        changes: Dict[str, Any] = {"modified_by": modified_by, "modified_at": self.clock.now()}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if rules is not None:
            changes["rules"] = tuple(rules)
        if is_active is not None:
            changes["is_active"] = is_active
        if priority is not None:
            changes["priority"] = priority

        updated = replace(policy, **changes)
        validate_rules(updated.rules)
        await self._persist(updated)

        with self._lock:
            self.policy_store.put_policy(updated)
            self.cache.clear_all()

        self._audit_change(
            PermissionAuditAction.POLICY_UPDATED,
            user_id=modified_by,
            changed_by=modified_by,
            details=f"Permission policy '{updated.name}' updated",
        )
        self.logger.info("Policy updated", policy_id=policy_id)
        return updated

    async def delete_policy(self, policy_id: str, deleted_by: str) -> PermissionPolicy:
        policy = self.policy_store.snapshot.get_policy(policy_id)
        if policy is None:
            raise NotFoundError(f"Policy '{policy_id}' not found", {"policy_id": policy_id})
        if policy_id in _SYSTEM_POLICY_IDS:
            raise ValidationError(
                f"System policy '{policy_id}' cannot be deleted; deactivate it instead",
                {"policy_id": policy_id}
            )

        try:
            await self.durable_store.delete(PermissionPolicy, policy_id)
        except AccessLayerException:
            raise
        except Exception as e:
            raise PersistenceError("Failed to delete policy", {"policy_id": policy_id, "error": str(e)}) from e

        with self._lock:
            self.policy_store.remove_policy(policy_id)
            self.cache.clear_all()

        self._audit_change(
            PermissionAuditAction.POLICY_DELETED,
            user_id=deleted_by,
            changed_by=deleted_by,
            details=f"Permission policy '{policy.name}' deleted",
        )
        self.logger.info("Policy deleted", policy_id=policy_id)
        return policy

    def list_policies(self) -> List[PermissionPolicy]:
        return list(self.policy_store.snapshot.policies)

    # Direct permissions

    async def grant_direct_permission(
        self,
        principal_id: str,
        permission: Permission,
        granted_by: str
    ) -> DirectPermission:
        validate_permissions([permission], principal_id)

        direct = DirectPermission(
            id=str(uuid.uuid4()),
            principal_id=principal_id,
            permission=permission,
            granted_by=granted_by,
            granted_at=self.clock.now(),
        )
        await self._persist(direct)

        with self._lock:
            snapshot = self.policy_store.add_direct_permission(direct)
            self._refresh_user_permissions(principal_id, snapshot)
            self.cache.clear_for_principal(principal_id)

        verb = "granted" if permission.is_granted else "denied"
        self._audit_change(
            PermissionAuditAction.DIRECT_PERMISSION_GRANTED,
            user_id=principal_id,
            changed_by=granted_by,
            details=f"Direct permission '{permission.action.value}' on "
                    f"'{permission.resource_type.value}' {verb}",
        )
        self.logger.info(
            "Direct permission granted",
            principal_id=principal_id,
            permission_id=direct.id,
            action=permission.action.value,
            is_granted=permission.is_granted,
        )
        return direct

    async def revoke_direct_permission(
        self,
        principal_id: str,
        permission_id: str,
        revoked_by: str
    ) -> DirectPermission:
        direct = next(
            (d for d in self.policy_store.snapshot.direct_permissions_for(principal_id) if d.id == permission_id),
            None
        )
        if direct is None:
            raise NotFoundError(
                f"Direct permission '{permission_id}' not found",
                {"principal_id": principal_id, "permission_id": permission_id}
            )

        try:
            await self.durable_store.delete(DirectPermission, permission_id)
        except AccessLayerException:
            raise
        except Exception as e:
            raise PersistenceError(
                "Failed to delete direct permission",
                {"permission_id": permission_id, "error": str(e)}
            ) from e

        with self._lock:
            snapshot = self.policy_store.remove_direct_permission(permission_id)
            self._refresh_user_permissions(principal_id, snapshot)
            self.cache.clear_for_principal(principal_id)

        self._audit_change(
            PermissionAuditAction.DIRECT_PERMISSION_REVOKED,
            user_id=principal_id,
            changed_by=revoked_by,
            details=f"Direct permission '{permission_id}' revoked",
        )
        self.logger.info("Direct permission revoked", principal_id=principal_id, permission_id=permission_id)
        return direct

    # Resource permissions and ACLs

    async def set_resource_permissions(
        self,
        resource_id: str,
        resource_type: ResourceType,
        permissions: Sequence[PermissionGrant],
        set_by: str,
        inherit_from_parent: bool = True
    ) -> ResourcePermissions:
        for grant in permissions:
            validate_conditions(grant.conditions, resource_id)

        resource_permissions = ResourcePermissions(
            resource_id=resource_id,
            resource_type=resource_type,
            permissions=tuple(permissions),
            inherit_from_parent=inherit_from_parent,
            set_by=set_by,
            set_at=self.clock.now(),
        )
        await self._persist(resource_permissions)

        with self._lock:
            self.policy_store.set_resource_permissions(resource_permissions)
            self.cache.clear_for_resource(resource_id)

        self._audit_change(
            PermissionAuditAction.RESOURCE_PERMISSIONS_SET,
            user_id=set_by,
            changed_by=set_by,
            details=f"Permissions set for resource {resource_id} of type {resource_type.value}",
            resource=resource_id,
        )
        self.logger.info("Resource permissions set", resource_id=resource_id, grants=len(permissions))
        return resource_permissions

    async def inherit_resource_permissions(
        self,
        child_resource_id: str,
        parent_resource_id: str,
        inherited_by: str
    ) -> ResourcePermissions:
        """Clone the parent's grant set onto the child."""
        parent = self.policy_store.snapshot.resource_permissions.get(parent_resource_id)
        if parent is None:
            raise NotFoundError(
                f"Parent resource '{parent_resource_id}' has no permissions set",
                {"parent_resource_id": parent_resource_id}
            )

        return await self.set_resource_permissions(
            resource_id=child_resource_id,
            resource_type=parent.resource_type,
            permissions=parent.permissions,
            set_by=inherited_by,
            inherit_from_parent=True,
        )

    async def create_access_control_list(
        self,
        resource_id: str,
        resource_type: ResourceType,
        entries: Sequence[ACLEntry],
        created_by: str,
        inheritance_rules: Sequence[InheritanceRule] = ()
    ) -> AccessControlList:
        for rule in inheritance_rules:
            validate_conditions(rule.conditions, resource_id)

        acl = AccessControlList(
            id=str(uuid.uuid4()),
            resource_id=resource_id,
            resource_type=resource_type,
            entries=tuple(entries),
            created_by=created_by,
            created_at=self.clock.now(),
            inheritance_rules=tuple(inheritance_rules),
        )
        await self._persist(acl)

        with self._lock:
            snapshot = self.policy_store.add_acl(acl)
            self.cache.clear_for_resource(resource_id)
            # Children resolve inherited entries from this resource's ACLs.
            for child_id in snapshot.inheriting_resources(resource_id):
                self.cache.clear_for_resource(child_id)

        self._audit_change(
            PermissionAuditAction.ACL_CREATED,
            user_id=created_by,
            changed_by=created_by,
            details=f"Access Control List created for resource {resource_id}",
            resource=resource_id,
        )
        self.logger.info("ACL created", acl_id=acl.id, resource_id=resource_id, entries=len(entries))
        return acl

    # Effective permissions

    def get_user_permissions(self, principal_id: str) -> UserPermissions:
        """Effective-permission snapshot of a principal."""
        now = self.clock.now()
        with self._lock:
            cached = self._user_permissions.get(principal_id)
            if cached is not None:
                permissions, valid_until = cached
                if valid_until is None or now <= valid_until:
                    return permissions
            return self._refresh_user_permissions(principal_id, self.policy_store.snapshot)

    def _refresh_user_permissions(self, principal_id: str, snapshot: PolicySnapshot) -> UserPermissions:
        now = self.clock.now()
        assignments = snapshot.effective_assignments(principal_id, now)
        direct = [d.permission for d in snapshot.direct_permissions_for(principal_id)]

        effective: Dict[PermissionAction, List[Permission]] = {}
        for permission in direct:
            effective.setdefault(permission.action, []).append(permission)
        for role in snapshot.roles_for(principal_id, now):
            for permission in role.permissions:
                effective.setdefault(permission.action, []).append(permission)

        permissions = UserPermissions(
            user_id=principal_id,
            role_ids=[a.role_id for a in assignments],
            direct_permissions=direct,
            effective_permissions=effective,
            last_updated=now,
        )

        expirations = [a.expiration_date for a in assignments if a.expiration_date is not None]
        with self._lock:
            self._user_permissions[principal_id] = (permissions, min(expirations) if expirations else None)
        return permissions

    # Loading

    async def refresh(self):
        """Reload persisted records on top of the system defaults."""
        roles = await self._fetch(RoleDefinition)
        policies = await self._fetch(PermissionPolicy)
        assignments = await self._fetch(RoleAssignment)
        direct_permissions = await self._fetch(DirectPermission)
        resource_permissions = await self._fetch(ResourcePermissions)
        acls = await self._fetch(AccessControlList)
        audit_logs = await self._fetch(PermissionAuditLog)

        with self._lock:
            self.policy_store.load(
                roles=roles,
                policies=policies,
                assignments=assignments,
                direct_permissions=direct_permissions,
                resource_permissions=resource_permissions,
                acls=acls,
            )
            self._user_permissions.clear()
            self.cache.clear_all()

        self.audit_log.load(audit_logs)
        self.logger.info("Permissions refreshed", store=type(self.durable_store).__name__)

    async def _fetch(self, entity_type):
        try:
            return await self.durable_store.fetch_all(entity_type)
        except AccessLayerException:
            raise
        except Exception as e:
            self.logger.error("Failed to load records", entity_type=entity_type.__name__, error=str(e))
            raise PersistenceError(
                f"Failed to load {entity_type.__name__} records",
                {"error": str(e)}
            ) from e

    async def _persist(self, entity: Any):
        try:
            await self.durable_store.save(entity)
        except AccessLayerException:
            raise
        except Exception as e:
            self.logger.error("Failed to persist record", entity_type=type(entity).__name__, error=str(e))
            raise PersistenceError(
                f"Failed to persist {type(entity).__name__}",
                {"error": str(e)}
            ) from e

    def _audit_change(
        self,
        action: PermissionAuditAction,
        user_id: str,
        changed_by: str,
        details: str,
        resource: Optional[str] = None
    ):
        self.audit_log.record_change(action, user_id, changed_by, details, resource)
        if self.metrics:
            self.metrics.increment_counter("permission_changes_total", change_type=action.value)
            self.metrics.record_business_event(action.value)

    # Reporting

    def generate_security_audit_report(
        self,
        time_range: TimeRange,
        include_permission_changes: bool = True,
        include_access_attempts: bool = True,
        include_violations: bool = True
    ) -> SecurityAuditReport:
        return self.auditor.generate_security_audit_report(
            time_range,
            include_permission_changes=include_permission_changes,
            include_access_attempts=include_access_attempts,
            include_violations=include_violations,
        )

    def get_security_metrics(self, time_range: TimeRange) -> SecurityMetrics:
        return self.auditor.get_security_metrics(time_range)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "store": self.policy_store.get_stats(),
            "cache": self.cache.stats(),
            "audit": self.audit_log.get_stats(),
        }
