"""
Permission evaluation engine for the Permissions Service.
"""

import time
from typing import Optional, List, Iterable

from shared.logging import get_logger
from .conditions import ConditionRegistry
from .models import (
    EvaluationRequest, EvaluationResult, DecisionSource, PermissionPolicy,
    PolicyResult, RuleEffect, PermissionRule, PermissionCondition
)
from ..store.policy_store import PolicySnapshot


class PermissionEvaluator:
    """Fixed-precedence evaluator over a policy snapshot.

    Steps, first decision wins:

    1. direct permissions of the principal
    2. permissions of active, non-expired roles in declaration order
    3. policy rules, policies by descending priority
    4. resource-specific grants
    5. access control list entries (including inherited parent entries)
    6. default deny

    Evaluation reads nothing but the snapshot and the condition registry,
    so a fixed snapshot always yields the same decision.
    """

    def __init__(self, conditions: ConditionRegistry):
        self.logger = get_logger("permissions.rule_engine")
        self.conditions = conditions

    def evaluate(self, request: EvaluationRequest, snapshot: PolicySnapshot) -> EvaluationResult:
        """Evaluate a request. Internal failures yield a deny with source ``error``."""
        start_time = time.time()
        applied_policies: List[str] = []

        try:
            result = (
                self._check_direct_permissions(request, snapshot)
                or self._check_roles(request, snapshot)
                or self._check_policies(request, snapshot, applied_policies)
                or self._check_resource_grants(request, snapshot)
                or self._check_acls(request, snapshot)
                or EvaluationResult(
                    allowed=False,
                    reason="No applicable permission found",
                    source=DecisionSource.DEFAULT,
                )
            )
        except Exception as e:
            self.logger.error(
                "EvaluationFailure",
                principal_id=request.principal_id,
                action=request.action.value,
                resource_id=request.resource.id,
                code=getattr(e, "code", "EVALUATION_FAILURE"),
                error=str(e),
            )
            result = EvaluationResult(
                allowed=False,
                reason="Permission evaluation error",
                source=DecisionSource.ERROR,
            )

        result.applied_policies = applied_policies
        result.evaluation_time_ms = (time.time() - start_time) * 1000

        self.logger.debug(
            "Permission evaluation result",
            principal_id=request.principal_id,
            action=request.action.value,
            resource_id=request.resource.id,
            allowed=result.allowed,
            source=result.source.value,
            matched_id=result.matched_id,
        )
        return result

    def applicable_policies(self, request: EvaluationRequest, snapshot: PolicySnapshot) -> List[PermissionPolicy]:
        """Active policies whose scope covers the request, in evaluation order."""
        return [
            policy for policy in snapshot.sorted_policies()
            if policy.applies_to(request.resource, request.context)
        ]

    def _conditions_hold(self, conditions: Iterable[PermissionCondition], request: EvaluationRequest) -> bool:
        return self.conditions.evaluate_all(conditions, request)

    def _check_direct_permissions(self, request: EvaluationRequest, snapshot: PolicySnapshot) -> Optional[EvaluationResult]:
        for direct in snapshot.direct_permissions_for(request.principal_id):
            permission = direct.permission
            if permission.action != request.action:
                continue
            if not permission.applies_to(request.resource, request.principal_id):
                continue
            if not self._conditions_hold(permission.conditions, request):
                continue

            return EvaluationResult(
                allowed=permission.is_granted,
                reason=f"Direct permission '{direct.id}' matched",
                source=DecisionSource.DIRECT,
                matched_id=direct.id,
            )
        return None

    def _check_roles(self, request: EvaluationRequest, snapshot: PolicySnapshot) -> Optional[EvaluationResult]:
        for role in snapshot.roles_for(request.principal_id, request.timestamp):
            for permission in role.permissions:
                if permission.action != request.action:
                    continue
                if not permission.applies_to(request.resource, request.principal_id):
                    continue
                if not self._conditions_hold(permission.conditions, request):
                    continue

                return EvaluationResult(
                    allowed=permission.is_granted,
                    reason=f"Role '{role.name}' permission matched",
                    source=DecisionSource.ROLE,
                    matched_id=role.id,
                )
        return None

    def _check_policies(
        self,
        request: EvaluationRequest,
        snapshot: PolicySnapshot,
        applied_policies: List[str]
    ) -> Optional[EvaluationResult]:
        for policy in self.applicable_policies(request, snapshot):
            applied_policies.append(policy.id)

            for rule in policy.rules:
                outcome = self.evaluate_rule(rule, request)
                if outcome is PolicyResult.NOT_APPLICABLE:
                    continue

                return EvaluationResult(
                    allowed=outcome is PolicyResult.GRANTED,
                    reason=f"Policy '{policy.name}' rule '{rule.id}' matched",
                    source=DecisionSource.POLICY,
                    matched_id=policy.id,
                )
        return None

    def evaluate_rule(self, rule: PermissionRule, request: EvaluationRequest) -> PolicyResult:
        """A rule applies only when all of its conditions hold."""
        if not self._conditions_hold(rule.conditions, request):
            return PolicyResult.NOT_APPLICABLE
        if rule.effect == RuleEffect.ALLOW:
            return PolicyResult.GRANTED
        return PolicyResult.DENIED

    def _check_resource_grants(self, request: EvaluationRequest, snapshot: PolicySnapshot) -> Optional[EvaluationResult]:
        resource_permissions = snapshot.resource_permissions.get(request.resource.id)
        if resource_permissions is None:
            return None

        for grant in resource_permissions.permissions:
            if grant.principal_id != request.principal_id or grant.action != request.action:
                continue
            if not self._conditions_hold(grant.conditions, request):
                continue

            return EvaluationResult(
                allowed=grant.is_granted,
                reason=f"Resource grant on '{request.resource.id}' matched",
                source=DecisionSource.RESOURCE_GRANT,
                matched_id=request.resource.id,
            )
        return None

    def _check_acls(self, request: EvaluationRequest, snapshot: PolicySnapshot) -> Optional[EvaluationResult]:
        acls = snapshot.acls_for(request.resource.id)

        for acl in acls:
            for entry in acl.entries:
                if entry.principal_id == request.principal_id and entry.action == request.action:
                    return EvaluationResult(
                        allowed=entry.is_granted,
                        reason=f"ACL '{acl.id}' entry matched",
                        source=DecisionSource.ACL,
                        matched_id=acl.id,
                    )

        # Inherited entries are resolved one level up only.
        for acl in acls:
            for inheritance in acl.inheritance_rules:
                if inheritance.inherited_actions and request.action not in inheritance.inherited_actions:
                    continue
                if not self._conditions_hold(inheritance.conditions, request):
                    continue

                for parent_acl in snapshot.acls_for(inheritance.parent_resource_id):
                    for entry in parent_acl.entries:
                        if entry.principal_id == request.principal_id and entry.action == request.action:
                            return EvaluationResult(
                                allowed=entry.is_granted,
                                reason=f"ACL '{parent_acl.id}' entry inherited by '{acl.id}'",
                                source=DecisionSource.ACL,
                                matched_id=parent_acl.id,
                            )
        return None
