"""
Condition evaluation for permission policies.

Each ``ConditionType`` is handled by a ``ConditionEvaluator`` that resolves
the condition's attribute from a different source (directory attributes,
resource attributes, request context, clock). The comparison itself is
shared and driven by ``ConditionOperator``.
"""

import re
import threading
from datetime import datetime
from typing import Dict, Any, Optional, Iterable, Mapping

from shared.errors import EvaluationError
from shared.logging import get_logger
from .models import (
    ConditionOperator, ConditionType, PermissionCondition, EvaluationRequest,
    PermissionResource
)


USER_ID_PLACEHOLDER = "{{user.id}}"

logger = get_logger("permissions.conditions")


class AttributeProvider:
    """Resolves user and resource attributes from a directory."""

    def get_user_attributes(self, principal_id: str) -> Mapping[str, Any]:
        raise NotImplementedError

    def get_resource_attributes(self, resource: PermissionResource) -> Mapping[str, Any]:
        raise NotImplementedError


class InMemoryAttributeProvider(AttributeProvider):
    """Dictionary-backed directory."""

    def __init__(
        self,
        users: Optional[Dict[str, Dict[str, Any]]] = None,
        resources: Optional[Dict[str, Dict[str, Any]]] = None
    ):
        self._users: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in (users or {}).items()}
        self._resources: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in (resources or {}).items()}
        self._lock = threading.Lock()

    def set_user_attributes(self, principal_id: str, **attributes):
        with self._lock:
            self._users.setdefault(principal_id, {}).update(attributes)

    def set_resource_attributes(self, resource_id: str, **attributes):
        with self._lock:
            self._resources.setdefault(resource_id, {}).update(attributes)

    def get_user_attributes(self, principal_id: str) -> Mapping[str, Any]:
        with self._lock:
            return dict(self._users.get(principal_id, {}))

    def get_resource_attributes(self, resource: PermissionResource) -> Mapping[str, Any]:
        with self._lock:
            return dict(self._resources.get(resource.id, {}))


def _split_list(value: str) -> list:
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def compare(actual: Any, operator: ConditionOperator, expected: str) -> bool:
    """Compare a resolved attribute value against a condition value."""
    if operator == ConditionOperator.EQUALS:
        return str(actual) == expected

    elif operator == ConditionOperator.NOT_EQUALS:
        return str(actual) != expected

    elif operator == ConditionOperator.CONTAINS:
        if isinstance(actual, (list, tuple, set, frozenset)):
            return expected in {str(item) for item in actual}
        return expected in str(actual)

    elif operator == ConditionOperator.NOT_CONTAINS:
        return not compare(actual, ConditionOperator.CONTAINS, expected)

    elif operator == ConditionOperator.IN:
        return str(actual) in _split_list(expected)

    elif operator == ConditionOperator.NOT_IN:
        return str(actual) not in _split_list(expected)

    elif operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            left, right = str(actual), expected
        if operator == ConditionOperator.GREATER_THAN:
            return left > right
        return left < right

    elif operator == ConditionOperator.MATCHES:
        return re.search(expected, str(actual)) is not None

    logger.warning("Unknown condition operator", operator=operator)
    return False


class ConditionEvaluator:
    """Evaluates conditions of one ``ConditionType``."""

    def resolve(self, attribute: str, request: EvaluationRequest) -> Any:
        """Return the attribute value, or None when it is unknown."""
        raise NotImplementedError

    def evaluate(self, condition: PermissionCondition, request: EvaluationRequest) -> bool:
        actual = self.resolve(condition.attribute, request)
        if actual is None:
            return False

        expected = condition.value.replace(USER_ID_PLACEHOLDER, request.principal_id)
        return compare(actual, condition.operator, expected)


class UserAttributeEvaluator(ConditionEvaluator):

    def __init__(self, provider: AttributeProvider):
        self.provider = provider

    def resolve(self, attribute: str, request: EvaluationRequest) -> Any:
        if attribute == "id":
            return request.principal_id
        return self.provider.get_user_attributes(request.principal_id).get(attribute)


class ResourceAttributeEvaluator(ConditionEvaluator):
    """Request-supplied resource attributes win over directory ones."""

    def __init__(self, provider: AttributeProvider):
        self.provider = provider

    def resolve(self, attribute: str, request: EvaluationRequest) -> Any:
        resource = request.resource
        if attribute == "id":
            return resource.id
        if attribute == "type":
            return resource.type.value
        if attribute in resource.attributes:
            return resource.attributes[attribute]
        return self.provider.get_resource_attributes(resource).get(attribute)


class ContextualEvaluator(ConditionEvaluator):

    def resolve(self, attribute: str, request: EvaluationRequest) -> Any:
        if request.context is None:
            return None
        return request.context.to_dict().get(attribute)


class TemporalEvaluator(ConditionEvaluator):
    """Attributes derived from the request time: hour, weekday, date, time, timestamp."""

    def resolve(self, attribute: str, request: EvaluationRequest) -> Any:
        moment: datetime = request.timestamp
        if request.context is not None and request.context.request_time is not None:
            moment = request.context.request_time

        if attribute == "hour":
            return moment.hour
        if attribute == "weekday":
            return moment.strftime("%A").lower()
        if attribute == "date":
            return moment.date().isoformat()
        if attribute == "time":
            return moment.strftime("%H:%M")
        if attribute == "timestamp":
            return moment.timestamp()
        return None


class EnvironmentalEvaluator(ConditionEvaluator):
    """Location, device and network attributes of the caller."""

    FIELDS = ("location", "device_id", "client_ip", "user_agent")

    def resolve(self, attribute: str, request: EvaluationRequest) -> Any:
        context = request.context
        if context is None:
            return None
        if attribute in self.FIELDS:
            return getattr(context, attribute)
        return context.additional_data.get(attribute)


class ConditionRegistry:
    """Maps condition types to their evaluators."""

    def __init__(self, provider: AttributeProvider, evaluators: Optional[Dict[ConditionType, ConditionEvaluator]] = None):
        self.logger = get_logger("permissions.conditions.registry")
        self._evaluators: Dict[ConditionType, ConditionEvaluator] = {
            ConditionType.USER_ATTRIBUTE: UserAttributeEvaluator(provider),
            ConditionType.RESOURCE_ATTRIBUTE: ResourceAttributeEvaluator(provider),
            ConditionType.CONTEXTUAL: ContextualEvaluator(),
            ConditionType.TEMPORAL: TemporalEvaluator(),
            ConditionType.ENVIRONMENTAL: EnvironmentalEvaluator(),
        }
        if evaluators:
            self._evaluators.update(evaluators)

    def register(self, condition_type: ConditionType, evaluator: ConditionEvaluator):
        self._evaluators[condition_type] = evaluator

    def evaluate(self, condition: PermissionCondition, request: EvaluationRequest) -> bool:
        evaluator = self._evaluators.get(condition.type)
        if evaluator is None:
            self.logger.warning("No evaluator for condition type", condition_type=condition.type)
            return False

        try:
            return evaluator.evaluate(condition, request)
        except EvaluationError:
            raise
        except Exception as e:
            raise EvaluationError(
                f"Condition on '{condition.attribute}' could not be evaluated",
                {"condition_type": condition.type.value, "attribute": condition.attribute, "error": str(e)}
            ) from e

    def evaluate_all(self, conditions: Iterable[PermissionCondition], request: EvaluationRequest) -> bool:
        """Logical AND; an empty list holds."""
        return all(self.evaluate(condition, request) for condition in conditions)
