"""
Unit tests for condition evaluation.
"""

import pytest
from datetime import datetime, timezone

from shared.errors import EvaluationError
from service_permissions.app.rules.conditions import (
    ConditionRegistry, ConditionEvaluator, InMemoryAttributeProvider, compare
)
from service_permissions.app.rules.models import (
    ConditionType, ConditionOperator, PermissionCondition, EvaluationRequest,
    PermissionAction, PermissionResource, PermissionContext, ResourceType
)


def condition(condition_type, attribute, operator, value):
    return PermissionCondition(type=condition_type, attribute=attribute, operator=operator, value=value)


class TestCompare:
    """Test cases for operator comparison."""

    def test_equals(self):
        """Test equality compares string forms."""
        assert compare("admin", ConditionOperator.EQUALS, "admin") is True
        assert compare(5, ConditionOperator.EQUALS, "5") is True
        assert compare("user", ConditionOperator.EQUALS, "admin") is False

    def test_not_equals(self):
        """Test inequality."""
        assert compare("user", ConditionOperator.NOT_EQUALS, "admin") is True

    def test_contains(self):
        """Test containment in strings and collections."""
        assert compare("finance-team", ConditionOperator.CONTAINS, "finance") is True
        assert compare(["a", "b"], ConditionOperator.CONTAINS, "b") is True
        assert compare(["a", "b"], ConditionOperator.NOT_CONTAINS, "c") is True

    def test_in_comma_separated(self):
        """Test membership in a comma-separated list."""
        assert compare("emea", ConditionOperator.IN, "emea, apac") is True
        assert compare("amer", ConditionOperator.IN, "emea,apac") is False
        assert compare("amer", ConditionOperator.NOT_IN, "emea,apac") is True

    def test_numeric_comparison(self):
        """Test numeric comparison is used when both sides are numbers."""
        assert compare(10, ConditionOperator.GREATER_THAN, "9") is True
        assert compare("10", ConditionOperator.LESS_THAN, "9") is False

    def test_string_comparison_fallback(self):
        """Test string comparison when a side is not numeric."""
        assert compare("b", ConditionOperator.GREATER_THAN, "a") is True
        assert compare("09:00", ConditionOperator.LESS_THAN, "17:00") is True

    def test_matches(self):
        """Test regular expression matching."""
        assert compare("10.0.0.12", ConditionOperator.MATCHES, r"^10\.") is True
        assert compare("192.168.1.1", ConditionOperator.MATCHES, r"^10\.") is False


class TestConditionRegistry:
    """Test cases for ConditionRegistry."""

    @pytest.fixture
    def provider(self):
        """Create attribute provider with a few users."""
        return InMemoryAttributeProvider(
            users={"u1": {"role": "admin", "department": "finance"}},
            resources={"doc-1": {"owner": "u2", "classification": "internal"}},
        )

    @pytest.fixture
    def registry(self, provider):
        """Create ConditionRegistry instance."""
        return ConditionRegistry(provider)

    @pytest.fixture
    def request_for(self):
        """Build evaluation requests."""
        def build(principal_id="u1", attributes=None, context=None):
            return EvaluationRequest(
                principal_id=principal_id,
                action=PermissionAction.READ,
                resource=PermissionResource(id="doc-1", type=ResourceType.DOCUMENT, attributes=attributes or {}),
                timestamp=datetime(2025, 1, 6, 14, 30, tzinfo=timezone.utc),
                context=context,
            )
        return build

    def test_user_attribute(self, registry, request_for):
        """Test user attributes come from the provider."""
        admin = condition(ConditionType.USER_ATTRIBUTE, "role", ConditionOperator.EQUALS, "admin")

        assert registry.evaluate(admin, request_for("u1")) is True
        assert registry.evaluate(admin, request_for("u2")) is False

    def test_missing_attribute_is_false(self, registry, request_for):
        """Test an unknown attribute never satisfies a condition."""
        missing = condition(ConditionType.USER_ATTRIBUTE, "clearance", ConditionOperator.NOT_EQUALS, "secret")

        assert registry.evaluate(missing, request_for("u1")) is False

    def test_resource_attribute_from_provider(self, registry, request_for):
        """Test resource attributes fall back to the provider."""
        internal = condition(ConditionType.RESOURCE_ATTRIBUTE, "classification", ConditionOperator.EQUALS, "internal")

        assert registry.evaluate(internal, request_for()) is True

    def test_request_resource_attributes_win(self, registry, request_for):
        """Test attributes on the request override the provider."""
        owner = condition(ConditionType.RESOURCE_ATTRIBUTE, "owner", ConditionOperator.EQUALS, "u2")

        assert registry.evaluate(owner, request_for()) is True
        assert registry.evaluate(owner, request_for(attributes={"owner": "u3"})) is False

    def test_user_id_template(self, registry, request_for):
        """Test the user id placeholder is replaced with the principal."""
        own = condition(ConditionType.RESOURCE_ATTRIBUTE, "owner", ConditionOperator.EQUALS, "{{user.id}}")

        assert registry.evaluate(own, request_for("u2")) is True
        assert registry.evaluate(own, request_for("u1")) is False

    def test_contextual(self, registry, request_for):
        """Test contextual conditions read the request context."""
        session = condition(ConditionType.CONTEXTUAL, "project", ConditionOperator.EQUALS, "apollo")
        context = PermissionContext(session_id="s-1", additional_data={"project": "apollo"})

        assert registry.evaluate(session, request_for(context=context)) is True
        assert registry.evaluate(session, request_for()) is False

    def test_temporal(self, registry, request_for):
        """Test temporal conditions use the request time."""
        business_hours = condition(ConditionType.TEMPORAL, "hour", ConditionOperator.LESS_THAN, "17")
        weekday = condition(ConditionType.TEMPORAL, "weekday", ConditionOperator.IN, "monday,tuesday")

        assert registry.evaluate(business_hours, request_for()) is True
        assert registry.evaluate(weekday, request_for()) is True

    def test_temporal_prefers_context_time(self, registry, request_for):
        """Test the context request time overrides the request timestamp."""
        late = PermissionContext(request_time=datetime(2025, 1, 6, 22, 0, tzinfo=timezone.utc))
        business_hours = condition(ConditionType.TEMPORAL, "hour", ConditionOperator.LESS_THAN, "17")

        assert registry.evaluate(business_hours, request_for(context=late)) is False

    def test_environmental(self, registry, request_for):
        """Test environmental conditions read location and network fields."""
        context = PermissionContext(client_ip="10.1.2.3", location="office", additional_data={"vpn": "on"})
        internal_ip = condition(ConditionType.ENVIRONMENTAL, "client_ip", ConditionOperator.MATCHES, r"^10\.")
        office = condition(ConditionType.ENVIRONMENTAL, "location", ConditionOperator.EQUALS, "office")
        vpn = condition(ConditionType.ENVIRONMENTAL, "vpn", ConditionOperator.EQUALS, "on")

        request = request_for(context=context)

        assert registry.evaluate_all([internal_ip, office, vpn], request) is True

    def test_evaluate_all_empty(self, registry, request_for):
        """Test an empty condition list holds."""
        assert registry.evaluate_all([], request_for()) is True

    def test_evaluate_all_requires_every_condition(self, registry, request_for):
        """Test conditions are combined with AND."""
        admin = condition(ConditionType.USER_ATTRIBUTE, "role", ConditionOperator.EQUALS, "admin")
        sales = condition(ConditionType.USER_ATTRIBUTE, "department", ConditionOperator.EQUALS, "sales")

        assert registry.evaluate_all([admin, sales], request_for("u1")) is False

    def test_register_custom_evaluator(self, registry, request_for):
        """Test a condition type can be re-bound to another strategy."""
        class AlwaysTrue(ConditionEvaluator):
            def resolve(self, attribute, request):
                return "x"

        registry.register(ConditionType.ENVIRONMENTAL, AlwaysTrue())
        anything = condition(ConditionType.ENVIRONMENTAL, "anything", ConditionOperator.EQUALS, "x")

        assert registry.evaluate(anything, request_for()) is True

    def test_attribute_lookup_failure(self, request_for):
        """Test strategy failures surface as EvaluationError."""
        class UnavailableDirectory(InMemoryAttributeProvider):
            def get_user_attributes(self, principal_id):
                raise ConnectionError("directory unavailable")

        registry = ConditionRegistry(UnavailableDirectory())
        admin = condition(ConditionType.USER_ATTRIBUTE, "role", ConditionOperator.EQUALS, "admin")

        with pytest.raises(EvaluationError) as exc_info:
            registry.evaluate(admin, request_for())

        assert exc_info.value.code == "EVALUATION_FAILURE"
        assert exc_info.value.details["attribute"] == "role"
