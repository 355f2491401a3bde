"""
Serialization of domain records for durable storage.

Records are stored as JSON documents keyed by identity. pydantic's
``TypeAdapter`` handles the dataclass <-> JSON conversion, including enums,
datetimes and nested tuples.
"""

from dataclasses import dataclass
from typing import Any, Dict, Type

from pydantic import TypeAdapter

from ..rules.models import (
    RoleDefinition, PermissionPolicy, RoleAssignment, DirectPermission,
    ResourcePermissions, AccessControlList
)
from ..audit.models import PermissionAuditLog


@dataclass(frozen=True)
class EntityKind:
    """How one record type is named, keyed and (de)serialized."""
    name: str
    entity_type: Type
    key: str

    @property
    def adapter(self) -> TypeAdapter:
        return _ADAPTERS[self.entity_type]

    def identity(self, entity: Any) -> str:
        return str(getattr(entity, self.key))

    def dump(self, entity: Any) -> Dict[str, Any]:
        return self.adapter.dump_python(entity, mode="json")

    def load(self, payload: Dict[str, Any]) -> Any:
        return self.adapter.validate_python(payload)


ENTITY_KINDS: Dict[Type, EntityKind] = {
    kind.entity_type: kind
    for kind in (
        EntityKind("roles", RoleDefinition, "id"),
        EntityKind("policies", PermissionPolicy, "id"),
        EntityKind("role_assignments", RoleAssignment, "id"),
        EntityKind("direct_permissions", DirectPermission, "id"),
        EntityKind("resource_permissions", ResourcePermissions, "resource_id"),
        EntityKind("access_control_lists", AccessControlList, "id"),
        EntityKind("audit_logs", PermissionAuditLog, "id"),
    )
}

_ADAPTERS: Dict[Type, TypeAdapter] = {
    entity_type: TypeAdapter(entity_type) for entity_type in ENTITY_KINDS
}


def kind_of(entity_type: Type) -> EntityKind:
    try:
        return ENTITY_KINDS[entity_type]
    except KeyError:
        raise TypeError(f"Unsupported entity type: {entity_type.__name__}") from None
