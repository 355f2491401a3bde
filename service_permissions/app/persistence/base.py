"""
Durable store interface and the in-memory implementation.
"""

import threading
from typing import Any, Callable, Dict, List, Optional, Type

from shared.logging import get_logger
from .codec import kind_of


Predicate = Callable[[Any], bool]


class DurableStore:
    """Persistence collaborator for authorization records.

    Failures surface as ``PersistenceError``; the store never retries.
    """

    async def start(self):
        """Open connections. Override in subclasses."""

    async def stop(self):
        """Release connections. Override in subclasses."""

    async def save(self, entity: Any) -> None:
        raise NotImplementedError

    async def delete(self, entity_type: Type, entity_id: str) -> bool:
        raise NotImplementedError

    async def fetch_all(self, entity_type: Type, predicate: Optional[Predicate] = None) -> List[Any]:
        raise NotImplementedError

    async def health_check(self) -> bool:
        return True


class InMemoryStore(DurableStore):
    """Process-local store. Records are kept serialized, in insertion order."""

    def __init__(self):
        self.logger = get_logger("permissions.persistence.memory")
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    async def save(self, entity: Any) -> None:
        kind = kind_of(type(entity))
        payload = kind.dump(entity)
        with self._lock:
            self._tables.setdefault(kind.name, {})[kind.identity(entity)] = payload

    async def delete(self, entity_type: Type, entity_id: str) -> bool:
        kind = kind_of(entity_type)
        with self._lock:
            return self._tables.get(kind.name, {}).pop(entity_id, None) is not None

    async def fetch_all(self, entity_type: Type, predicate: Optional[Predicate] = None) -> List[Any]:
        kind = kind_of(entity_type)
        with self._lock:
            payloads = list(self._tables.get(kind.name, {}).values())

        entities = [kind.load(payload) for payload in payloads]
        if predicate is not None:
            entities = [e for e in entities if predicate(e)]
        return entities

    def count(self, entity_type: Type) -> int:
        kind = kind_of(entity_type)
        with self._lock:
            return len(self._tables.get(kind.name, {}))
