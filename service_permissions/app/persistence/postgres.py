"""
PostgreSQL persistence layer for the Permissions Service.
"""

import json
from typing import Any, List, Optional, Type

import asyncpg
from shared.logging import get_logger
from shared.errors import PersistenceError
from .base import DurableStore, Predicate
from .codec import ENTITY_KINDS, kind_of


TABLE_PREFIX = "permissions_"


class PostgreSQLPersistence(DurableStore):
    """Stores every record kind in its own table as a JSONB document."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("permissions.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30,
                init=self._init_connection
            )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise PersistenceError("Failed to start PostgreSQL persistence", {"error": str(e)}) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    @staticmethod
    async def _init_connection(conn):
        await conn.set_type_codec(
            "jsonb",
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog"
        )

    def _acquire(self):
        if self.pool is None:
            raise PersistenceError("PostgreSQL persistence is not started")
        return self.pool.acquire()

    async def _create_tables(self):
        """Create database tables."""
        async with self._acquire() as conn:
            for kind in ENTITY_KINDS.values():
                table = TABLE_PREFIX + kind.name
                await conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id VARCHAR(255) PRIMARY KEY,
                        seq BIGSERIAL NOT NULL,
                        payload JSONB NOT NULL,
                        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                    );
                """)
                await conn.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_seq ON {table}(seq);
                """)

    async def save(self, entity: Any) -> None:
        """Insert or replace a record. Replacing keeps its load order."""
        kind = kind_of(type(entity))
        entity_id = kind.identity(entity)
        try:
            async with self._acquire() as conn:
                await conn.execute(f"""
                    INSERT INTO {TABLE_PREFIX}{kind.name} (id, payload)
                    VALUES ($1, $2)
                    ON CONFLICT (id) DO UPDATE SET
                        payload = EXCLUDED.payload,
                        updated_at = NOW()
                """, entity_id, kind.dump(entity))

            self.logger.debug("Record saved", kind=kind.name, entity_id=entity_id)

        except PersistenceError:
            raise
        except Exception as e:
            self.logger.error("Error saving record", kind=kind.name, entity_id=entity_id, error=str(e))
            raise PersistenceError(
                f"Failed to save {kind.name} record",
                {"entity_id": entity_id, "error": str(e)}
            ) from e

    async def delete(self, entity_type: Type, entity_id: str) -> bool:
        kind = kind_of(entity_type)
        try:
            async with self._acquire() as conn:
                result = await conn.execute(f"""
                    DELETE FROM {TABLE_PREFIX}{kind.name} WHERE id = $1
                """, entity_id)

            if result == "DELETE 1":
                self.logger.info("Record deleted", kind=kind.name, entity_id=entity_id)
                return True
            self.logger.warning("Record not found for deletion", kind=kind.name, entity_id=entity_id)
            return False

        except PersistenceError:
            raise
        except Exception as e:
            self.logger.error("Error deleting record", kind=kind.name, entity_id=entity_id, error=str(e))
            raise PersistenceError(
                f"Failed to delete {kind.name} record",
                {"entity_id": entity_id, "error": str(e)}
            ) from e

    async def fetch_all(self, entity_type: Type, predicate: Optional[Predicate] = None) -> List[Any]:
        kind = kind_of(entity_type)
        try:
            async with self._acquire() as conn:
                rows = await conn.fetch(f"""
                    SELECT payload FROM {TABLE_PREFIX}{kind.name} ORDER BY seq ASC
                """)

        except PersistenceError:
            raise
        except Exception as e:
            self.logger.error("Error loading records", kind=kind.name, error=str(e))
            raise PersistenceError(f"Failed to load {kind.name} records", {"error": str(e)}) from e

        entities = [kind.load(row["payload"]) for row in rows]
        if predicate is not None:
            entities = [e for e in entities if predicate(e)]
        return entities

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self._acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
