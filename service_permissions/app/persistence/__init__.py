"""
Persistence package.

``DurableStore`` is the storage collaborator. ``InMemoryStore`` keeps
records in process; ``PostgreSQLPersistence`` stores them as JSONB
documents through asyncpg.
"""
