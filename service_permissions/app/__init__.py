"""
Permissions Service package for the Access Layer.

This package decides whether a principal may perform an action on a
resource and records why. It provides:

- app.main: API surface for decisions, administration, audit and health.
- app.manager: Decision path and administrative mutations.
- app.rules: Domain models, condition evaluators and the precedence engine.
- app.store: Copy-on-write policy snapshots.
- app.cache: In-process decision cache with targeted invalidation.
- app.audit: Append-only audit log and security reporting.
- app.persistence: Durable storage (in-memory and PostgreSQL).

Guidelines:
- Decisions fail closed; internal errors deny and are logged.
- Mutations swap the snapshot and invalidate the cache atomically.
- Keep evaluation deterministic for a fixed snapshot.
"""
