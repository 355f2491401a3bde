"""
Rules package.

Defines the permission model and the evaluation engine used by the
Permissions Service.

Modules of interest:
- models: Dataclasses for roles, policies, grants, ACLs and results.
- conditions: Attribute providers and per-type condition evaluators.
- engine: Fixed-precedence evaluation over a policy snapshot.
- defaults: System roles and policies.
"""
