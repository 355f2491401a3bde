"""
Permissions service for the Access Layer.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, Query

from shared.base_service import BaseService
from shared.errors import AccessLayerException
from shared.logging import set_user_context

from .manager import AuthorizationManager
from .persistence.base import DurableStore, InMemoryStore
from .persistence.postgres import PostgreSQLPersistence
from .rules.models import TimeRange
from .schemas import (
    PermissionCheckRequest, PermissionCheckResponse, ComplexEvaluationRequest,
    RoleCreateRequest, RoleUpdateRequest, RoleAssignRequest, RoleRevokeRequest,
    PolicyCreateRequest, PolicyUpdateRequest, DirectPermissionRequest,
    ResourcePermissionsRequest, InheritPermissionsRequest, ACLCreateRequest
)


class PermissionsService(BaseService):
    """Permissions service implementation."""

    def __init__(self, manager: Optional[AuthorizationManager] = None):
        super().__init__("permissions", 8013)

        self.manager = manager or AuthorizationManager(
            durable_store=self._create_store(),
            metrics=self.metrics,
            cache_ttl_seconds=self.config.decision_cache_ttl_seconds,
            denied_attempts_threshold=self.config.denied_attempts_threshold,
            audit_queue_size=self.config.audit_queue_size,
            audit_retention=self.config.audit_retention_entries,
        )

        self._setup_permissions_routes()

    def _create_store(self) -> DurableStore:
        backend = self.config.persistence_backend.lower()
        if backend == "postgres":
            return PostgreSQLPersistence(
                self.config.postgres_dsn,
                min_size=self.config.postgres_min_pool_size,
                max_size=self.config.postgres_max_pool_size,
            )
        if backend != "memory":
            self.logger.warning("Unknown persistence backend, using memory", backend=backend)
        return InMemoryStore()

    def _setup_permissions_routes(self):
        """Set up permissions-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "permissions",
                "message": "Access Layer - Permissions Service",
                "version": "1.0.0",
                "capabilities": ["decisions", "roles", "policies", "acls", "audit"]
            }

        @self.app.post("/permissions/check", response_model=PermissionCheckResponse)
        async def check_permission(request: PermissionCheckRequest):
            """Decide whether a principal may perform an action on a resource."""
            set_user_context(request.user_id)
            result = self.manager.check_permission(
                request.user_id,
                request.action,
                request.resource.to_domain(),
                request.context.to_domain() if request.context else None
            )

            return PermissionCheckResponse(
                allowed=result.allowed,
                reason=result.reason,
                source=result.source,
                matched_id=result.matched_id,
                applied_policies=result.applied_policies,
                evaluation_time_ms=result.evaluation_time_ms,
                cache_hit=result.cache_hit,
                ttl_seconds=self.manager.cache.ttl_seconds
            )

        @self.app.post("/permissions/evaluate")
        async def evaluate_permissions(request: ComplexEvaluationRequest):
            """Evaluate several actions over several resources."""
            set_user_context(request.user_id)
            return self.manager.evaluate_complex(
                request.user_id,
                request.actions,
                [r.to_domain() for r in request.resources],
                [c.to_domain() for c in request.conditions],
                request.context.to_domain() if request.context else None
            )

        @self.app.get("/permissions/users/{user_id}")
        async def get_user_permissions(user_id: str):
            """Get the effective permissions of a user."""
            return self.manager.get_user_permissions(user_id)

        @self.app.post("/permissions/users/{user_id}/direct-permissions", status_code=201)
        async def grant_direct_permission(user_id: str, request: DirectPermissionRequest):
            """Grant or deny a permission directly to a user."""
            return await self.manager.grant_direct_permission(
                user_id, request.permission.to_domain(), request.granted_by
            )

        @self.app.delete("/permissions/users/{user_id}/direct-permissions/{permission_id}")
        async def revoke_direct_permission(
            user_id: str,
            permission_id: str,
            revoked_by: str = Query(..., description="Principal performing the revocation")
        ):
            """Remove a direct permission."""
            await self.manager.revoke_direct_permission(user_id, permission_id, revoked_by)
            return {"success": True, "message": "Direct permission revoked successfully"}

        @self.app.get("/permissions/roles")
        async def list_roles():
            """List role definitions."""
            roles = self.manager.list_roles()
            return {"roles": roles, "total": len(roles)}

        @self.app.post("/permissions/roles", status_code=201)
        async def create_role(request: RoleCreateRequest):
            """Create a custom role."""
            return await self.manager.create_role(
                name=request.name,
                description=request.description,
                permissions=[p.to_domain() for p in request.permissions],
                created_by=request.created_by,
                role_id=request.role_id
            )

        @self.app.put("/permissions/roles/{role_id}")
        async def update_role(role_id: str, request: RoleUpdateRequest):
            """Update a custom role."""
            return await self.manager.update_role(
                role_id,
                request.updated_by,
                name=request.name,
                description=request.description,
                permissions=(
                    [p.to_domain() for p in request.permissions]
                    if request.permissions is not None else None
                )
            )

        @self.app.post("/permissions/roles/assign", status_code=201)
        async def assign_role(request: RoleAssignRequest):
            """Assign a role to a user."""
            return await self.manager.assign_role(
                request.user_id,
                request.role_id,
                request.assigned_by,
                scope=request.scope,
                expiration_date=request.expiration_date
            )

        @self.app.post("/permissions/roles/revoke")
        async def revoke_role(request: RoleRevokeRequest):
            """Revoke a role from a user."""
            return await self.manager.revoke_role(
                request.user_id,
                request.role_id,
                request.revoked_by,
                reason=request.reason
            )

        @self.app.get("/permissions/policies")
        async def list_policies(
            active_only: bool = Query(False, description="Only return active policies")
        ):
            """List permission policies."""
            policies = self.manager.list_policies()
            if active_only:
                policies = [p for p in policies if p.is_active]
            return {"policies": policies, "total": len(policies)}

        @self.app.post("/permissions/policies", status_code=201)
        async def create_policy(request: PolicyCreateRequest):
            """Create a permission policy."""
            return await self.manager.create_policy(
                name=request.name,
                description=request.description,
                rules=[r.to_domain() for r in request.rules],
                scope=request.scope,
                created_by=request.created_by,
                priority=request.priority,
                is_active=request.is_active,
                scope_id=request.scope_id
            )

        @self.app.put("/permissions/policies/{policy_id}")
        async def update_policy(policy_id: str, request: PolicyUpdateRequest):
            """Update a permission policy."""
            return await self.manager.update_policy(
                policy_id,
                request.modified_by,
                name=request.name,
                description=request.description,
                rules=[r.to_domain() for r in request.rules] if request.rules is not None else None,
                is_active=request.is_active,
                priority=request.priority
            )

        @self.app.delete("/permissions/policies/{policy_id}")
        async def delete_policy(
            policy_id: str,
            deleted_by: str = Query(..., description="Principal performing the deletion")
        ):
            """Delete a permission policy."""
            await self.manager.delete_policy(policy_id, deleted_by)
            return {"success": True, "message": "Policy deleted successfully"}

        @self.app.put("/permissions/resources/{resource_id}")
        async def set_resource_permissions(resource_id: str, request: ResourcePermissionsRequest):
            """Replace the grant set of a resource."""
            return await self.manager.set_resource_permissions(
                resource_id,
                request.resource_type,
                [g.to_domain() for g in request.permissions],
                request.set_by,
                inherit_from_parent=request.inherit_from_parent
            )

        @self.app.post("/permissions/resources/{resource_id}/inherit")
        async def inherit_resource_permissions(resource_id: str, request: InheritPermissionsRequest):
            """Copy the parent's grant set onto a resource."""
            return await self.manager.inherit_resource_permissions(
                resource_id, request.parent_resource_id, request.inherited_by
            )

        @self.app.post("/permissions/acls", status_code=201)
        async def create_acl(request: ACLCreateRequest):
            """Create an access control list."""
            return await self.manager.create_access_control_list(
                request.resource_id,
                request.resource_type,
                [e.to_domain() for e in request.entries],
                request.created_by,
                inheritance_rules=[r.to_domain() for r in request.inheritance_rules]
            )

        @self.app.get("/permissions/audit/report")
        async def get_audit_report(
            time_range: TimeRange = Query(TimeRange.LAST_DAY, description="Reporting window"),
            include_permission_changes: bool = Query(True),
            include_access_attempts: bool = Query(True),
            include_violations: bool = Query(True)
        ):
            """Generate a security audit report."""
            return self.manager.generate_security_audit_report(
                time_range,
                include_permission_changes=include_permission_changes,
                include_access_attempts=include_access_attempts,
                include_violations=include_violations
            )

        @self.app.get("/permissions/audit/metrics")
        async def get_security_metrics(
            time_range: TimeRange = Query(TimeRange.LAST_DAY, description="Reporting window")
        ):
            """Get security metrics."""
            return self.manager.get_security_metrics(time_range)

        @self.app.get("/permissions/stats")
        async def get_stats():
            """Get permissions service statistics."""
            try:
                stats = self.manager.get_stats()
                stats["timestamp"] = datetime.now(timezone.utc).isoformat()
                return stats

            except AccessLayerException:
                raise
            except Exception as e:
                self.logger.error("Error getting stats", error=str(e))
                raise HTTPException(status_code=500, detail="Internal server error")

    async def _check_dependencies(self):
        """Check permissions service dependencies."""
        dependencies = {}

        store = self.manager.durable_store
        name = "postgres" if isinstance(store, PostgreSQLPersistence) else "store"
        try:
            if await store.health_check():
                dependencies[name] = "ok"
            else:
                dependencies[name] = "error"
        except Exception:
            dependencies[name] = "error"

        return dependencies

    async def start(self):
        """Start permissions service components."""
        await self.manager.start()

        stats = self.manager.policy_store.get_stats()
        self.logger.info(
            "Permissions service started",
            roles=stats["roles"],
            policies=stats["policies"],
            role_assignments=stats["role_assignments"]
        )

    async def stop(self):
        """Stop permissions service components."""
        await self.manager.stop()

        self.logger.info("Permissions service stopped")


def create_app():
    """Create permissions service application."""
    service = PermissionsService()
    return service.app


if __name__ == "__main__":
    service = PermissionsService()
    service.run()
