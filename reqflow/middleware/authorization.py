from fastapi import Depends

from reqflow.exceptions import RoleNotEligible
from reqflow.middleware.tenant import get_tenant_context
from reqflow.models.enums import WorkflowRole
from reqflow.services.tenant_service import TenantContext


def require_workflow_roles(*allowed_roles: WorkflowRole):
    """
    Dependency factory gating a route on the caller's per-organization
    workflow role.

        @router.post("/{id}/receipts")
        async def receive(ctx = Depends(require_workflow_roles(WorkflowRole.STORE_MANAGER))):
    """
    allowed = {WorkflowRole(r) for r in allowed_roles}

    async def check_role(
        ctx: TenantContext = Depends(get_tenant_context),
    ) -> TenantContext:
        if ctx.workflow_role not in allowed:
            raise RoleNotEligible(
                f"Role '{ctx.workflow_role.value}' cannot perform this action"
            )
        return ctx

    return check_role


async def require_org_admin(
    ctx: TenantContext = Depends(get_tenant_context),
) -> TenantContext:
    """Owners, admins and super_admins manage organization configuration."""
    if not ctx.is_org_admin:
        raise RoleNotEligible("Organization administrator role required")
    return ctx
