"""
Tenant context: which organization a request acts in, and the isolation guard.

The organization is never ambient: a TenantContext is resolved once per request
and passed explicitly into every core call. Every mutation re-checks the
target row's org_id against it (ensure_same_tenant) even when the query that
loaded the row was already scoped.
"""

from dataclasses import dataclass
from typing import Any, NoReturn, Optional
import uuid

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.exceptions import (
    AccessDenied,
    NoOrganizationSelected,
    OrganizationInactive,
    ResourceNotFound,
    TenantMismatch,
)
from reqflow.models.enums import OrganizationStatus, OrgRole, WorkflowRole
from reqflow.models.organization import Organization, OrganizationMember
from reqflow.services import audit_service

logger = structlog.get_logger()

_INACTIVE_STATUSES = {
    OrganizationStatus.SUSPENDED.value,
    OrganizationStatus.CANCELLED.value,
}


@dataclass(frozen=True)
class TenantContext:
    org_id: uuid.UUID
    user_id: uuid.UUID
    workflow_role: WorkflowRole
    org_role: OrgRole
    email: Optional[str] = None

    @property
    def is_org_admin(self) -> bool:
        return (
            self.org_role in (OrgRole.OWNER, OrgRole.ADMIN)
            or self.workflow_role == WorkflowRole.SUPER_ADMIN
        )


def current_org_id(ctx: Optional[TenantContext]) -> uuid.UUID:
    """Fail closed: no context means no organization, never a default one."""
    if ctx is None or ctx.org_id is None:
        raise NoOrganizationSelected()
    return ctx.org_id


def _parse_org_id(value: Any) -> uuid.UUID:
    if value is None or value == "":
        raise NoOrganizationSelected()
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise NoOrganizationSelected("Organization identifier is malformed")


async def resolve_tenant_context(
    session: AsyncSession,
    user_id: str,
    requested_org_id: Any,
    email: Optional[str] = None,
) -> TenantContext:
    """
    Resolve the acting organization for a user.

    The user must be an active member. Selecting an organization the user does
    not belong to is treated as a cross-tenant attempt: audited, then denied.
    """
    org_id = _parse_org_id(requested_org_id)
    user_id = uuid.UUID(str(user_id))

    result = await session.execute(
        select(OrganizationMember, Organization)
        .join(Organization, Organization.id == OrganizationMember.org_id)
        .where(
            OrganizationMember.user_id == user_id,
            OrganizationMember.org_id == org_id,
            OrganizationMember.is_active == True,  # noqa: E712
        )
    )
    row = result.first()
    if row is None:
        await audit_service.record_cross_org_access(
            None,
            resource_type="organization",
            resource_id=org_id,
            resource_org_id=org_id,
            action="select_organization",
            actor_id=user_id,
            actor_email=email,
        )
        raise AccessDenied()

    member, org = row
    if org.status in _INACTIVE_STATUSES:
        logger.warning(
            "tenant_inactive_org", org_id=str(org.id), status=org.status
        )
        raise OrganizationInactive()

    return TenantContext(
        org_id=org.id,
        user_id=user_id,
        workflow_role=WorkflowRole(member.workflow_role),
        org_role=OrgRole(member.role),
        email=email,
    )


async def ensure_same_tenant(
    ctx: TenantContext,
    resource_org_id: Any,
    resource_type: str,
    resource_id: Any,
    action: str,
) -> None:
    """Audit-then-deny when a resource belongs to another organization."""
    org_id = current_org_id(ctx)
    if str(resource_org_id) == str(org_id):
        return

    await audit_service.record_cross_org_access(
        ctx,
        resource_type=resource_type,
        resource_id=resource_id,
        resource_org_id=resource_org_id,
        action=action,
    )
    logger.warning(
        "cross_org_access_blocked",
        org_id=str(org_id),
        user_id=str(ctx.user_id),
        resource_type=resource_type,
        resource_id=str(resource_id),
        action=action,
    )
    raise TenantMismatch()


async def raise_not_found_or_foreign(
    session: AsyncSession,
    ctx: TenantContext,
    table: str,
    resource_type: str,
    resource_id: Any,
    action: str,
    message: str,
) -> NoReturn:
    """
    Called when a lookup by id came back empty.

    Under org_isolation a row of another organization is invisible to the
    scoped session, so the owner is asked of resource_org_id() (SECURITY
    DEFINER). A foreign owner is a cross-tenant attempt: audited, then denied.
    Only a row that does not exist at all becomes ResourceNotFound.
    """
    try:
        rid = uuid.UUID(str(resource_id))
    except (ValueError, TypeError):
        raise ResourceNotFound(message)

    result = await session.execute(
        text("SELECT public.resource_org_id(:table_name, :resource_id)"),
        {"table_name": table, "resource_id": rid},
    )
    owner_org_id = result.scalar()
    if owner_org_id is not None:
        await ensure_same_tenant(ctx, owner_org_id, resource_type, rid, action)
    raise ResourceNotFound(message)
