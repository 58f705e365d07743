from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.database import get_db, set_tenant_context
from reqflow.middleware.auth import get_current_user
from reqflow.services.tenant_service import TenantContext, resolve_tenant_context

ORG_HEADER = "X-Organization-ID"


async def get_tenant_context(
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    """
    Resolve the acting organization (header first, then token claim) and scope
    the request's DB session to it for the row-level policies.
    """
    requested = request.headers.get(ORG_HEADER) or current_user.get("org_id")
    ctx = await resolve_tenant_context(
        db, current_user["user_id"], requested, email=current_user.get("email")
    )
    await set_tenant_context(db, str(ctx.org_id))
    structlog.contextvars.bind_contextvars(
        org_id=str(ctx.org_id), user_id=str(ctx.user_id)
    )
    return ctx
