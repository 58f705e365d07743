import uuid

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.config import settings
from reqflow.database import get_db
from reqflow.middleware.auth import get_current_user
from reqflow.middleware.authorization import require_org_admin
from reqflow.middleware.tenant import get_tenant_context
from reqflow.models.organization import Organization, OrganizationMember
from reqflow.schemas.organization import (
    MemberCreate,
    MemberResponse,
    MemberUpdate,
    OrganizationResponse,
    OrganizationSignup,
)
from reqflow.services import organization_service
from reqflow.services.rate_limit_service import enforce_rate_limit
from reqflow.services.tenant_service import TenantContext

logger = structlog.get_logger()
router = APIRouter()

SIGNUP_ENDPOINT = "organization_signup"


def client_identifier(request: Request) -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _org_to_response(org: Organization) -> OrganizationResponse:
    return OrganizationResponse(
        id=str(org.id),
        name=org.name,
        slug=org.slug,
        status=org.status,
        plan=org.plan,
        max_users=org.max_users,
        max_projects=org.max_projects,
        max_requisitions_per_month=org.max_requisitions_per_month,
        trial_ends_at=org.trial_ends_at.isoformat() if org.trial_ends_at else None,
        created_at=org.created_at.isoformat() if org.created_at else "",
    )


def _member_to_response(m: OrganizationMember) -> MemberResponse:
    return MemberResponse(
        id=str(m.id),
        org_id=str(m.org_id),
        user_id=str(m.user_id),
        role=m.role,
        workflow_role=m.workflow_role,
        is_active=m.is_active,
    )


@router.post("", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def signup_organization(
    body: OrganizationSignup,
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await enforce_rate_limit(
        SIGNUP_ENDPOINT,
        client_identifier(request),
        max_attempts=settings.SIGNUP_RATE_LIMIT_MAX_ATTEMPTS,
        window_seconds=settings.SIGNUP_RATE_LIMIT_WINDOW_SECONDS,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
    )
    org, _ = await organization_service.signup_organization(
        db,
        current_user["user_id"],
        current_user.get("email"),
        body.name,
        body.slug,
        body.plan,
    )
    return _org_to_response(org)


@router.get("/current", response_model=OrganizationResponse)
async def get_current_organization(
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    org = await organization_service.get_organization(db, ctx.org_id)
    return _org_to_response(org)


@router.get("/current/members", response_model=list[MemberResponse])
async def list_members(
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(OrganizationMember)
        .where(OrganizationMember.org_id == ctx.org_id)
        .order_by(OrganizationMember.created_at)
    )
    return [_member_to_response(m) for m in result.scalars().all()]


@router.post(
    "/current/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    body: MemberCreate,
    ctx: TenantContext = Depends(require_org_admin),
    db: AsyncSession = Depends(get_db),
):
    member = await organization_service.add_member(
        db, ctx, body.email, body.role, body.workflow_role
    )
    return _member_to_response(member)


@router.patch("/current/members/{member_id}", response_model=MemberResponse)
async def update_member(
    member_id: uuid.UUID,
    body: MemberUpdate,
    ctx: TenantContext = Depends(require_org_admin),
    db: AsyncSession = Depends(get_db),
):
    member = await organization_service.update_member(
        db,
        ctx,
        member_id,
        role=body.role,
        workflow_role=body.workflow_role,
        is_active=body.is_active,
    )
    return _member_to_response(member)
