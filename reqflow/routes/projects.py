import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reqflow.database import get_db
from reqflow.middleware.authorization import require_org_admin
from reqflow.middleware.tenant import get_tenant_context
from reqflow.models.project import Project
from reqflow.schemas.organization import ProjectCreate, ProjectResponse
from reqflow.services import organization_service
from reqflow.services.tenant_service import (
    TenantContext,
    ensure_same_tenant,
    raise_not_found_or_foreign,
)

router = APIRouter()


def _to_response(p: Project) -> ProjectResponse:
    return ProjectResponse(
        id=str(p.id),
        org_id=str(p.org_id),
        code=p.code,
        name=p.name,
        description=p.description,
        budget=p.budget,
        is_active=p.is_active,
        created_at=p.created_at.isoformat() if p.created_at else "",
    )


@router.get("", response_model=list[ProjectResponse])
async def list_projects(
    include_inactive: bool = Query(False),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    q = select(Project).where(Project.org_id == ctx.org_id)
    if not include_inactive:
        q = q.where(Project.is_active == True)  # noqa: E712
    result = await db.execute(q.order_by(Project.code))
    return [_to_response(p) for p in result.scalars().all()]


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Project).where(Project.id == project_id))
    project = result.scalar_one_or_none()
    if project is None:
        await raise_not_found_or_foreign(
            db, ctx, "projects", "project", project_id, "read", "Project not found"
        )
    await ensure_same_tenant(ctx, project.org_id, "project", project.id, "read")
    return _to_response(project)


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    body: ProjectCreate,
    ctx: TenantContext = Depends(require_org_admin),
    db: AsyncSession = Depends(get_db),
):
    project = await organization_service.create_project(
        db, ctx, body.code, body.name, body.budget, body.description
    )
    return _to_response(project)
