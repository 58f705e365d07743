import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.database import get_db
from reqflow.exceptions import InvalidWorkflowDefinition
from reqflow.middleware.authorization import require_org_admin
from reqflow.middleware.tenant import get_tenant_context
from reqflow.models.approval_workflow import ApprovalWorkflow
from reqflow.schemas.workflow import WorkflowCreate, WorkflowResponse, WorkflowUpdate
from reqflow.services import workflow_service
from reqflow.services.tenant_service import TenantContext

logger = structlog.get_logger()
router = APIRouter()


def _to_response(wf: ApprovalWorkflow) -> WorkflowResponse:
    return WorkflowResponse(
        id=str(wf.id),
        org_id=str(wf.org_id),
        workflow_name=wf.workflow_name,
        description=wf.description,
        amount_threshold_min=wf.amount_threshold_min,
        amount_threshold_max=wf.amount_threshold_max,
        required_approvers_count=wf.required_approvers_count,
        approval_roles=list(wf.approval_roles or []),
        priority=wf.priority,
        is_active=wf.is_active,
        created_at=wf.created_at.isoformat() if wf.created_at else "",
    )


def _validate(wf: ApprovalWorkflow) -> None:
    problems = workflow_service.validate_workflow_definition(
        Decimal(wf.amount_threshold_min),
        Decimal(wf.amount_threshold_max) if wf.amount_threshold_max is not None else None,
        wf.required_approvers_count,
        wf.approval_roles,
    )
    if problems:
        raise InvalidWorkflowDefinition("; ".join(problems), problems=problems)


@router.get("", response_model=list[WorkflowResponse])
async def list_workflows(
    include_inactive: bool = Query(False),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    q = select(ApprovalWorkflow).where(ApprovalWorkflow.org_id == ctx.org_id)
    if not include_inactive:
        q = q.where(ApprovalWorkflow.is_active == True)  # noqa: E712
    result = await db.execute(
        q.order_by(ApprovalWorkflow.priority, ApprovalWorkflow.amount_threshold_min)
    )
    return [_to_response(wf) for wf in result.scalars().all()]


@router.get("/resolve", response_model=WorkflowResponse)
async def resolve_workflow(
    amount: Decimal = Query(..., ge=0),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    wf = await workflow_service.resolve_workflow(db, ctx.org_id, amount)
    return _to_response(wf)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    return _to_response(await workflow_service.get_workflow(db, ctx, workflow_id, "read"))


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    body: WorkflowCreate,
    ctx: TenantContext = Depends(require_org_admin),
    db: AsyncSession = Depends(get_db),
):
    wf = ApprovalWorkflow(
        id=uuid.uuid4(),
        org_id=ctx.org_id,
        workflow_name=body.workflow_name,
        description=body.description,
        amount_threshold_min=body.amount_threshold_min,
        amount_threshold_max=body.amount_threshold_max,
        required_approvers_count=body.required_approvers_count,
        approval_roles=[r.value for r in body.approval_roles],
        priority=body.priority,
        is_active=body.is_active,
    )
    _validate(wf)
    db.add(wf)
    await db.flush()
    logger.info(
        "workflow_created",
        org_id=str(ctx.org_id),
        workflow_id=str(wf.id),
        priority=wf.priority,
    )
    return _to_response(wf)


@router.patch("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: uuid.UUID,
    body: WorkflowUpdate,
    ctx: TenantContext = Depends(require_org_admin),
    db: AsyncSession = Depends(get_db),
):
    wf = await workflow_service.get_workflow(db, ctx, workflow_id, "update")
    changes = body.model_dump(exclude_unset=True)
    if "approval_roles" in changes and changes["approval_roles"] is not None:
        changes["approval_roles"] = [r.value for r in body.approval_roles]
    for field, value in changes.items():
        setattr(wf, field, value)
    _validate(wf)
    await db.flush()
    logger.info(
        "workflow_updated",
        org_id=str(ctx.org_id),
        workflow_id=str(wf.id),
        fields=sorted(changes),
    )
    return _to_response(wf)


@router.delete("/{workflow_id}", response_model=WorkflowResponse)
async def deactivate_workflow(
    workflow_id: uuid.UUID,
    ctx: TenantContext = Depends(require_org_admin),
    db: AsyncSession = Depends(get_db),
):
    # Requisitions keep a reference to their bound workflow, so rows are never removed.
    wf = await workflow_service.get_workflow(db, ctx, workflow_id, "deactivate")
    wf.is_active = False
    await db.flush()
    logger.info("workflow_deactivated", org_id=str(ctx.org_id), workflow_id=str(wf.id))
    return _to_response(wf)
