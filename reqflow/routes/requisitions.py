import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.database import get_db
from reqflow.middleware.authorization import require_workflow_roles
from reqflow.middleware.tenant import get_tenant_context
from reqflow.models.enums import RequisitionStatus
from reqflow.models.requisition import Requisition, RequisitionItem
from reqflow.schemas.common import PaginatedResponse, build_pagination, page_offset
from reqflow.schemas.requisition import (
    CancelRequest,
    ReceiptRequest,
    RequisitionCreate,
    RequisitionItemCreate,
    RequisitionItemResponse,
    RequisitionItemUpdate,
    RequisitionResponse,
    ReviewRequest,
)
from reqflow.services import requisition_service
from reqflow.services.tenant_service import TenantContext

logger = structlog.get_logger()
router = APIRouter()


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _item_to_response(item: RequisitionItem) -> RequisitionItemResponse:
    return RequisitionItemResponse(
        id=str(item.id),
        line_number=item.line_number,
        description=item.description,
        quantity=item.quantity,
        unit_price=item.unit_price,
        total_price=item.total_price,
        quantity_received=item.quantity_received or 0,
        expense_account_id=str(item.expense_account_id) if item.expense_account_id else None,
        notes=item.notes,
    )


def _to_response(
    req: Requisition, items: Optional[list[RequisitionItem]] = None
) -> RequisitionResponse:
    return RequisitionResponse(
        id=str(req.id),
        org_id=str(req.org_id),
        project_id=str(req.project_id),
        requisition_number=req.requisition_number,
        title=req.title,
        status=req.status,
        total_amount=req.total_amount,
        submitted_by=str(req.submitted_by),
        description=req.description,
        justification=req.justification,
        required_by=req.required_by,
        workflow_id=str(req.workflow_id) if req.workflow_id else None,
        items=[_item_to_response(i) for i in items or []],
        created_at=_iso(req.created_at) or "",
        updated_at=_iso(req.updated_at) or "",
        submitted_at=_iso(req.submitted_at),
        reviewed_at=_iso(req.reviewed_at),
        approved_at=_iso(req.approved_at),
        rejected_at=_iso(req.rejected_at),
        cancelled_at=_iso(req.cancelled_at),
        completed_at=_iso(req.completed_at),
    )


@router.get("", response_model=PaginatedResponse[RequisitionResponse])
async def list_requisitions(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    req_status: Optional[RequisitionStatus] = Query(None, alias="status"),
    project_id: Optional[uuid.UUID] = Query(None),
    mine: bool = Query(False),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    filters = [Requisition.org_id == ctx.org_id]
    if req_status:
        filters.append(Requisition.status == req_status.value)
    if project_id:
        filters.append(Requisition.project_id == project_id)
    if mine:
        filters.append(Requisition.submitted_by == ctx.user_id)
    # Other members' drafts stay private to their submitter.
    filters.append(
        (Requisition.status != RequisitionStatus.DRAFT.value)
        | (Requisition.submitted_by == ctx.user_id)
    )

    total = (
        await db.execute(select(func.count(Requisition.id)).where(*filters))
    ).scalar() or 0
    result = await db.execute(
        select(Requisition)
        .where(*filters)
        .order_by(Requisition.created_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )
    data = [_to_response(r) for r in result.scalars().all()]
    return PaginatedResponse(data=data, pagination=build_pagination(page, limit, total))


@router.get("/{requisition_id}", response_model=RequisitionResponse)
async def get_requisition(
    requisition_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    req = await requisition_service.get_requisition_for_tenant(
        db, ctx, requisition_id, "read"
    )
    items = await requisition_service.get_items(db, req.id)
    return _to_response(req, items)


@router.post("", response_model=RequisitionResponse, status_code=status.HTTP_201_CREATED)
async def create_requisition(
    body: RequisitionCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    req, items = await requisition_service.create_requisition(db, ctx, body)
    return _to_response(req, items)


@router.post(
    "/{requisition_id}/items",
    response_model=RequisitionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_item(
    requisition_id: uuid.UUID,
    body: RequisitionItemCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    req, items = await requisition_service.add_item(db, ctx, requisition_id, body)
    return _to_response(req, items)


@router.patch("/{requisition_id}/items/{item_id}", response_model=RequisitionResponse)
async def update_item(
    requisition_id: uuid.UUID,
    item_id: uuid.UUID,
    body: RequisitionItemUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    req, items = await requisition_service.update_item(
        db, ctx, requisition_id, item_id, body
    )
    return _to_response(req, items)


@router.delete("/{requisition_id}/items/{item_id}", response_model=RequisitionResponse)
async def remove_item(
    requisition_id: uuid.UUID,
    item_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    req, items = await requisition_service.remove_item(db, ctx, requisition_id, item_id)
    return _to_response(req, items)


# ---------- lifecycle ----------


@router.post("/{requisition_id}/submit", response_model=RequisitionResponse)
async def submit_requisition(
    requisition_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    logger.info("requisition_submit_request", requisition_id=str(requisition_id))
    req = await requisition_service.submit_requisition(db, ctx, requisition_id)
    items = await requisition_service.get_items(db, req.id)
    return _to_response(req, items)


@router.post("/{requisition_id}/review", response_model=RequisitionResponse)
async def review_requisition(
    requisition_id: uuid.UUID,
    body: ReviewRequest,
    ctx: TenantContext = Depends(require_workflow_roles(*requisition_service.REVIEW_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    req = await requisition_service.review_requisition(
        db, ctx, requisition_id, RequisitionStatus(body.stage), body.comment
    )
    return _to_response(req)


@router.post("/{requisition_id}/cancel", response_model=RequisitionResponse)
async def cancel_requisition(
    requisition_id: uuid.UUID,
    body: Optional[CancelRequest] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    reason = body.reason if body else None
    req = await requisition_service.cancel_requisition(db, ctx, requisition_id, reason)
    return _to_response(req)


@router.post("/{requisition_id}/receipts", response_model=RequisitionResponse)
async def record_receipt(
    requisition_id: uuid.UUID,
    body: ReceiptRequest,
    ctx: TenantContext = Depends(require_workflow_roles(*requisition_service.RECEIVING_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    req, items = await requisition_service.record_receipt(
        db, ctx, requisition_id, body.lines
    )
    return _to_response(req, items)
