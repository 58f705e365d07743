"""
Requisition service: drafting, submission, review, cancellation and receipt.

All functions use the caller's session and only flush; get_db() commits.
Rows are loaded by id and then compared against the TenantContext. When the
row-level policy hides a foreign row, its owner is looked up instead, so the
attempt is still audited as cross-tenant rather than looking missing.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.exceptions import (
    EmptyLineItems,
    InvalidTransition,
    PlanLimitExceeded,
    ResourceNotFound,
    RoleNotEligible,
)
from reqflow.models.enums import RequisitionStatus, WorkflowRole
from reqflow.models.expense_account import ExpenseAccount
from reqflow.models.organization import Organization
from reqflow.models.project import Project
from reqflow.models.requisition import Requisition, RequisitionItem
from reqflow.schemas.requisition import (
    ReceiptLine,
    RequisitionCreate,
    RequisitionItemCreate,
    RequisitionItemUpdate,
)
from reqflow.services.budget_service import (
    check_submission_budget,
    log_project_ledger,
)
from reqflow.services.state_machine import apply_transition
from reqflow.services.tenant_service import (
    TenantContext,
    ensure_same_tenant,
    raise_not_found_or_foreign,
)
from reqflow.services.workflow_service import resolve_workflow

logger = structlog.get_logger()

REQ_PREFIX = "REQ"
_CENT = Decimal("0.01")

REVIEW_ROLES = frozenset(
    {WorkflowRole.REVIEWER, WorkflowRole.APPROVER, WorkflowRole.SUPER_ADMIN}
)
RECEIVING_ROLES = frozenset({WorkflowRole.STORE_MANAGER, WorkflowRole.SUPER_ADMIN})


def line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
    return (Decimal(quantity) * Decimal(unit_price)).quantize(
        _CENT, rounding=ROUND_HALF_UP
    )


def recalculate_totals(items: Sequence[RequisitionItem]) -> Decimal:
    """Refresh each item's total_price and return the requisition total."""
    total = Decimal("0.00")
    for item in items:
        item.total_price = line_total(item.quantity, item.unit_price)
        total += item.total_price
    return total


def next_requisition_number(year: int, existing_count: int) -> str:
    return f"{REQ_PREFIX}-{year}-{existing_count + 1:05d}"


# ---------- loading ----------


async def load_requisition(
    session: AsyncSession, requisition_id, for_update: bool = False
) -> Optional[Requisition]:
    query = select(Requisition).where(Requisition.id == requisition_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_requisition_for_tenant(
    session: AsyncSession,
    ctx: TenantContext,
    requisition_id,
    action: str,
    for_update: bool = False,
) -> Requisition:
    requisition = await load_requisition(session, requisition_id, for_update)
    if requisition is None:
        await raise_not_found_or_foreign(
            session, ctx, "requisitions", "requisition", requisition_id, action,
            "Requisition not found",
        )
    await ensure_same_tenant(
        ctx, requisition.org_id, "requisition", requisition.id, action
    )
    return requisition


async def get_items(session: AsyncSession, requisition_id) -> list[RequisitionItem]:
    result = await session.execute(
        select(RequisitionItem)
        .where(RequisitionItem.requisition_id == requisition_id)
        .order_by(RequisitionItem.line_number)
    )
    return list(result.scalars().all())


async def _check_expense_account(
    session: AsyncSession, ctx: TenantContext, expense_account_id: Optional[uuid.UUID]
) -> Optional[uuid.UUID]:
    if not expense_account_id:
        return None
    result = await session.execute(
        select(ExpenseAccount).where(ExpenseAccount.id == expense_account_id)
    )
    account = result.scalar_one_or_none()
    if account is None:
        await raise_not_found_or_foreign(
            session, ctx, "expense_accounts", "expense_account",
            expense_account_id, "reference", "Expense account not found",
        )
    await ensure_same_tenant(
        ctx, account.org_id, "expense_account", account.id, "reference"
    )
    return account.id


def _require_draft_owner(requisition: Requisition, ctx: TenantContext) -> None:
    if requisition.status != RequisitionStatus.DRAFT.value:
        raise InvalidTransition(
            "Line items can only change while the requisition is a DRAFT",
            current_status=requisition.status,
        )
    if str(requisition.submitted_by) != str(ctx.user_id):
        raise RoleNotEligible("Only the submitter can edit this requisition")


# ---------- drafting ----------


async def _enforce_monthly_limit(session: AsyncSession, ctx: TenantContext) -> None:
    org_result = await session.execute(
        select(Organization).where(Organization.id == ctx.org_id)
    )
    org = org_result.scalar_one()
    limit = org.max_requisitions_per_month
    if limit is None or limit < 0:
        return

    month_start = datetime.utcnow().replace(
        day=1, hour=0, minute=0, second=0, microsecond=0
    )
    count_result = await session.execute(
        select(func.count(Requisition.id)).where(
            Requisition.org_id == ctx.org_id,
            Requisition.created_at >= month_start,
        )
    )
    used = count_result.scalar() or 0
    if used >= limit:
        logger.warning(
            "plan_limit_reached",
            org_id=str(ctx.org_id),
            limit_name="max_requisitions_per_month",
            limit=limit,
        )
        raise PlanLimitExceeded(
            f"Monthly requisition limit of {limit} reached for plan {org.plan}",
            limit=limit,
        )


async def _generate_requisition_number(
    session: AsyncSession, org_id: uuid.UUID
) -> str:
    year = datetime.utcnow().year
    result = await session.execute(
        select(func.count(Requisition.id)).where(
            Requisition.org_id == org_id,
            Requisition.requisition_number.like(f"{REQ_PREFIX}-{year}-%"),
        )
    )
    return next_requisition_number(year, result.scalar() or 0)


def _build_item(
    ctx: TenantContext,
    requisition_id: uuid.UUID,
    line_number: int,
    data: RequisitionItemCreate,
    expense_account_id: Optional[uuid.UUID],
) -> RequisitionItem:
    return RequisitionItem(
        id=uuid.uuid4(),
        org_id=ctx.org_id,
        requisition_id=requisition_id,
        expense_account_id=expense_account_id,
        line_number=line_number,
        description=data.description,
        quantity=data.quantity,
        unit_price=data.unit_price,
        total_price=line_total(data.quantity, data.unit_price),
        quantity_received=Decimal("0"),
        notes=data.notes,
    )


async def create_requisition(
    session: AsyncSession, ctx: TenantContext, data: RequisitionCreate
) -> tuple[Requisition, list[RequisitionItem]]:
    project_result = await session.execute(
        select(Project).where(Project.id == data.project_id)
    )
    project = project_result.scalar_one_or_none()
    if project is None:
        await raise_not_found_or_foreign(
            session, ctx, "projects", "project", data.project_id,
            "create_requisition", "Project not found",
        )
    await ensure_same_tenant(ctx, project.org_id, "project", project.id, "create_requisition")
    if not project.is_active:
        raise InvalidTransition("Project is inactive")

    await _enforce_monthly_limit(session, ctx)

    requisition = Requisition(
        id=uuid.uuid4(),
        org_id=ctx.org_id,
        project_id=project.id,
        requisition_number=await _generate_requisition_number(session, ctx.org_id),
        title=data.title,
        description=data.description,
        justification=data.justification,
        required_by=data.required_by,
        status=RequisitionStatus.DRAFT.value,
        total_amount=Decimal("0.00"),
        submitted_by=ctx.user_id,
    )
    session.add(requisition)
    await session.flush()

    items = []
    for idx, item_data in enumerate(data.items, start=1):
        account_id = await _check_expense_account(
            session, ctx, item_data.expense_account_id
        )
        item = _build_item(ctx, requisition.id, idx, item_data, account_id)
        session.add(item)
        items.append(item)

    requisition.total_amount = recalculate_totals(items)
    await session.flush()

    logger.info(
        "requisition_created",
        requisition_id=str(requisition.id),
        requisition_number=requisition.requisition_number,
        org_id=str(ctx.org_id),
        items=len(items),
        total_amount=str(requisition.total_amount),
    )
    return requisition, items


async def add_item(
    session: AsyncSession,
    ctx: TenantContext,
    requisition_id,
    data: RequisitionItemCreate,
) -> tuple[Requisition, list[RequisitionItem]]:
    requisition = await get_requisition_for_tenant(
        session, ctx, requisition_id, "add_item", for_update=True
    )
    _require_draft_owner(requisition, ctx)

    items = await get_items(session, requisition.id)
    account_id = await _check_expense_account(session, ctx, data.expense_account_id)
    next_line = max((i.line_number for i in items), default=0) + 1
    item = _build_item(ctx, requisition.id, next_line, data, account_id)
    session.add(item)
    items.append(item)

    requisition.total_amount = recalculate_totals(items)
    await session.flush()
    logger.info(
        "requisition_item_added",
        requisition_id=str(requisition.id),
        line_number=next_line,
        total_amount=str(requisition.total_amount),
    )
    return requisition, items


def _find_item(items: Sequence[RequisitionItem], item_id) -> RequisitionItem:
    for item in items:
        if str(item.id) == str(item_id):
            return item
    raise ResourceNotFound("Requisition item not found")


async def update_item(
    session: AsyncSession,
    ctx: TenantContext,
    requisition_id,
    item_id,
    data: RequisitionItemUpdate,
) -> tuple[Requisition, list[RequisitionItem]]:
    requisition = await get_requisition_for_tenant(
        session, ctx, requisition_id, "update_item", for_update=True
    )
    _require_draft_owner(requisition, ctx)

    items = await get_items(session, requisition.id)
    item = _find_item(items, item_id)
    changes = data.model_dump(exclude_unset=True)
    if "expense_account_id" in changes:
        item.expense_account_id = await _check_expense_account(
            session, ctx, changes.pop("expense_account_id")
        )
    for field, value in changes.items():
        setattr(item, field, value)

    requisition.total_amount = recalculate_totals(items)
    await session.flush()
    logger.info(
        "requisition_item_updated",
        requisition_id=str(requisition.id),
        item_id=str(item.id),
        total_amount=str(requisition.total_amount),
    )
    return requisition, items


async def remove_item(
    session: AsyncSession, ctx: TenantContext, requisition_id, item_id
) -> tuple[Requisition, list[RequisitionItem]]:
    requisition = await get_requisition_for_tenant(
        session, ctx, requisition_id, "remove_item", for_update=True
    )
    _require_draft_owner(requisition, ctx)

    items = await get_items(session, requisition.id)
    item = _find_item(items, item_id)
    await session.delete(item)
    remaining = [i for i in items if i is not item]

    requisition.total_amount = recalculate_totals(remaining)
    await session.flush()
    logger.info(
        "requisition_item_removed",
        requisition_id=str(requisition.id),
        item_id=str(item_id),
        total_amount=str(requisition.total_amount),
    )
    return requisition, remaining


# ---------- lifecycle ----------


async def submit_requisition(
    session: AsyncSession, ctx: TenantContext, requisition_id
) -> Requisition:
    """DRAFT -> PENDING: items and total, budget policy, workflow binding."""
    requisition = await get_requisition_for_tenant(
        session, ctx, requisition_id, "submit", for_update=True
    )
    if requisition.status != RequisitionStatus.DRAFT.value:
        raise InvalidTransition(
            f"Cannot submit a requisition in {requisition.status} status",
            current_status=requisition.status,
            target_status=RequisitionStatus.PENDING.value,
        )
    if str(requisition.submitted_by) != str(ctx.user_id):
        raise RoleNotEligible("Only the submitter can submit this requisition")

    items = await get_items(session, requisition.id)
    total = recalculate_totals(items)
    if not items or total <= 0:
        raise EmptyLineItems()
    requisition.total_amount = total

    await check_submission_budget(session, requisition)
    workflow = await resolve_workflow(session, ctx.org_id, total)
    requisition.workflow_id = workflow.id
    requisition.approval_roles = list(workflow.approval_roles)
    requisition.required_approvers_count = workflow.required_approvers_count

    await apply_transition(session, ctx, requisition, RequisitionStatus.PENDING)
    await log_project_ledger(session, ctx.org_id, requisition.project_id)

    logger.info(
        "requisition_submitted",
        requisition_id=str(requisition.id),
        requisition_number=requisition.requisition_number,
        workflow_id=str(workflow.id),
        total_amount=str(total),
    )
    return requisition


async def review_requisition(
    session: AsyncSession,
    ctx: TenantContext,
    requisition_id,
    stage: RequisitionStatus,
    comment: Optional[str] = None,
) -> Requisition:
    """PENDING -> UNDER_REVIEW or REVIEWED, by a reviewing role."""
    stage = RequisitionStatus(stage)
    if stage not in (RequisitionStatus.UNDER_REVIEW, RequisitionStatus.REVIEWED):
        raise InvalidTransition(f"{stage.value} is not a review stage")

    requisition = await get_requisition_for_tenant(
        session, ctx, requisition_id, "review", for_update=True
    )
    if ctx.workflow_role not in REVIEW_ROLES:
        raise RoleNotEligible("Your role cannot review requisitions")
    if str(requisition.submitted_by) == str(ctx.user_id):
        raise RoleNotEligible("Submitters cannot review their own requisition")

    await apply_transition(session, ctx, requisition, stage, reason=comment)
    await log_project_ledger(session, ctx.org_id, requisition.project_id)
    return requisition


async def cancel_requisition(
    session: AsyncSession,
    ctx: TenantContext,
    requisition_id,
    reason: Optional[str] = None,
) -> Requisition:
    requisition = await get_requisition_for_tenant(
        session, ctx, requisition_id, "cancel", for_update=True
    )
    is_owner = str(requisition.submitted_by) == str(ctx.user_id)
    if not (is_owner or ctx.is_org_admin):
        raise RoleNotEligible("Only the submitter or an administrator can cancel")

    await apply_transition(
        session, ctx, requisition, RequisitionStatus.CANCELLED, reason=reason
    )
    await log_project_ledger(session, ctx.org_id, requisition.project_id)
    return requisition


async def record_receipt(
    session: AsyncSession,
    ctx: TenantContext,
    requisition_id,
    lines: Sequence[ReceiptLine],
) -> tuple[Requisition, list[RequisitionItem]]:
    """
    Record goods received against an APPROVED or PARTIALLY_RECEIVED requisition.

    The first receipt moves APPROVED to PARTIALLY_RECEIVED; once every item is
    fully received the requisition moves on to COMPLETED.
    """
    requisition = await get_requisition_for_tenant(
        session, ctx, requisition_id, "receive", for_update=True
    )
    if ctx.workflow_role not in RECEIVING_ROLES:
        raise RoleNotEligible("Your role cannot record receipts")
    if requisition.status not in (
        RequisitionStatus.APPROVED.value,
        RequisitionStatus.PARTIALLY_RECEIVED.value,
    ):
        raise InvalidTransition(
            f"Cannot receive goods for a requisition in {requisition.status} status",
            current_status=requisition.status,
        )

    items = await get_items(session, requisition.id)
    for line in lines:
        item = _find_item(items, line.item_id)
        received = Decimal(item.quantity_received or 0) + line.quantity_received
        if received > Decimal(item.quantity):
            raise InvalidTransition(
                f"Line {item.line_number}: received quantity would exceed ordered quantity",
                line_number=item.line_number,
            )
        item.quantity_received = received

    if requisition.status == RequisitionStatus.APPROVED.value:
        await apply_transition(
            session, ctx, requisition, RequisitionStatus.PARTIALLY_RECEIVED
        )

    if all(Decimal(i.quantity_received) >= Decimal(i.quantity) for i in items):
        await apply_transition(session, ctx, requisition, RequisitionStatus.COMPLETED)

    await session.flush()
    await log_project_ledger(session, ctx.org_id, requisition.project_id)
    logger.info(
        "requisition_receipt_recorded",
        requisition_id=str(requisition.id),
        lines=len(lines),
        status=requisition.status,
    )
    return requisition, items
