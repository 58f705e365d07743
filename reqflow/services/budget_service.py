"""
Budget ledger: per-project spend derived from requisition statuses.

Buckets:
  spent        APPROVED + PARTIALLY_RECEIVED + COMPLETED
  pending      PENDING + REVIEWED
  under_review UNDER_REVIEW
DRAFT, REJECTED and CANCELLED requisitions are not counted.

Status and amount come from one grouped query, so a requisition is never
counted under one status with another status's amount.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Optional
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.config import settings
from reqflow.exceptions import BudgetExceeded, ResourceNotFound
from reqflow.models.enums import RequisitionStatus
from reqflow.models.project import Project
from reqflow.models.requisition import Requisition
from reqflow.services.tenant_service import (
    TenantContext,
    ensure_same_tenant,
    raise_not_found_or_foreign,
)

logger = structlog.get_logger()

SPENT_STATUSES = frozenset(
    {
        RequisitionStatus.APPROVED.value,
        RequisitionStatus.PARTIALLY_RECEIVED.value,
        RequisitionStatus.COMPLETED.value,
    }
)
PENDING_STATUSES = frozenset(
    {RequisitionStatus.PENDING.value, RequisitionStatus.REVIEWED.value}
)
UNDER_REVIEW_STATUSES = frozenset({RequisitionStatus.UNDER_REVIEW.value})

_CENT = Decimal("0.01")


@dataclass
class BudgetSummary:
    project_id: str
    budget: Decimal
    spent: Decimal
    pending: Decimal
    under_review: Decimal
    available: Decimal
    utilization_percentage: Decimal

    @property
    def committed(self) -> Decimal:
        return self.spent + self.pending + self.under_review

    def as_dict(self) -> dict:
        return {k: str(v) for k, v in asdict(self).items()}


def _bucket(totals: Mapping[str, Decimal], statuses: frozenset) -> Decimal:
    return sum(
        (Decimal(amount) for status, amount in totals.items() if status in statuses),
        Decimal("0"),
    )


def compute_budget_summary(
    project_id, budget: Decimal, totals_by_status: Mapping[str, Decimal]
) -> BudgetSummary:
    """Pure ledger arithmetic over {status: sum(total_amount)}."""
    budget = Decimal(budget or 0)
    spent = _bucket(totals_by_status, SPENT_STATUSES)
    pending = _bucket(totals_by_status, PENDING_STATUSES)
    under_review = _bucket(totals_by_status, UNDER_REVIEW_STATUSES)
    committed = spent + pending + under_review

    if budget > 0:
        utilization = (committed / budget * 100).quantize(
            _CENT, rounding=ROUND_HALF_UP
        )
    else:
        utilization = Decimal("0.00")

    return BudgetSummary(
        project_id=str(project_id),
        budget=budget,
        spent=spent,
        pending=pending,
        under_review=under_review,
        available=budget - committed,
        utilization_percentage=utilization,
    )


async def _totals_by_status(
    session: AsyncSession, org_id: uuid.UUID, project_id: uuid.UUID
) -> dict[str, Decimal]:
    result = await session.execute(
        select(
            Requisition.status,
            func.coalesce(func.sum(Requisition.total_amount), 0),
        )
        .where(
            Requisition.org_id == org_id,
            Requisition.project_id == project_id,
        )
        .group_by(Requisition.status)
    )
    return {status: Decimal(total) for status, total in result.all()}


async def _load_project(
    session: AsyncSession,
    project_id: uuid.UUID,
    for_update: bool = False,
    ctx: Optional[TenantContext] = None,
    action: str = "read",
) -> Project:
    query = select(Project).where(Project.id == project_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    project = result.scalar_one_or_none()
    if project is None:
        if ctx is not None:
            await raise_not_found_or_foreign(
                session, ctx, "projects", "project", project_id, action,
                "Project not found",
            )
        raise ResourceNotFound("Project not found")
    return project


async def get_budget_summary(
    session: AsyncSession, ctx: TenantContext, project_id: uuid.UUID
) -> BudgetSummary:
    project = await _load_project(session, project_id, ctx=ctx, action="read_budget")
    await ensure_same_tenant(
        ctx, project.org_id, "project", project.id, "read_budget"
    )
    totals = await _totals_by_status(session, ctx.org_id, project.id)
    return compute_budget_summary(project.id, project.budget, totals)


async def log_project_ledger(
    session: AsyncSession, org_id: uuid.UUID, project_id: uuid.UUID
) -> None:
    """
    Recompute the ledger after a status change and log it. The ledger is
    derived from requisition rows on every read, so nothing is stored here.
    Callers have already verified the tenant.
    """
    project = await _load_project(session, project_id)
    totals = await _totals_by_status(session, org_id, project_id)
    summary = compute_budget_summary(project.id, project.budget, totals)

    log = logger.warning if summary.available < 0 else logger.info
    log(
        "budget_ledger_recomputed",
        org_id=str(org_id),
        project_id=str(project_id),
        spent=str(summary.spent),
        pending=str(summary.pending),
        under_review=str(summary.under_review),
        available=str(summary.available),
        utilization_percentage=str(summary.utilization_percentage),
    )


async def check_submission_budget(
    session: AsyncSession, requisition: Requisition
) -> BudgetSummary:
    """
    Budget check run before DRAFT -> PENDING.

    Under the block_submission policy the project row is locked so concurrent
    submissions against one project are checked one at a time.
    """
    blocking = settings.BUDGET_POLICY == "block_submission"
    project = await _load_project(
        session, requisition.project_id, for_update=blocking
    )
    totals = await _totals_by_status(
        session, requisition.org_id, requisition.project_id
    )
    summary = compute_budget_summary(project.id, project.budget, totals)
    requested = Decimal(requisition.total_amount)

    if summary.available < requested:
        logger.warning(
            "budget_insufficient",
            requisition_id=str(requisition.id),
            project_id=str(project.id),
            requested=str(requested),
            available=str(summary.available),
            policy=settings.BUDGET_POLICY,
        )
        if blocking:
            raise BudgetExceeded(
                f"Insufficient budget: requested {requested}, "
                f"available {summary.available}",
                requested=str(requested),
                available=str(summary.available),
            )
    return summary
