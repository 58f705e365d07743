"""
Approval workflow resolution.

A workflow applies to an amount when it is active and
amount_threshold_min <= amount <= amount_threshold_max (NULL max = unbounded).
Among applicable workflows the winner is chosen by, in order:
  1. lowest priority value
  2. narrowest range (unbounded counts as widest)
  3. earliest created_at
  4. lowest id
so the same inputs always select the same workflow.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.exceptions import NoApplicableWorkflow
from reqflow.models.approval_workflow import ApprovalWorkflow
from reqflow.models.enums import WorkflowRole
from reqflow.services.tenant_service import (
    TenantContext,
    ensure_same_tenant,
    raise_not_found_or_foreign,
)

logger = structlog.get_logger()

# Roles that may sit in a workflow's approval_roles
APPROVING_ROLES = frozenset(
    {WorkflowRole.REVIEWER, WorkflowRole.APPROVER, WorkflowRole.SUPER_ADMIN}
)

_INFINITY = Decimal("Infinity")


def workflow_matches(workflow: ApprovalWorkflow, amount: Decimal) -> bool:
    if not workflow.is_active:
        return False
    if amount < Decimal(workflow.amount_threshold_min):
        return False
    upper = workflow.amount_threshold_max
    return upper is None or amount <= Decimal(upper)


def workflow_sort_key(workflow: ApprovalWorkflow) -> tuple:
    if workflow.amount_threshold_max is None:
        width = _INFINITY
    else:
        width = Decimal(workflow.amount_threshold_max) - Decimal(
            workflow.amount_threshold_min
        )
    return (
        workflow.priority,
        width,
        workflow.created_at or datetime.min,
        str(workflow.id),
    )


def select_workflow(
    workflows: Iterable[ApprovalWorkflow], amount: Decimal
) -> Optional[ApprovalWorkflow]:
    amount = Decimal(amount)
    candidates = [w for w in workflows if workflow_matches(w, amount)]
    if not candidates:
        return None
    return min(candidates, key=workflow_sort_key)


def validate_workflow_definition(
    amount_threshold_min: Decimal,
    amount_threshold_max: Optional[Decimal],
    required_approvers_count: int,
    approval_roles: Sequence[str],
) -> list[str]:
    """Return a list of problems; empty when the definition is usable."""
    problems = []
    if amount_threshold_min < 0:
        problems.append("amount_threshold_min must be >= 0")
    if amount_threshold_max is not None and amount_threshold_max <= amount_threshold_min:
        problems.append("amount_threshold_max must be greater than amount_threshold_min")
    if required_approvers_count < 1:
        problems.append("required_approvers_count must be at least 1")
    if not approval_roles:
        problems.append("approval_roles must not be empty")
    bad_roles = [r for r in approval_roles if r not in {x.value for x in APPROVING_ROLES}]
    if bad_roles:
        problems.append(f"roles cannot approve: {', '.join(sorted(bad_roles))}")
    return problems


async def list_active_workflows(
    session: AsyncSession, org_id: uuid.UUID
) -> list[ApprovalWorkflow]:
    result = await session.execute(
        select(ApprovalWorkflow).where(
            ApprovalWorkflow.org_id == org_id,
            ApprovalWorkflow.is_active == True,  # noqa: E712
        )
    )
    return list(result.scalars().all())


async def resolve_workflow(
    session: AsyncSession, org_id: uuid.UUID, amount: Decimal
) -> ApprovalWorkflow:
    workflows = await list_active_workflows(session, org_id)
    workflow = select_workflow(workflows, amount)
    if workflow is None:
        logger.warning(
            "workflow_not_found", org_id=str(org_id), amount=str(amount)
        )
        raise NoApplicableWorkflow(amount=str(amount))

    logger.info(
        "workflow_resolved",
        org_id=str(org_id),
        amount=str(amount),
        workflow_id=str(workflow.id),
        workflow_name=workflow.workflow_name,
    )
    return workflow


async def get_workflow(
    session: AsyncSession, ctx: TenantContext, workflow_id: uuid.UUID, action: str
) -> ApprovalWorkflow:
    result = await session.execute(
        select(ApprovalWorkflow).where(ApprovalWorkflow.id == workflow_id)
    )
    workflow = result.scalar_one_or_none()
    if workflow is None:
        await raise_not_found_or_foreign(
            session, ctx, "approval_workflows", "approval_workflow",
            workflow_id, action, "Approval workflow not found",
        )
    await ensure_same_tenant(
        ctx, workflow.org_id, "approval_workflow", workflow.id, action
    )
    return workflow
