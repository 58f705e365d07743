"""
Approval chain tracker: records decisions and evaluates the chain terms the
requisition took from its workflow at submission.

Chain evaluation:
  - only decisions from roles listed in approval_roles count
  - the latest decision per approver is the effective one
  - any effective rejection -> REJECTED
  - distinct effective approvals >= required_approvers_count -> APPROVED
  - otherwise IN_PROGRESS

Decisions for one requisition are serialized by locking the requisition row,
so two concurrent final approvals cannot both drive the transition.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.exceptions import (
    ChainAlreadyResolved,
    IdempotencyConflict,
    InvalidTransition,
    RoleNotEligible,
)
from reqflow.models.approval_decision import ApprovalDecision
from reqflow.models.enums import ChainStatus, Decision, RequisitionStatus, Severity
from reqflow.models.requisition import Requisition
from reqflow.services import audit_service
from reqflow.services.budget_service import log_project_ledger
from reqflow.services.requisition_service import get_requisition_for_tenant
from reqflow.services.state_machine import apply_transition
from reqflow.services.tenant_service import TenantContext

logger = structlog.get_logger()

RESOLVED_STATUSES = frozenset(
    {
        RequisitionStatus.APPROVED.value,
        RequisitionStatus.REJECTED.value,
        RequisitionStatus.PARTIALLY_RECEIVED.value,
        RequisitionStatus.COMPLETED.value,
    }
)
OPEN_STATUSES = frozenset(
    {
        RequisitionStatus.PENDING.value,
        RequisitionStatus.UNDER_REVIEW.value,
        RequisitionStatus.REVIEWED.value,
    }
)


@dataclass
class ChainState:
    status: ChainStatus
    approvals: int
    required: int
    approver_ids: list[str] = field(default_factory=list)
    rejected_by: Optional[str] = None


@dataclass
class DecisionOutcome:
    chain: ChainState
    requisition_status: RequisitionStatus
    decision_id: Optional[str] = None
    replayed: bool = False


def effective_decisions(
    decisions: Iterable[ApprovalDecision], approval_roles: Iterable[str]
) -> dict[str, ApprovalDecision]:
    """Latest qualifying decision per approver; input is in recording order."""
    roles = set(approval_roles)
    latest: dict[str, ApprovalDecision] = {}
    for decision in decisions:
        if decision.approver_role not in roles:
            continue
        latest[str(decision.approver_id)] = decision
    return latest


def evaluate_chain(decisions: Iterable[ApprovalDecision], terms) -> ChainState:
    """
    terms is anything with approval_roles and required_approvers_count: the
    requisition's submission-time snapshot, or a workflow.
    """
    effective = effective_decisions(decisions, terms.approval_roles or [])
    required = terms.required_approvers_count or 0

    for approver_id, decision in effective.items():
        if decision.decision == Decision.REJECT.value:
            return ChainState(
                status=ChainStatus.REJECTED,
                approvals=0,
                required=required,
                rejected_by=approver_id,
            )

    approvers = sorted(
        approver_id
        for approver_id, decision in effective.items()
        if decision.decision == Decision.APPROVE.value
    )
    status = ChainStatus.APPROVED if len(approvers) >= required else ChainStatus.IN_PROGRESS
    return ChainState(
        status=status,
        approvals=len(approvers),
        required=required,
        approver_ids=approvers,
    )


async def list_decisions(
    session: AsyncSession, requisition_id
) -> list[ApprovalDecision]:
    result = await session.execute(
        select(ApprovalDecision)
        .where(ApprovalDecision.requisition_id == requisition_id)
        .order_by(ApprovalDecision.decided_at, ApprovalDecision.id)
    )
    return list(result.scalars().all())


async def _find_by_idempotency_key(
    session: AsyncSession, requisition_id, approver_id, idempotency_key: str
) -> Optional[ApprovalDecision]:
    """Keys are scoped to one approver; another approver's key never matches."""
    result = await session.execute(
        select(ApprovalDecision).where(
            ApprovalDecision.requisition_id == requisition_id,
            ApprovalDecision.approver_id == approver_id,
            ApprovalDecision.idempotency_key == idempotency_key,
        )
    )
    return result.scalar_one_or_none()


def _chain_bound(requisition: Requisition) -> bool:
    return (
        requisition.workflow_id is not None
        and requisition.required_approvers_count is not None
    )


async def get_chain_state(
    session: AsyncSession, ctx: TenantContext, requisition_id
) -> tuple[ChainState, list[ApprovalDecision]]:
    requisition = await get_requisition_for_tenant(
        session, ctx, requisition_id, "read_decisions"
    )
    decisions = await list_decisions(session, requisition.id)
    if not _chain_bound(requisition):
        return ChainState(status=ChainStatus.IN_PROGRESS, approvals=0, required=0), decisions
    return evaluate_chain(decisions, requisition), decisions


async def record_approval_decision(
    session: AsyncSession,
    ctx: TenantContext,
    requisition_id,
    decision: Decision,
    comment: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> DecisionOutcome:
    decision = Decision(decision)
    requisition = await get_requisition_for_tenant(
        session, ctx, requisition_id, "record_decision", for_update=True
    )

    if idempotency_key:
        existing = await _find_by_idempotency_key(
            session, requisition.id, ctx.user_id, idempotency_key
        )
        if existing is not None:
            if existing.decision != decision.value:
                raise IdempotencyConflict(
                    recorded_decision=existing.decision,
                    requested_decision=decision.value,
                )
            chain = evaluate_chain(
                await list_decisions(session, requisition.id), requisition
            )
            logger.info(
                "approval_decision_replayed",
                requisition_id=str(requisition.id),
                decision_id=str(existing.id),
            )
            return DecisionOutcome(
                chain=chain,
                requisition_status=RequisitionStatus(requisition.status),
                decision_id=str(existing.id),
                replayed=True,
            )

    if requisition.status in RESOLVED_STATUSES:
        raise ChainAlreadyResolved(current_status=requisition.status)
    if requisition.status not in OPEN_STATUSES or not _chain_bound(requisition):
        raise InvalidTransition(
            f"No approval chain is open for a requisition in {requisition.status} status",
            current_status=requisition.status,
        )

    if ctx.workflow_role.value not in (requisition.approval_roles or []):
        raise RoleNotEligible(
            f"Role {ctx.workflow_role.value} is not part of this approval chain"
        )
    if str(requisition.submitted_by) == str(ctx.user_id):
        raise RoleNotEligible("Submitters cannot approve their own requisition")

    decisions = await list_decisions(session, requisition.id)
    record = ApprovalDecision(
        id=uuid.uuid4(),
        org_id=ctx.org_id,
        requisition_id=requisition.id,
        workflow_id=requisition.workflow_id,
        approver_id=ctx.user_id,
        approver_role=ctx.workflow_role.value,
        decision=decision.value,
        comment=comment,
        idempotency_key=idempotency_key,
    )
    session.add(record)
    await session.flush()
    decisions.append(record)

    chain = evaluate_chain(decisions, requisition)

    await audit_service.create_audit_event(
        session,
        audit_service.DECISION_RECORDED,
        Severity.INFO,
        f"{ctx.workflow_role.value} recorded {decision.value} on "
        f"{requisition.requisition_number}",
        actor_id=ctx.user_id,
        actor_email=ctx.email,
        org_id=ctx.org_id,
        resource_type="requisition",
        resource_id=requisition.id,
        action=decision.value,
        details={
            "chain_status": chain.status.value,
            "approvals": chain.approvals,
            "required": chain.required,
        },
    )

    status_changed = False
    if requisition.status == RequisitionStatus.PENDING.value:
        await apply_transition(
            session, ctx, requisition, RequisitionStatus.UNDER_REVIEW
        )
        status_changed = True

    if chain.status == ChainStatus.APPROVED:
        await apply_transition(
            session, ctx, requisition, RequisitionStatus.APPROVED,
            chain_status=chain.status,
        )
        status_changed = True
    elif chain.status == ChainStatus.REJECTED:
        await apply_transition(
            session, ctx, requisition, RequisitionStatus.REJECTED,
            chain_status=chain.status, reason=comment,
        )
        status_changed = True

    if status_changed:
        await log_project_ledger(session, ctx.org_id, requisition.project_id)

    logger.info(
        "approval_decision_recorded",
        requisition_id=str(requisition.id),
        approver_id=str(ctx.user_id),
        decision=decision.value,
        chain_status=chain.status.value,
        approvals=chain.approvals,
        required=chain.required,
    )
    return DecisionOutcome(
        chain=chain,
        requisition_status=RequisitionStatus(requisition.status),
        decision_id=str(record.id),
    )
