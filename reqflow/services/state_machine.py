"""
Requisition lifecycle state machine.

Allowed edges:
  DRAFT              -> PENDING
  PENDING            -> UNDER_REVIEW | REVIEWED | CANCELLED
  UNDER_REVIEW       -> APPROVED | REJECTED | CANCELLED
  REVIEWED           -> APPROVED | REJECTED | CANCELLED
  APPROVED           -> PARTIALLY_RECEIVED
  PARTIALLY_RECEIVED -> COMPLETED
REJECTED, CANCELLED and COMPLETED are terminal.

APPROVED and REJECTED are reachable only with a matching approval-chain result.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from reqflow.exceptions import InvalidTransition
from reqflow.models.enums import ChainStatus, RequisitionStatus, Severity
from reqflow.models.requisition import Requisition
from reqflow.services import audit_service
from reqflow.services.tenant_service import TenantContext, ensure_same_tenant

logger = structlog.get_logger()

S = RequisitionStatus

TRANSITIONS: dict[RequisitionStatus, frozenset[RequisitionStatus]] = {
    S.DRAFT: frozenset({S.PENDING}),
    S.PENDING: frozenset({S.UNDER_REVIEW, S.REVIEWED, S.CANCELLED}),
    S.UNDER_REVIEW: frozenset({S.APPROVED, S.REJECTED, S.CANCELLED}),
    S.REVIEWED: frozenset({S.APPROVED, S.REJECTED, S.CANCELLED}),
    S.APPROVED: frozenset({S.PARTIALLY_RECEIVED}),
    S.PARTIALLY_RECEIVED: frozenset({S.COMPLETED}),
    S.REJECTED: frozenset(),
    S.CANCELLED: frozenset(),
    S.COMPLETED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.REJECTED, S.CANCELLED, S.COMPLETED})

# Target status -> chain result that must accompany it
_CHAIN_GATED = {
    S.APPROVED: ChainStatus.APPROVED,
    S.REJECTED: ChainStatus.REJECTED,
}


def can_transition(current: RequisitionStatus, target: RequisitionStatus) -> bool:
    return RequisitionStatus(target) in TRANSITIONS[RequisitionStatus(current)]


def validate_transition(
    current: RequisitionStatus,
    target: RequisitionStatus,
    chain_status: Optional[ChainStatus] = None,
) -> None:
    current = RequisitionStatus(current)
    target = RequisitionStatus(target)
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move requisition from {current.value} to {target.value}",
            current_status=current.value,
            target_status=target.value,
        )
    required = _CHAIN_GATED.get(target)
    if required is not None and chain_status != required:
        raise InvalidTransition(
            f"{target.value} is reached only through the approval chain",
            current_status=current.value,
            target_status=target.value,
        )


def is_valid_path(statuses: Iterable[RequisitionStatus]) -> bool:
    """True when consecutive statuses are all allowed edges."""
    path = [RequisitionStatus(s) for s in statuses]
    return all(can_transition(a, b) for a, b in zip(path, path[1:]))


def _stamp(requisition: Requisition, target: RequisitionStatus, ctx: TenantContext):
    now = datetime.utcnow()
    if target == S.PENDING:
        requisition.submitted_at = now
    elif target in (S.UNDER_REVIEW, S.REVIEWED):
        requisition.reviewed_by = ctx.user_id
        requisition.reviewed_at = now
    elif target == S.APPROVED:
        requisition.approved_at = now
    elif target == S.REJECTED:
        requisition.rejected_at = now
    elif target == S.CANCELLED:
        requisition.cancelled_by = ctx.user_id
        requisition.cancelled_at = now
    elif target == S.COMPLETED:
        requisition.completed_at = now
    requisition.updated_at = now


async def apply_transition(
    session: AsyncSession,
    ctx: TenantContext,
    requisition: Requisition,
    target: RequisitionStatus,
    chain_status: Optional[ChainStatus] = None,
    reason: Optional[str] = None,
) -> RequisitionStatus:
    """
    Move a requisition to `target` inside the caller's transaction.

    Ownership is re-verified here, at the point of mutation. The status change
    and its audit event are flushed together.
    """
    await ensure_same_tenant(
        ctx, requisition.org_id, "requisition", requisition.id, "transition"
    )
    previous = RequisitionStatus(requisition.status)
    target = RequisitionStatus(target)
    validate_transition(previous, target, chain_status)

    requisition.status = target.value
    _stamp(requisition, target, ctx)

    details = {"reason": reason} if reason else {}
    if chain_status is not None:
        details["chain_status"] = ChainStatus(chain_status).value

    await audit_service.create_audit_event(
        session,
        audit_service.STATUS_CHANGED,
        Severity.INFO,
        f"Requisition {requisition.requisition_number} moved "
        f"from {previous.value} to {target.value}",
        actor_id=ctx.user_id,
        actor_email=ctx.email,
        org_id=ctx.org_id,
        resource_type="requisition",
        resource_id=requisition.id,
        action="transition",
        before_state={"status": previous.value},
        after_state={"status": target.value},
        details=details,
    )

    logger.info(
        "requisition_transitioned",
        requisition_id=str(requisition.id),
        org_id=str(ctx.org_id),
        from_status=previous.value,
        to_status=target.value,
    )
    return target
