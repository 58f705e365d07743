import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from reqflow.database import get_db
from reqflow.middleware.tenant import get_tenant_context
from reqflow.schemas.approval import (
    ChainStateResponse,
    ChainWithDecisionsResponse,
    DecisionOutcomeResponse,
    DecisionRequest,
    DecisionResponse,
)
from reqflow.services import approval_service
from reqflow.services.approval_service import ChainState
from reqflow.services.tenant_service import TenantContext

router = APIRouter()


def _chain_to_response(chain: ChainState) -> ChainStateResponse:
    return ChainStateResponse(
        chain_status=chain.status,
        approvals=chain.approvals,
        required=chain.required,
        approver_ids=chain.approver_ids,
        rejected_by=chain.rejected_by,
    )


@router.post("/{requisition_id}/decisions", response_model=DecisionOutcomeResponse)
async def record_decision(
    requisition_id: uuid.UUID,
    body: DecisionRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=100),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    outcome = await approval_service.record_approval_decision(
        db,
        ctx,
        requisition_id,
        body.decision,
        comment=body.comment,
        idempotency_key=idempotency_key,
    )
    return DecisionOutcomeResponse(
        chain=_chain_to_response(outcome.chain),
        requisition_status=outcome.requisition_status,
        decision_id=outcome.decision_id,
        replayed=outcome.replayed,
    )


@router.get("/{requisition_id}/decisions", response_model=ChainWithDecisionsResponse)
async def list_decisions(
    requisition_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    chain, decisions = await approval_service.get_chain_state(db, ctx, requisition_id)
    return ChainWithDecisionsResponse(
        chain=_chain_to_response(chain),
        decisions=[
            DecisionResponse(
                id=str(d.id),
                approver_id=str(d.approver_id),
                approver_role=d.approver_role,
                decision=d.decision,
                comment=d.comment,
                decided_at=d.decided_at.isoformat() if d.decided_at else None,
            )
            for d in decisions
        ],
    )
