from typing import List, Optional

from pydantic import BaseModel, Field

from reqflow.models.enums import ChainStatus, Decision, RequisitionStatus


class DecisionRequest(BaseModel):
    decision: Decision
    comment: Optional[str] = Field(None, max_length=1000)


class DecisionResponse(BaseModel):
    id: str
    approver_id: str
    approver_role: str
    decision: str
    comment: Optional[str] = None
    decided_at: Optional[str] = None

    model_config = {"from_attributes": True}


class ChainStateResponse(BaseModel):
    chain_status: ChainStatus
    approvals: int
    required: int
    approver_ids: List[str] = []
    rejected_by: Optional[str] = None


class DecisionOutcomeResponse(BaseModel):
    chain: ChainStateResponse
    requisition_status: RequisitionStatus
    decision_id: Optional[str] = None
    replayed: bool = False


class ChainWithDecisionsResponse(BaseModel):
    chain: ChainStateResponse
    decisions: List[DecisionResponse] = []
