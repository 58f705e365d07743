import uuid
from datetime import date
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class RequisitionItemCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    unit_price: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)
    expense_account_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(None, max_length=1000)


class RequisitionItemUpdate(BaseModel):
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    quantity: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    unit_price: Optional[Decimal] = Field(
        None, ge=0, max_digits=15, decimal_places=2
    )
    expense_account_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(None, max_length=1000)


class RequisitionCreate(BaseModel):
    project_id: uuid.UUID
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    justification: Optional[str] = None
    required_by: Optional[date] = None
    # Drafts may start empty; submission requires at least one item.
    items: List[RequisitionItemCreate] = Field(default_factory=list, max_length=100)


class ReviewRequest(BaseModel):
    stage: Literal["UNDER_REVIEW", "REVIEWED"] = "REVIEWED"
    comment: Optional[str] = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ReceiptLine(BaseModel):
    item_id: uuid.UUID
    quantity_received: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)


class ReceiptRequest(BaseModel):
    lines: List[ReceiptLine] = Field(..., min_length=1, max_length=100)


class RequisitionItemResponse(BaseModel):
    id: str
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    quantity_received: Decimal
    expense_account_id: Optional[str] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class RequisitionResponse(BaseModel):
    id: str
    org_id: str
    project_id: str
    requisition_number: str
    title: str
    status: str
    total_amount: Decimal
    submitted_by: str
    description: Optional[str] = None
    justification: Optional[str] = None
    required_by: Optional[date] = None
    workflow_id: Optional[str] = None
    items: List[RequisitionItemResponse] = []
    created_at: str
    updated_at: str
    submitted_at: Optional[str] = None
    reviewed_at: Optional[str] = None
    approved_at: Optional[str] = None
    rejected_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    completed_at: Optional[str] = None

    model_config = {"from_attributes": True}
