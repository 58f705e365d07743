from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from reqflow.models.enums import WorkflowRole


class WorkflowCreate(BaseModel):
    workflow_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    amount_threshold_min: Decimal = Field(Decimal("0"), ge=0, max_digits=15, decimal_places=2)
    amount_threshold_max: Optional[Decimal] = Field(
        None, gt=0, max_digits=15, decimal_places=2
    )
    required_approvers_count: int = Field(1, ge=1, le=20)
    approval_roles: List[WorkflowRole] = Field(..., min_length=1)
    priority: int = Field(0, ge=0)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_range(self):
        if (
            self.amount_threshold_max is not None
            and self.amount_threshold_max <= self.amount_threshold_min
        ):
            raise ValueError(
                "amount_threshold_max must be greater than amount_threshold_min"
            )
        return self


class WorkflowUpdate(BaseModel):
    workflow_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    amount_threshold_min: Optional[Decimal] = Field(
        None, ge=0, max_digits=15, decimal_places=2
    )
    amount_threshold_max: Optional[Decimal] = Field(
        None, gt=0, max_digits=15, decimal_places=2
    )
    required_approvers_count: Optional[int] = Field(None, ge=1, le=20)
    approval_roles: Optional[List[WorkflowRole]] = Field(None, min_length=1)
    priority: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class WorkflowResponse(BaseModel):
    id: str
    org_id: str
    workflow_name: str
    description: Optional[str] = None
    amount_threshold_min: Decimal
    amount_threshold_max: Optional[Decimal] = None
    required_approvers_count: int
    approval_roles: List[str]
    priority: int
    is_active: bool
    created_at: str

    model_config = {"from_attributes": True}
