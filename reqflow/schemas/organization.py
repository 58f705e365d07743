from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from reqflow.models.enums import OrgRole, Plan, WorkflowRole


class OrganizationSignup(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    slug: str = Field(..., min_length=2, max_length=50, pattern=r"^[a-z0-9][a-z0-9-]*$")
    plan: Plan = Plan.FREE


class OrganizationResponse(BaseModel):
    id: str
    name: str
    slug: str
    status: str
    plan: str
    max_users: int
    max_projects: int
    max_requisitions_per_month: int
    trial_ends_at: Optional[str] = None
    created_at: str

    model_config = {"from_attributes": True}


class MemberCreate(BaseModel):
    email: EmailStr
    role: OrgRole = OrgRole.MEMBER
    workflow_role: WorkflowRole = WorkflowRole.SUBMITTER


class MemberUpdate(BaseModel):
    role: Optional[OrgRole] = None
    workflow_role: Optional[WorkflowRole] = None
    is_active: Optional[bool] = None


class MemberResponse(BaseModel):
    id: str
    org_id: str
    user_id: str
    role: str
    workflow_role: str
    is_active: bool

    model_config = {"from_attributes": True}


class ProjectCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = None
    budget: Decimal = Field(Decimal("0"), ge=0, max_digits=15, decimal_places=2)


class ProjectResponse(BaseModel):
    id: str
    org_id: str
    code: str
    name: str
    description: Optional[str] = None
    budget: Decimal
    is_active: bool
    created_at: str

    model_config = {"from_attributes": True}


class ExpenseAccountCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = None


class ExpenseAccountResponse(BaseModel):
    id: str
    org_id: str
    code: str
    name: str
    description: Optional[str] = None
    is_active: bool

    model_config = {"from_attributes": True}
