import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from reqflow.database import get_db
from reqflow.middleware.tenant import get_tenant_context
from reqflow.schemas.budget import BudgetSummaryResponse
from reqflow.services.budget_service import get_budget_summary
from reqflow.services.tenant_service import TenantContext

router = APIRouter()


@router.get("/projects/{project_id}", response_model=BudgetSummaryResponse)
async def project_budget_summary(
    project_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    summary = await get_budget_summary(db, ctx, project_id)
    return BudgetSummaryResponse(
        project_id=summary.project_id,
        budget=summary.budget,
        spent=summary.spent,
        pending=summary.pending,
        under_review=summary.under_review,
        available=summary.available,
        utilization_percentage=summary.utilization_percentage,
    )
