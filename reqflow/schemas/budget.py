from decimal import Decimal

from pydantic import BaseModel


class BudgetSummaryResponse(BaseModel):
    project_id: str
    budget: Decimal
    spent: Decimal
    pending: Decimal
    under_review: Decimal
    available: Decimal
    utilization_percentage: Decimal

    model_config = {"from_attributes": True}
