from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reqflow.database import get_db
from reqflow.middleware.authorization import require_org_admin
from reqflow.middleware.tenant import get_tenant_context
from reqflow.models.expense_account import ExpenseAccount
from reqflow.schemas.organization import ExpenseAccountCreate, ExpenseAccountResponse
from reqflow.services import organization_service
from reqflow.services.tenant_service import TenantContext

router = APIRouter()


def _to_response(a: ExpenseAccount) -> ExpenseAccountResponse:
    return ExpenseAccountResponse(
        id=str(a.id),
        org_id=str(a.org_id),
        code=a.code,
        name=a.name,
        description=a.description,
        is_active=a.is_active,
    )


@router.get("", response_model=list[ExpenseAccountResponse])
async def list_expense_accounts(
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(ExpenseAccount)
        .where(
            ExpenseAccount.org_id == ctx.org_id,
            ExpenseAccount.is_active == True,  # noqa: E712
        )
        .order_by(ExpenseAccount.code)
    )
    return [_to_response(a) for a in result.scalars().all()]


@router.post("", response_model=ExpenseAccountResponse, status_code=status.HTTP_201_CREATED)
async def create_expense_account(
    body: ExpenseAccountCreate,
    ctx: TenantContext = Depends(require_org_admin),
    db: AsyncSession = Depends(get_db),
):
    account = await organization_service.create_expense_account(
        db, ctx, body.code, body.name, body.description
    )
    return _to_response(account)
