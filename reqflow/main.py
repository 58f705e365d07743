from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
import httpx
import structlog

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reqflow.config import settings
from reqflow.database import init_db, close_db, get_db
from reqflow.logging_config import setup_logging
from reqflow.middleware.correlation import CorrelationIdMiddleware
from reqflow.services.cache import cache, close_http_client

# Register models with Base.metadata
import reqflow.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(
        "starting_reqflow",
        env=settings.ENVIRONMENT,
        budget_policy=settings.BUDGET_POLICY,
    )
    await init_db()
    yield
    await close_http_client()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# Every error leaves the API as {"error": {"code": ..., "message": ...}}.


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Idempotency-Key",
        "X-Organization-ID",
        "X-Request-ID",
    ],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except SQLAlchemyError as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"

    if cache.configured:
        try:
            await cache.ping()
            health_status["checks"]["redis"] = "ok"
        except httpx.HTTPError as e:
            # Rate limiting fails open, so Redis is reported but not fatal.
            logger.warning("health_check_redis_failed", error=str(e))
            health_status["checks"]["redis"] = "degraded"

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return health_status


# --- Routers ---
from reqflow.routes.organizations import router as organizations_router  # noqa: E402
from reqflow.routes.projects import router as projects_router  # noqa: E402
from reqflow.routes.expense_accounts import router as expense_accounts_router  # noqa: E402
from reqflow.routes.workflows import router as workflows_router  # noqa: E402
from reqflow.routes.requisitions import router as requisitions_router  # noqa: E402
from reqflow.routes.approvals import router as approvals_router  # noqa: E402
from reqflow.routes.budgets import router as budgets_router  # noqa: E402
from reqflow.routes.audit_events import router as audit_events_router  # noqa: E402
from reqflow.jobs.scheduled import router as jobs_router  # noqa: E402

app.include_router(organizations_router, prefix="/api/v1/organizations", tags=["Organizations"])
app.include_router(projects_router, prefix="/api/v1/projects", tags=["Projects"])
app.include_router(expense_accounts_router, prefix="/api/v1/expense-accounts", tags=["Expense Accounts"])
app.include_router(workflows_router, prefix="/api/v1/workflows", tags=["Approval Workflows"])
app.include_router(requisitions_router, prefix="/api/v1/requisitions", tags=["Requisitions"])
app.include_router(approvals_router, prefix="/api/v1/requisitions", tags=["Approvals"])
app.include_router(budgets_router, prefix="/api/v1/budgets", tags=["Budgets"])
app.include_router(audit_events_router, prefix="/api/v1/audit-events", tags=["Audit Events"])
app.include_router(jobs_router, prefix="/internal/jobs", tags=["Internal Jobs"])
