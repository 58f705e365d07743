"""
HTTP-level tests: routing, dependency wiring, error envelope and headers.

Services are patched; the database session is an AsyncMock supplied through
dependency_overrides, so no PostgreSQL or Redis is needed.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import SQLAlchemyError

from reqflow.config import settings
from reqflow.database import get_db
from reqflow.exceptions import (
    ChainAlreadyResolved,
    NoApplicableWorkflow,
    RateLimitExceeded,
    TenantMismatch,
)
from reqflow.main import app, lifespan
from reqflow.middleware.auth import get_current_user
from reqflow.middleware.tenant import get_tenant_context
from reqflow.models.organization import Organization
from reqflow.models.enums import ChainStatus, OrgRole, RequisitionStatus, WorkflowRole
from reqflow.services.approval_service import ChainState, DecisionOutcome
from reqflow.services.auth_service import create_access_token
from reqflow.services.budget_service import compute_budget_summary


@pytest.fixture
def db_session(mock_session):
    async def _override():
        yield mock_session

    app.dependency_overrides[get_db] = _override
    yield mock_session
    app.dependency_overrides.clear()


@pytest.fixture
def acting_as(db_session):
    """Set the TenantContext every tenant route receives."""

    def _set(ctx):
        app.dependency_overrides[get_tenant_context] = lambda: ctx
        app.dependency_overrides[get_current_user] = lambda: {
            "user_id": str(ctx.user_id),
            "email": ctx.email,
            "org_id": str(ctx.org_id),
        }
        return ctx

    return _set


@pytest_asyncio.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health_ok_and_request_id_echoed(client, db_session):
    response = await client.get("/health", headers={"X-Request-ID": "req-abc"})
    assert response.status_code == 200
    assert response.json()["checks"]["db"] == "ok"
    assert response.headers["X-Request-ID"] == "req-abc"


@pytest.mark.asyncio
async def test_health_reports_db_failure(client, db_session):
    db_session.execute.side_effect = SQLAlchemyError("down")
    response = await client.get("/health")
    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_missing_bearer_token_is_rejected(client, db_session):
    response = await client.get("/api/v1/requisitions")
    assert response.status_code in (401, 403)
    assert "error" in response.json()


# ---------------------------------------------------------------------------
# Isolation and error envelope
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_foreign_requisition_returns_generic_denial(client, acting_as, make_ctx):
    acting_as(make_ctx(WorkflowRole.APPROVER))
    with patch(
        "reqflow.services.requisition_service.get_requisition_for_tenant",
        new=AsyncMock(side_effect=TenantMismatch()),
    ):
        response = await client.get(f"/api/v1/requisitions/{uuid.uuid4()}")

    assert response.status_code == 403
    assert response.json() == {"error": {"code": "ACCESS_DENIED", "message": "Access denied"}}


@pytest.mark.asyncio
async def test_malformed_id_is_a_validation_error(client, acting_as, make_ctx):
    acting_as(make_ctx())
    response = await client.get("/api/v1/requisitions/not-a-uuid")
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_submit_without_workflow_is_422(client, acting_as, make_ctx):
    acting_as(make_ctx())
    with patch(
        "reqflow.services.requisition_service.submit_requisition",
        new=AsyncMock(side_effect=NoApplicableWorkflow(amount="250.00")),
    ):
        response = await client.post(f"/api/v1/requisitions/{uuid.uuid4()}/submit")

    assert response.status_code == 422
    body = response.json()["error"]
    assert body["code"] == "NO_APPLICABLE_WORKFLOW"
    assert body["amount"] == "250.00"


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_record_decision_passes_idempotency_key(client, acting_as, make_ctx):
    ctx = acting_as(make_ctx(WorkflowRole.APPROVER))
    requisition_id = uuid.uuid4()
    outcome = DecisionOutcome(
        chain=ChainState(
            status=ChainStatus.APPROVED, approvals=2, required=2,
            approver_ids=["a", "b"],
        ),
        requisition_status=RequisitionStatus.APPROVED,
        decision_id=str(uuid.uuid4()),
    )

    with patch(
        "reqflow.services.approval_service.record_approval_decision",
        new=AsyncMock(return_value=outcome),
    ) as record:
        response = await client.post(
            f"/api/v1/requisitions/{requisition_id}/decisions",
            json={"decision": "approve", "comment": "ok"},
            headers={"Idempotency-Key": "k-1"},
        )

    assert response.status_code == 200
    data = response.json()
    assert data["requisition_status"] == "APPROVED"
    assert data["chain"]["chain_status"] == "APPROVED"
    assert data["chain"]["approvals"] == 2
    assert data["replayed"] is False

    args, kwargs = record.await_args
    assert args[1] is ctx
    assert args[2] == requisition_id
    assert kwargs["idempotency_key"] == "k-1"


@pytest.mark.asyncio
async def test_decision_on_resolved_chain_is_409(client, acting_as, make_ctx):
    acting_as(make_ctx(WorkflowRole.APPROVER))
    with patch(
        "reqflow.services.approval_service.record_approval_decision",
        new=AsyncMock(side_effect=ChainAlreadyResolved(current_status="APPROVED")),
    ):
        response = await client.post(
            f"/api/v1/requisitions/{uuid.uuid4()}/decisions", json={"decision": "reject"}
        )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CHAIN_ALREADY_RESOLVED"


@pytest.mark.asyncio
async def test_unknown_decision_value_is_rejected_at_boundary(client, acting_as, make_ctx):
    acting_as(make_ctx(WorkflowRole.APPROVER))
    with patch(
        "reqflow.services.approval_service.record_approval_decision", new=AsyncMock()
    ) as record:
        response = await client.post(
            f"/api/v1/requisitions/{uuid.uuid4()}/decisions", json={"decision": "maybe"}
        )

    assert response.status_code == 422
    record.assert_not_awaited()


# ---------------------------------------------------------------------------
# Budgets, workflows, organizations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_budget_summary_scenario(client, acting_as, make_ctx):
    acting_as(make_ctx())
    project_id = uuid.uuid4()
    summary = compute_budget_summary(
        project_id,
        Decimal("10000.00"),
        {"PENDING": Decimal("3000.00"), "APPROVED": Decimal("4000.00")},
    )
    with patch(
        "reqflow.routes.budgets.get_budget_summary", new=AsyncMock(return_value=summary)
    ):
        response = await client.get(f"/api/v1/budgets/projects/{project_id}")

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["available"]) == Decimal("3000")
    assert Decimal(data["utilization_percentage"]) == Decimal("70")


@pytest.mark.asyncio
async def test_workflow_admin_routes_need_admin(client, acting_as, make_ctx):
    acting_as(make_ctx(WorkflowRole.APPROVER))
    response = await client.post(
        "/api/v1/workflows",
        json={"workflow_name": "Small", "approval_roles": ["approver"]},
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ROLE_NOT_ELIGIBLE"


@pytest.mark.asyncio
async def test_workflow_with_non_approving_role_is_invalid(client, acting_as, make_ctx, db_session):
    acting_as(make_ctx(org_role=OrgRole.OWNER))
    response = await client.post(
        "/api/v1/workflows",
        json={"workflow_name": "Odd", "approval_roles": ["store_manager"]},
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_WORKFLOW"
    db_session.add.assert_not_called()


@pytest.mark.asyncio
async def test_create_workflow(client, acting_as, make_ctx, db_session):
    ctx = acting_as(make_ctx(WorkflowRole.SUPER_ADMIN))
    response = await client.post(
        "/api/v1/workflows",
        json={
            "workflow_name": "Large",
            "amount_threshold_min": "1000",
            "required_approvers_count": 2,
            "approval_roles": ["approver", "super_admin"],
            "priority": 2,
        },
    )
    assert response.status_code == 201
    data = response.json()
    assert data["org_id"] == str(ctx.org_id)
    assert data["amount_threshold_max"] is None
    assert data["approval_roles"] == ["approver", "super_admin"]
    db_session.add.assert_called_once()


@pytest.mark.asyncio
async def test_signup_rate_limited(client, acting_as, make_ctx):
    acting_as(make_ctx())
    with patch(
        "reqflow.routes.organizations.enforce_rate_limit",
        new=AsyncMock(side_effect=RateLimitExceeded(retry_after=30)),
    ), patch(
        "reqflow.services.organization_service.signup_organization", new=AsyncMock()
    ) as signup:
        response = await client.post(
            "/api/v1/organizations", json={"name": "Acme", "slug": "acme"}
        )

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "30"
    assert response.json()["error"]["code"] == "RATE_LIMITED"
    signup.assert_not_awaited()


# ---------------------------------------------------------------------------
# Internal jobs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_internal_job_requires_secret(client, db_session):
    with patch.object(settings, "INTERNAL_JOB_SECRET", "s3cret"):
        denied = await client.post("/internal/jobs/cleanup-audit-events")
        assert denied.status_code == 403

        with patch(
            "reqflow.jobs.scheduled.cleanup_old_audit_events", new=AsyncMock(return_value=4)
        ):
            ok = await client.post(
                "/internal/jobs/cleanup-audit-events?retention_days=30",
                headers={"X-Internal-Secret": "s3cret"},
            )

    assert ok.status_code == 200
    assert ok.json() == {"job": "cleanup-audit-events", "deleted": 4, "retention_days": 30}


@pytest.mark.asyncio
async def test_internal_job_closed_when_secret_unset(client, db_session):
    with patch.object(settings, "INTERNAL_JOB_SECRET", None), patch.object(
        settings, "DEBUG", False
    ):
        response = await client.post("/internal/jobs/cleanup-audit-events")
    assert response.status_code == 503


# ---------------------------------------------------------------------------
# Bearer token -> tenant resolution
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_header_org_is_resolved_and_scoped(client, db_session, make_ctx):
    ctx = make_ctx(WorkflowRole.APPROVER)
    header_org = str(ctx.org_id)

    with patch.object(settings, "JWT_ALGORITHM", "HS256"), patch.object(
        settings, "JWT_SECRET_KEY", "api-test-secret"
    ), patch(
        "reqflow.middleware.tenant.resolve_tenant_context", new=AsyncMock(return_value=ctx)
    ) as resolve, patch(
        "reqflow.middleware.tenant.set_tenant_context", new=AsyncMock()
    ) as scope, patch(
        "reqflow.services.organization_service.get_organization",
        new=AsyncMock(return_value=Organization(
            id=ctx.org_id, name="Acme", slug="acme", status="active", plan="free",
            max_users=3, max_projects=2, max_requisitions_per_month=25,
        )),
    ):
        token = create_access_token(str(ctx.user_id), ctx.email, org_id=str(uuid.uuid4()))
        response = await client.get(
            "/api/v1/organizations/current",
            headers={"Authorization": f"Bearer {token}", "X-Organization-ID": header_org},
        )

    assert response.status_code == 200
    assert response.json()["slug"] == "acme"
    args, kwargs = resolve.await_args
    assert args[1] == str(ctx.user_id)
    assert args[2] == header_org
    scope.assert_awaited_once_with(db_session, str(ctx.org_id))


@pytest.mark.asyncio
async def test_invalid_token_is_401(client, db_session):
    with patch.object(settings, "JWT_ALGORITHM", "HS256"), patch.object(
        settings, "JWT_SECRET_KEY", "api-test-secret"
    ):
        response = await client.get(
            "/api/v1/requisitions", headers={"Authorization": "Bearer not.a.token"}
        )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_TOKEN_INVALID"


# ---------------------------------------------------------------------------
# Role gates and lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_receipts_need_a_receiving_role(client, acting_as, make_ctx):
    acting_as(make_ctx(WorkflowRole.APPROVER))
    with patch(
        "reqflow.services.requisition_service.record_receipt", new=AsyncMock()
    ) as record:
        response = await client.post(
            f"/api/v1/requisitions/{uuid.uuid4()}/receipts",
            json={"lines": [{"item_id": str(uuid.uuid4()), "quantity_received": "1"}]},
        )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ROLE_NOT_ELIGIBLE"
    record.assert_not_awaited()


@pytest.mark.asyncio
async def test_review_is_refused_for_submitters(client, acting_as, make_ctx):
    acting_as(make_ctx(WorkflowRole.SUBMITTER))
    with patch(
        "reqflow.services.requisition_service.review_requisition", new=AsyncMock()
    ) as review:
        response = await client.post(
            f"/api/v1/requisitions/{uuid.uuid4()}/review",
            json={"stage": "UNDER_REVIEW"},
        )

    assert response.status_code == 403
    review.assert_not_awaited()


@pytest.mark.asyncio
async def test_shutdown_closes_http_client_and_engine():
    with patch("reqflow.main.init_db", new=AsyncMock()), patch(
        "reqflow.main.close_db", new=AsyncMock()
    ) as close_db, patch(
        "reqflow.main.close_http_client", new=AsyncMock()
    ) as close_http:
        async with lifespan(app):
            close_http.assert_not_awaited()

    close_http.assert_awaited_once()
    close_db.assert_awaited_once()
