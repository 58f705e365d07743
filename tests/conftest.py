import os

# Settings are read at import time; keep tests off real infrastructure.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("UPSTASH_REDIS_REST_URL", "")
os.environ.setdefault("BUDGET_POLICY", "advisory")

import uuid
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from reqflow.models.approval_workflow import ApprovalWorkflow
from reqflow.models.enums import OrgRole, RequisitionStatus, WorkflowRole
from reqflow.models.requisition import Requisition
from reqflow.services.tenant_service import TenantContext


class FakeAuditSession:
    """Stands in for the independent session security events commit through."""

    def __init__(self, store: list, fail_commit: bool = False):
        self.store = store
        self.fail_commit = fail_commit
        self.committed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def add(self, obj):
        self.store.append(obj)

    async def commit(self):
        if self.fail_commit:
            raise RuntimeError("audit store unavailable")
        self.committed = True


@pytest.fixture
def org_id() -> uuid.UUID:
    return uuid.UUID("a0000000-0000-0000-0000-000000000001")


@pytest.fixture
def other_org_id() -> uuid.UUID:
    return uuid.UUID("b0000000-0000-0000-0000-000000000002")


@pytest.fixture
def make_ctx(org_id):
    def _make(
        workflow_role: WorkflowRole = WorkflowRole.SUBMITTER,
        org_role: OrgRole = OrgRole.MEMBER,
        user_id=None,
        org=None,
    ) -> TenantContext:
        return TenantContext(
            org_id=org or org_id,
            user_id=user_id or uuid.uuid4(),
            workflow_role=workflow_role,
            org_role=org_role,
            email=f"{workflow_role.value}@acme.test",
        )

    return _make


@pytest.fixture
def make_requisition(org_id):
    def _make(
        status: RequisitionStatus = RequisitionStatus.DRAFT,
        total: str = "1000.00",
        submitted_by=None,
        workflow=None,
        org=None,
    ) -> Requisition:
        """Passing a workflow binds it the way submission does."""
        return Requisition(
            id=uuid.uuid4(),
            org_id=org or org_id,
            project_id=uuid.uuid4(),
            requisition_number="REQ-2026-00001",
            title="Laptops for onboarding",
            status=status.value,
            total_amount=Decimal(total),
            submitted_by=submitted_by or uuid.uuid4(),
            workflow_id=workflow.id if workflow is not None else None,
            approval_roles=list(workflow.approval_roles) if workflow is not None else None,
            required_approvers_count=(
                workflow.required_approvers_count if workflow is not None else None
            ),
        )

    return _make


@pytest.fixture
def make_workflow(org_id):
    def _make(
        name: str = "Standard",
        min_amount: str = "0",
        max_amount=None,
        required: int = 1,
        roles=("approver",),
        priority: int = 0,
        created_at=None,
        is_active: bool = True,
        workflow_id=None,
    ) -> ApprovalWorkflow:
        return ApprovalWorkflow(
            id=workflow_id or uuid.uuid4(),
            org_id=org_id,
            workflow_name=name,
            amount_threshold_min=Decimal(min_amount),
            amount_threshold_max=Decimal(max_amount) if max_amount is not None else None,
            required_approvers_count=required,
            approval_roles=list(roles),
            priority=priority,
            is_active=is_active,
            created_at=created_at or datetime(2026, 1, 1),
        )

    return _make


@pytest.fixture
def mock_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.delete = AsyncMock()
    return session


@pytest.fixture
def audit_store():
    """Capture security events written through the independent audit session."""
    store: list = []
    with patch(
        "reqflow.services.audit_service.AsyncSessionLocal",
        side_effect=lambda: FakeAuditSession(store),
    ):
        yield store


@pytest.fixture
def failing_audit_store():
    """Security-event commits fail, as when the audit store is unreachable."""
    store: list = []
    with patch(
        "reqflow.services.audit_service.AsyncSessionLocal",
        side_effect=lambda: FakeAuditSession(store, fail_commit=True),
    ):
        yield store
