"""
Unit tests for reqflow/services/requisition_service.py

Tests: totals arithmetic, numbering, draft editing rules, submission
       (empty, no workflow, happy path), review, cancellation, receipts.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch
import uuid

import pytest

from reqflow.exceptions import (
    EmptyLineItems,
    InvalidTransition,
    NoApplicableWorkflow,
    RoleNotEligible,
)
from reqflow.models.enums import OrgRole, RequisitionStatus, WorkflowRole
from reqflow.models.requisition import RequisitionItem
from reqflow.schemas.requisition import ReceiptLine, RequisitionItemCreate, RequisitionItemUpdate
from reqflow.services import requisition_service
from reqflow.services.requisition_service import (
    line_total,
    next_requisition_number,
    recalculate_totals,
)

S = RequisitionStatus


def _item(requisition, line_number=1, quantity="2", unit_price="50.00", received="0"):
    return RequisitionItem(
        id=uuid.uuid4(),
        org_id=requisition.org_id,
        requisition_id=requisition.id,
        line_number=line_number,
        description=f"Line {line_number}",
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        total_price=line_total(Decimal(quantity), Decimal(unit_price)),
        quantity_received=Decimal(received),
    )


class _Patched:
    """Replaces row loading and ledger recomputation with in-memory state."""

    def __init__(self, requisition, items=None, workflow=None, workflow_error=None):
        self.items = list(items or [])
        self.ledger = AsyncMock()
        self.budget = AsyncMock()
        resolve = (
            AsyncMock(side_effect=workflow_error)
            if workflow_error
            else AsyncMock(return_value=workflow)
        )
        self.resolve = resolve
        self._patches = [
            patch.object(
                requisition_service, "get_requisition_for_tenant",
                new=AsyncMock(return_value=requisition),
            ),
            patch.object(requisition_service, "get_items", new=AsyncMock(side_effect=self._items)),
            patch.object(requisition_service, "log_project_ledger", new=self.ledger),
            patch.object(requisition_service, "check_submission_budget", new=self.budget),
            patch.object(requisition_service, "resolve_workflow", new=resolve),
            patch(
                "reqflow.services.audit_service.create_audit_event",
                new_callable=AsyncMock,
            ),
        ]

    async def _items(self, session, requisition_id):
        return list(self.items)

    def __enter__(self):
        for p in self._patches:
            p.start()
        return self

    def __exit__(self, *exc):
        for p in reversed(self._patches):
            p.stop()
        return False


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_line_total_rounds_to_cents():
    assert line_total(Decimal("3"), Decimal("0.333")) == Decimal("1.00")
    assert line_total(Decimal("1.5"), Decimal("19.99")) == Decimal("29.99")


def test_recalculate_totals_refreshes_items(make_requisition):
    req = make_requisition()
    items = [_item(req, 1, "2", "50.00"), _item(req, 2, "1", "25.50")]
    items[0].total_price = Decimal("0")

    assert recalculate_totals(items) == Decimal("125.50")
    assert items[0].total_price == Decimal("100.00")
    assert sum(i.total_price for i in items) == Decimal("125.50")


def test_requisition_number_format():
    assert next_requisition_number(2026, 0) == "REQ-2026-00001"
    assert next_requisition_number(2026, 41) == "REQ-2026-00042"


# ---------------------------------------------------------------------------
# Draft editing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_add_item_keeps_total_in_sync(mock_session, make_ctx, make_requisition):
    ctx = make_ctx()
    req = make_requisition(S.DRAFT, total="100.00", submitted_by=ctx.user_id)

    with _Patched(req, items=[_item(req, 1, "2", "50.00")]):
        req, items = await requisition_service.add_item(
            mock_session, ctx, req.id,
            RequisitionItemCreate(description="Mouse", quantity=Decimal("4"), unit_price=Decimal("12.50")),
        )

    assert [i.line_number for i in items] == [1, 2]
    assert req.total_amount == Decimal("150.00")
    assert req.total_amount == sum(i.total_price for i in items)


@pytest.mark.asyncio
async def test_update_item_recomputes_totals(mock_session, make_ctx, make_requisition):
    ctx = make_ctx()
    req = make_requisition(S.DRAFT, submitted_by=ctx.user_id)
    item = _item(req, 1, "2", "50.00")

    with _Patched(req, items=[item]):
        req, items = await requisition_service.update_item(
            mock_session, ctx, req.id, item.id, RequisitionItemUpdate(quantity=Decimal("3"))
        )

    assert items[0].total_price == Decimal("150.00")
    assert req.total_amount == Decimal("150.00")


@pytest.mark.asyncio
async def test_remove_item_recomputes_totals(mock_session, make_ctx, make_requisition):
    ctx = make_ctx()
    req = make_requisition(S.DRAFT, submitted_by=ctx.user_id)
    keep, drop = _item(req, 1, "1", "10.00"), _item(req, 2, "1", "90.00")

    with _Patched(req, items=[keep, drop]):
        req, items = await requisition_service.remove_item(mock_session, ctx, req.id, drop.id)

    mock_session.delete.assert_awaited_once_with(drop)
    assert items == [keep]
    assert req.total_amount == Decimal("10.00")


@pytest.mark.asyncio
async def test_items_frozen_after_submission(mock_session, make_ctx, make_requisition):
    ctx = make_ctx()
    req = make_requisition(S.PENDING, submitted_by=ctx.user_id)

    with _Patched(req):
        with pytest.raises(InvalidTransition):
            await requisition_service.add_item(
                mock_session, ctx, req.id,
                RequisitionItemCreate(description="x", quantity=Decimal("1"), unit_price=Decimal("1")),
            )


@pytest.mark.asyncio
async def test_only_submitter_edits_draft(mock_session, make_ctx, make_requisition):
    req = make_requisition(S.DRAFT)

    with _Patched(req):
        with pytest.raises(RoleNotEligible):
            await requisition_service.remove_item(mock_session, make_ctx(), req.id, uuid.uuid4())


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_submit_binds_workflow_and_moves_to_pending(
    mock_session, make_ctx, make_requisition, make_workflow
):
    ctx = make_ctx()
    req = make_requisition(S.DRAFT, total="0", submitted_by=ctx.user_id)
    wf = make_workflow(required=2, roles=("approver", "super_admin"))

    with _Patched(req, items=[_item(req, 1, "2", "50.00")], workflow=wf) as p:
        result = await requisition_service.submit_requisition(mock_session, ctx, req.id)

    assert result.status == "PENDING"
    assert result.workflow_id == wf.id
    assert result.approval_roles == ["approver", "super_admin"]
    assert result.required_approvers_count == 2
    assert result.approval_roles is not wf.approval_roles
    assert result.total_amount == Decimal("100.00")
    assert result.submitted_at is not None
    p.budget.assert_awaited_once()
    p.resolve.assert_awaited_once_with(mock_session, ctx.org_id, Decimal("100.00"))
    p.ledger.assert_awaited_once()


@pytest.mark.asyncio
async def test_submit_without_items_fails(mock_session, make_ctx, make_requisition):
    ctx = make_ctx()
    req = make_requisition(S.DRAFT, submitted_by=ctx.user_id)

    with _Patched(req, items=[]):
        with pytest.raises(EmptyLineItems) as exc:
            await requisition_service.submit_requisition(mock_session, ctx, req.id)

    assert exc.value.status_code == 422
    assert req.status == "DRAFT"


@pytest.mark.asyncio
async def test_submit_with_zero_total_fails(mock_session, make_ctx, make_requisition):
    ctx = make_ctx()
    req = make_requisition(S.DRAFT, submitted_by=ctx.user_id)

    with _Patched(req, items=[_item(req, 1, "1", "0.00")]):
        with pytest.raises(EmptyLineItems):
            await requisition_service.submit_requisition(mock_session, ctx, req.id)


@pytest.mark.asyncio
async def test_submit_without_workflow_stays_draft(mock_session, make_ctx, make_requisition):
    ctx = make_ctx()
    req = make_requisition(S.DRAFT, submitted_by=ctx.user_id)

    with _Patched(
        req, items=[_item(req)], workflow_error=NoApplicableWorkflow(amount="100.00")
    ) as p:
        with pytest.raises(NoApplicableWorkflow):
            await requisition_service.submit_requisition(mock_session, ctx, req.id)

    assert req.status == "DRAFT"
    assert req.workflow_id is None
    p.ledger.assert_not_awaited()


@pytest.mark.asyncio
async def test_resubmit_is_invalid(mock_session, make_ctx, make_requisition):
    ctx = make_ctx()
    req = make_requisition(S.PENDING, submitted_by=ctx.user_id)

    with _Patched(req, items=[_item(req)]):
        with pytest.raises(InvalidTransition):
            await requisition_service.submit_requisition(mock_session, ctx, req.id)


# ---------------------------------------------------------------------------
# Review and cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reviewer_marks_reviewed(mock_session, make_ctx, make_requisition):
    ctx = make_ctx(WorkflowRole.REVIEWER)
    req = make_requisition(S.PENDING)

    with _Patched(req):
        await requisition_service.review_requisition(mock_session, ctx, req.id, S.REVIEWED)

    assert req.status == "REVIEWED"
    assert req.reviewed_by == ctx.user_id


@pytest.mark.asyncio
async def test_submitter_role_cannot_review(mock_session, make_ctx, make_requisition):
    req = make_requisition(S.PENDING)

    with _Patched(req):
        with pytest.raises(RoleNotEligible):
            await requisition_service.review_requisition(
                mock_session, make_ctx(WorkflowRole.SUBMITTER), req.id, S.REVIEWED
            )


@pytest.mark.asyncio
async def test_owner_cancels_pending(mock_session, make_ctx, make_requisition):
    ctx = make_ctx()
    req = make_requisition(S.PENDING, submitted_by=ctx.user_id)

    with _Patched(req) as p:
        await requisition_service.cancel_requisition(mock_session, ctx, req.id, "duplicate")

    assert req.status == "CANCELLED"
    assert req.cancelled_by == ctx.user_id
    p.ledger.assert_awaited_once()


@pytest.mark.asyncio
async def test_admin_cancels_someone_elses_requisition(mock_session, make_ctx, make_requisition):
    req = make_requisition(S.UNDER_REVIEW)

    with _Patched(req):
        await requisition_service.cancel_requisition(
            mock_session, make_ctx(org_role=OrgRole.ADMIN), req.id
        )

    assert req.status == "CANCELLED"


@pytest.mark.asyncio
async def test_stranger_cannot_cancel(mock_session, make_ctx, make_requisition):
    req = make_requisition(S.PENDING)

    with _Patched(req):
        with pytest.raises(RoleNotEligible):
            await requisition_service.cancel_requisition(mock_session, make_ctx(), req.id)


@pytest.mark.asyncio
async def test_approved_cannot_be_cancelled(mock_session, make_ctx, make_requisition):
    ctx = make_ctx()
    req = make_requisition(S.APPROVED, submitted_by=ctx.user_id)

    with _Patched(req):
        with pytest.raises(InvalidTransition):
            await requisition_service.cancel_requisition(mock_session, ctx, req.id)

    assert req.status == "APPROVED"


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_partial_then_full_receipt(mock_session, make_ctx, make_requisition):
    ctx = make_ctx(WorkflowRole.STORE_MANAGER)
    req = make_requisition(S.APPROVED)
    a, b = _item(req, 1, "2", "10.00"), _item(req, 2, "5", "1.00")

    with _Patched(req, items=[a, b]):
        await requisition_service.record_receipt(
            mock_session, ctx, req.id,
            [ReceiptLine(item_id=a.id, quantity_received=Decimal("2"))],
        )
        assert req.status == "PARTIALLY_RECEIVED"

        await requisition_service.record_receipt(
            mock_session, ctx, req.id,
            [ReceiptLine(item_id=b.id, quantity_received=Decimal("5"))],
        )

    assert req.status == "COMPLETED"
    assert req.completed_at is not None


@pytest.mark.asyncio
async def test_single_full_receipt_walks_through_partial(mock_session, make_ctx, make_requisition):
    ctx = make_ctx(WorkflowRole.SUPER_ADMIN)
    req = make_requisition(S.APPROVED)
    a = _item(req, 1, "3", "10.00")

    with _Patched(req, items=[a]):
        with patch.object(
            requisition_service, "apply_transition",
            wraps=requisition_service.apply_transition,
        ) as transition:
            await requisition_service.record_receipt(
                mock_session, ctx, req.id,
                [ReceiptLine(item_id=a.id, quantity_received=Decimal("3"))],
            )

    targets = [c.args[3] for c in transition.await_args_list]
    assert targets == [S.PARTIALLY_RECEIVED, S.COMPLETED]
    assert req.status == "COMPLETED"


@pytest.mark.asyncio
async def test_over_receipt_is_refused(mock_session, make_ctx, make_requisition):
    ctx = make_ctx(WorkflowRole.STORE_MANAGER)
    req = make_requisition(S.APPROVED)
    a = _item(req, 1, "2", "10.00")

    with _Patched(req, items=[a]):
        with pytest.raises(InvalidTransition):
            await requisition_service.record_receipt(
                mock_session, ctx, req.id,
                [ReceiptLine(item_id=a.id, quantity_received=Decimal("3"))],
            )

    assert req.status == "APPROVED"


@pytest.mark.asyncio
async def test_receipt_needs_receiving_role(mock_session, make_ctx, make_requisition):
    req = make_requisition(S.APPROVED)

    with _Patched(req, items=[_item(req)]):
        with pytest.raises(RoleNotEligible):
            await requisition_service.record_receipt(
                mock_session, make_ctx(WorkflowRole.APPROVER), req.id,
                [ReceiptLine(item_id=uuid.uuid4(), quantity_received=Decimal("1"))],
            )
