"""
Unit tests for reqflow/services/workflow_service.py

Tests: range matching, deterministic tie-breaks, definition validation,
       resolve_workflow (found / none applicable).
"""

from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, patch
import uuid

import pytest

from reqflow.exceptions import NoApplicableWorkflow
from reqflow.services import workflow_service
from reqflow.services.workflow_service import (
    select_workflow,
    validate_workflow_definition,
    workflow_matches,
)


def test_bounds_are_inclusive(make_workflow):
    wf = make_workflow(min_amount="100", max_amount="1000")
    assert workflow_matches(wf, Decimal("100"))
    assert workflow_matches(wf, Decimal("1000"))
    assert not workflow_matches(wf, Decimal("99.99"))
    assert not workflow_matches(wf, Decimal("1000.01"))


def test_null_max_is_unbounded(make_workflow):
    wf = make_workflow(min_amount="0", max_amount=None)
    assert workflow_matches(wf, Decimal("1000000000"))


def test_inactive_workflow_never_matches(make_workflow):
    wf = make_workflow(is_active=False)
    assert not workflow_matches(wf, Decimal("10"))


def test_priority_wins_on_overlap(make_workflow):
    a = make_workflow("A", "0", "1000", required=1, priority=1)
    b = make_workflow("B", "0", None, required=2, priority=2)

    assert select_workflow([b, a], Decimal("500")) is a
    assert select_workflow([a, b], Decimal("5000")) is b


def test_narrowest_range_breaks_priority_tie(make_workflow):
    wide = make_workflow("wide", "0", None, priority=1)
    narrow = make_workflow("narrow", "0", "5000", priority=1)
    assert select_workflow([wide, narrow], Decimal("100")) is narrow


def test_created_at_then_id_break_remaining_ties(make_workflow):
    older = make_workflow("older", "0", "1000", created_at=datetime(2025, 1, 1))
    newer = make_workflow("newer", "0", "1000", created_at=datetime(2026, 1, 1))
    assert select_workflow([newer, older], Decimal("1")) is older

    same_day = datetime(2026, 3, 1)
    low = make_workflow(
        "low", "0", "1000", created_at=same_day,
        workflow_id=uuid.UUID("00000000-0000-0000-0000-000000000001"),
    )
    high = make_workflow(
        "high", "0", "1000", created_at=same_day,
        workflow_id=uuid.UUID("00000000-0000-0000-0000-000000000002"),
    )
    assert select_workflow([high, low], Decimal("1")) is low


def test_selection_is_deterministic_across_orderings(make_workflow):
    workflows = [
        make_workflow(f"wf{i}", "0", None, priority=0, created_at=datetime(2026, 1, 1))
        for i in range(5)
    ]
    first = select_workflow(workflows, Decimal("50"))
    assert select_workflow(list(reversed(workflows)), Decimal("50")) is first
    assert select_workflow(workflows, Decimal("50")) is first


def test_no_match_returns_none(make_workflow):
    wf = make_workflow(min_amount="1000", max_amount="2000")
    assert select_workflow([wf], Decimal("5")) is None


def test_validate_definition_accepts_good_input():
    assert validate_workflow_definition(Decimal("0"), None, 2, ["approver", "reviewer"]) == []


def test_validate_definition_reports_every_problem():
    problems = validate_workflow_definition(
        Decimal("-1"), Decimal("-5"), 0, ["submitter"]
    )
    assert len(problems) == 4
    assert any("submitter" in p for p in problems)


def test_validate_definition_requires_roles():
    assert validate_workflow_definition(Decimal("0"), None, 1, []) == [
        "approval_roles must not be empty"
    ]


@pytest.mark.asyncio
async def test_resolve_workflow_returns_winner(mock_session, make_workflow, org_id):
    a = make_workflow("A", "0", "1000", priority=1)
    b = make_workflow("B", "0", None, priority=2)
    with patch.object(
        workflow_service, "list_active_workflows",
        new_callable=AsyncMock, return_value=[a, b],
    ):
        assert await workflow_service.resolve_workflow(mock_session, org_id, Decimal("500")) is a
        assert await workflow_service.resolve_workflow(mock_session, org_id, Decimal("5000")) is b


@pytest.mark.asyncio
async def test_resolve_workflow_without_match_raises(mock_session, org_id):
    with patch.object(
        workflow_service, "list_active_workflows",
        new_callable=AsyncMock, return_value=[],
    ):
        with pytest.raises(NoApplicableWorkflow) as exc:
            await workflow_service.resolve_workflow(mock_session, org_id, Decimal("10"))

    assert exc.value.status_code == 422
    assert exc.value.detail["error"]["amount"] == "10"
