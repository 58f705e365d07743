"""
Unit tests for reqflow/services/audit_service.py
"""

from unittest.mock import MagicMock
import uuid

import pytest

from reqflow.models.enums import Severity
from reqflow.services import audit_service


@pytest.mark.asyncio
async def test_create_audit_event_joins_caller_transaction(mock_session, org_id):
    event = await audit_service.create_audit_event(
        mock_session,
        audit_service.STATUS_CHANGED,
        Severity.INFO,
        "moved",
        org_id=org_id,
        resource_type="requisition",
        resource_id=uuid.uuid4(),
        before_state={"status": "DRAFT"},
        after_state={"status": "PENDING"},
    )
    mock_session.add.assert_called_once_with(event)
    mock_session.flush.assert_awaited_once()
    mock_session.commit.assert_not_awaited()
    assert event.severity == "info"
    assert event.was_blocked is False
    assert event.org_id == org_id


@pytest.mark.asyncio
async def test_security_event_commits_independently(mock_session, audit_store):
    event = await audit_service.record_security_event(
        audit_service.RATE_LIMIT_EXCEEDED,
        Severity.WARNING,
        "too many",
        source_identifier="10.0.0.1",
    )
    assert audit_store == [event]
    assert event.was_blocked is True
    mock_session.add.assert_not_called()


@pytest.mark.asyncio
async def test_malformed_ids_are_dropped_not_fatal(audit_store):
    event = await audit_service.record_security_event(
        audit_service.CROSS_ORG_ACCESS, Severity.CRITICAL, "x", org_id="nope"
    )
    assert event.org_id is None


@pytest.mark.asyncio
async def test_cleanup_returns_deleted_count(mock_session):
    result = MagicMock()
    result.rowcount = 7
    mock_session.execute.return_value = result

    assert await audit_service.cleanup_old_audit_events(mock_session, 90) == 7
    statement = mock_session.execute.await_args.args[0]
    assert "severity" in str(statement)
