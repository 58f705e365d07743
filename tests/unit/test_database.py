"""
Unit tests for reqflow/database.py request-session handling.
"""

from unittest.mock import AsyncMock, patch

import pytest

from reqflow import database


class _Session:
    def __init__(self):
        self.commit = AsyncMock()
        self.rollback = AsyncMock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.mark.asyncio
async def test_get_db_commits_on_success():
    session = _Session()
    with patch.object(database, "AsyncSessionLocal", return_value=session):
        gen = database.get_db()
        assert await gen.__anext__() is session
        with pytest.raises(StopAsyncIteration):
            await gen.__anext__()

    session.commit.assert_awaited_once()
    session.rollback.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_db_rolls_back_when_the_request_fails():
    session = _Session()
    with patch.object(database, "AsyncSessionLocal", return_value=session):
        gen = database.get_db()
        await gen.__anext__()
        with pytest.raises(RuntimeError):
            await gen.athrow(RuntimeError("status write failed"))

    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_tenant_context_is_transaction_local(mock_session, org_id):
    await database.set_tenant_context(mock_session, str(org_id))
    statement, params = mock_session.execute.await_args.args
    assert "set_config('app.current_org_id'" in str(statement)
    assert params == {"oid": str(org_id)}


@pytest.mark.asyncio
async def test_tenant_context_rejects_malformed_org(mock_session):
    with pytest.raises(ValueError):
        await database.set_tenant_context(mock_session, "not-a-uuid")
    mock_session.execute.assert_not_awaited()
