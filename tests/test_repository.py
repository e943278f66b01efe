"""Tests for the SQL delivery repository.

Tests cover:
- Guarded updates compile to a single conditional UPDATE ... RETURNING
- An empty RETURNING result is reported as None
- Every mutation commits
- Status counts and overdue lookups

The session is mocked; statements are compiled with the PostgreSQL dialect
and their SQL text is inspected.
"""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from sendsafe.db.models.base import AccessAction, DeliveryStatus
from sendsafe.services.repository import SqlDeliveryRepository

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def create_mock_session(returned=None, *, row=None, rows=None):
    """Create a mock AsyncSession whose execute() result yields the given values."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = returned
    result.scalar_one.return_value = returned
    result.one.return_value = row
    result.all.return_value = rows or []
    result.scalars.return_value = iter(rows or [])

    session = MagicMock()
    session.execute = AsyncMock(return_value=result)
    session.commit = AsyncMock()
    return session


def executed_sql(session) -> str:
    """SQL text of the last statement passed to session.execute."""
    stmt = session.execute.call_args.args[0]
    return str(stmt.compile(dialect=postgresql.dialect()))


class TestCounterGuards:
    """increment_counter is one conditional UPDATE."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("counter", "guard"),
        [
            ("views", "deliveries.current_views < deliveries.max_views"),
            ("downloads", "deliveries.current_downloads < deliveries.max_downloads"),
        ],
    )
    async def test_update_is_guarded(self, counter, guard):
        delivery = MagicMock()
        session = create_mock_session(delivery)
        repo = SqlDeliveryRepository(session)

        updated = await repo.increment_counter(uuid.uuid4(), counter)

        sql = executed_sql(session)
        assert sql.startswith("UPDATE deliveries SET")
        assert guard in sql
        assert "deliveries.status = " in sql
        assert "RETURNING" in sql
        assert updated is delivery
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rejected_update_returns_none(self):
        session = create_mock_session(None)
        repo = SqlDeliveryRepository(session)

        assert await repo.increment_counter(uuid.uuid4(), "views") is None
        session.commit.assert_awaited_once()


class TestStatusGuard:
    @pytest.mark.asyncio
    async def test_compare_and_set(self):
        session = create_mock_session(None)
        repo = SqlDeliveryRepository(session)

        result = await repo.set_status(
            uuid.uuid4(), DeliveryStatus.REVOKED, expected=DeliveryStatus.ACTIVE
        )

        sql = executed_sql(session)
        assert "WHERE deliveries.id = " in sql
        assert "AND deliveries.status = " in sql
        assert "RETURNING" in sql
        assert result is None

    @pytest.mark.asyncio
    async def test_purge_marker_set_once(self):
        session = create_mock_session()
        repo = SqlDeliveryRepository(session)

        await repo.mark_files_purged(uuid.uuid4(), NOW)

        assert "deliveries.files_purged_at IS NULL" in executed_sql(session)
        session.commit.assert_awaited_once()


    @pytest.mark.asyncio
    async def test_touch_sets_updated_at(self):
        session = create_mock_session()
        repo = SqlDeliveryRepository(session)

        await repo.touch_delivery(uuid.uuid4(), NOW)

        sql = executed_sql(session)
        assert sql.startswith("UPDATE deliveries SET updated_at=")
        session.commit.assert_awaited_once()


class TestAccessCodeGuards:
    @pytest.mark.asyncio
    async def test_attempts_bounded_by_budget(self):
        session = create_mock_session(None)
        repo = SqlDeliveryRepository(session)

        assert await repo.increment_code_attempts(uuid.uuid4()) is None

        sql = executed_sql(session)
        assert "access_codes.attempts < access_codes.max_attempts" in sql
        assert "RETURNING" in sql

    @pytest.mark.asyncio
    async def test_code_spent_once(self):
        access_code = MagicMock()
        session = create_mock_session(access_code)
        repo = SqlDeliveryRepository(session)

        assert await repo.mark_code_verified(uuid.uuid4(), NOW) is access_code

        sql = executed_sql(session)
        assert "access_codes.verified_at IS NULL" in sql
        assert "RETURNING" in sql

    @pytest.mark.asyncio
    async def test_latest_unverified_code(self):
        session = create_mock_session(None)
        repo = SqlDeliveryRepository(session)

        await repo.latest_unverified_code(uuid.uuid4(), "bob@example.com")

        sql = executed_sql(session)
        assert "access_codes.verified_at IS NULL" in sql
        assert "ORDER BY access_codes.created_at DESC" in sql
        assert "LIMIT" in sql

    @pytest.mark.asyncio
    async def test_has_verified_code(self):
        session = create_mock_session(1)
        repo = SqlDeliveryRepository(session)

        assert await repo.has_verified_code(uuid.uuid4(), "bob@example.com", NOW) is True
        assert "access_codes.verified_at >= " in executed_sql(session)


class TestQueries:
    @pytest.mark.asyncio
    async def test_count_by_status(self):
        row = MagicMock()
        row._mapping = {"total": 3, "active": 1, "expired": 1, "revoked": 1, "since": 2}
        session = create_mock_session(row=row)
        repo = SqlDeliveryRepository(session)

        counts = await repo.count_by_status(uuid.uuid4(), NOW)

        assert counts["total"] == 3
        assert counts["since"] == 2
        assert "FILTER (WHERE" in executed_sql(session)

    @pytest.mark.asyncio
    async def test_find_overdue(self):
        session = create_mock_session(rows=[])
        repo = SqlDeliveryRepository(session)

        assert await repo.find_overdue(NOW, 10) == []

        sql = executed_sql(session)
        assert "deliveries.expires_at < " in sql
        assert "ORDER BY deliveries.expires_at" in sql

    @pytest.mark.asyncio
    async def test_count_log_actions(self):
        session = create_mock_session(rows=[(AccessAction.VIEW, True, 4)])
        repo = SqlDeliveryRepository(session)

        assert await repo.count_log_actions(None) == [(AccessAction.VIEW, True, 4)]
        assert "GROUP BY access_logs.action, access_logs.success" in executed_sql(session)

    @pytest.mark.asyncio
    async def test_delete_delivery(self):
        session = create_mock_session(uuid.uuid4())
        repo = SqlDeliveryRepository(session)

        assert await repo.delete_delivery(uuid.uuid4()) is True
        assert executed_sql(session).startswith("DELETE FROM deliveries")
        session.commit.assert_awaited_once()
