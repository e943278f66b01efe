"""Tests for view and download counters.

Tests cover:
- Increments return the updated delivery
- Classification of refused increments (not found, unavailable, limit)
- Limits hold under concurrent requests
"""

import asyncio
import uuid

import pytest

from sendsafe.db.models.base import DeliveryStatus
from sendsafe.services.errors import (
    DeliveryNotFoundError,
    DeliveryUnavailableError,
    LimitReachedError,
)


class TestIncrement:
    """Tests for single increments."""

    @pytest.mark.asyncio
    async def test_increment_views(self, counters, make_delivery):
        delivery = await make_delivery(max_views=3)

        updated = await counters.increment_views(delivery.id)

        assert updated.current_views == 1
        assert updated.current_downloads == 0

    @pytest.mark.asyncio
    async def test_increment_downloads(self, counters, make_delivery):
        delivery = await make_delivery(max_downloads=3)

        await counters.increment_downloads(delivery.id)
        updated = await counters.increment_downloads(delivery.id)

        assert updated.current_downloads == 2

    @pytest.mark.asyncio
    async def test_unknown_delivery(self, counters):
        with pytest.raises(DeliveryNotFoundError):
            await counters.increment_views(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_at_limit_raises_limit_reached(self, counters, make_delivery):
        delivery = await make_delivery(max_views=2, current_views=2)

        with pytest.raises(LimitReachedError) as exc_info:
            await counters.increment_views(delivery.id)

        assert exc_info.value.counter == "views"
        assert exc_info.value.status_code == 403
        assert delivery.current_views == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [DeliveryStatus.EXPIRED, DeliveryStatus.REVOKED])
    async def test_terminal_delivery_not_incremented(self, counters, make_delivery, status):
        delivery = await make_delivery(status=status)

        with pytest.raises(DeliveryUnavailableError):
            await counters.increment_downloads(delivery.id)

        assert delivery.current_downloads == 0
        assert delivery.status is status


class TestConcurrency:
    """Counters never pass their limits under concurrent requests."""

    @pytest.mark.asyncio
    async def test_concurrent_views_stop_at_limit(self, counters, make_delivery):
        delivery = await make_delivery(max_views=3)

        results = await asyncio.gather(
            *(counters.increment_views(delivery.id) for _ in range(10)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 3
        assert all(isinstance(r, LimitReachedError) for r in refused)
        assert delivery.current_views == 3

    @pytest.mark.asyncio
    async def test_concurrent_downloads_stop_at_limit(self, counters, make_delivery):
        delivery = await make_delivery(max_downloads=1)

        results = await asyncio.gather(
            *(counters.increment_downloads(delivery.id) for _ in range(5)),
            return_exceptions=True,
        )

        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert delivery.current_downloads == 1
