"""Tests for sender-side delivery management.

Tests cover:
- Creating deliveries: validation, defaults, normalization
- Attaching files: upload, digest, filename and size rules
- Ownership checks for every operation on an existing delivery
- Listing and statistics
- Revoke, delete and notification resend
"""

import hashlib
import uuid
from datetime import timedelta

import pytest
from factories import OTHER_SENDER_ID, RECIPIENT, SENDER_ID

from sendsafe.db.models.base import AccessAction, DeliveryStatus
from sendsafe.services.deliveries import sanitize_title
from sendsafe.services.errors import (
    DeliveryNotFoundError,
    DeliveryValidationError,
    InvalidStateError,
    NotDeliveryOwnerError,
)


class TestSanitizeTitle:
    def test_strips_angle_brackets(self):
        assert sanitize_title("  <b>Contract</b> ") == "bContract/b"


class TestCreateDelivery:
    """Tests for DeliveryService.create_delivery."""

    @pytest.mark.asyncio
    async def test_creates_active_delivery(self, deliveries, store, clock):
        delivery = await deliveries.create_delivery(
            sender_id=SENDER_ID,
            title="Quarterly report",
            recipient_email=" Bob@Example.COM ",
            expires_at=clock() + timedelta(days=3),
            message="Numbers inside",
            max_views=4,
            max_downloads=2,
        )

        assert store.deliveries[delivery.id] is delivery
        assert delivery.status is DeliveryStatus.ACTIVE
        assert delivery.recipient_email == RECIPIENT
        assert (delivery.current_views, delivery.max_views) == (0, 4)
        assert (delivery.current_downloads, delivery.max_downloads) == (0, 2)
        assert delivery.created_at == clock()

    @pytest.mark.asyncio
    async def test_limits_default_from_settings(self, deliveries, clock):
        delivery = await deliveries.create_delivery(
            sender_id=SENDER_ID,
            title="Report",
            recipient_email=RECIPIENT,
            expires_at=clock() + timedelta(days=1),
        )

        assert delivery.max_views == 10
        assert delivery.max_downloads == 5
        assert delivery.message is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"title": "<>"}, "title"),
            ({"title": "x" * 101}, "title"),
            ({"message": "m" * 2001}, "message"),
            ({"recipient_email": "not-an-email"}, "recipient_email"),
            ({"max_views": 0}, "max_views"),
            ({"max_views": 1001}, "max_views"),
            ({"max_downloads": 101}, "max_downloads"),
        ],
    )
    async def test_rejects_invalid_input(self, deliveries, store, clock, overrides, field):
        kwargs = {
            "sender_id": SENDER_ID,
            "title": "Report",
            "recipient_email": RECIPIENT,
            "expires_at": clock() + timedelta(days=1),
        }
        kwargs.update(overrides)

        with pytest.raises(DeliveryValidationError) as exc_info:
            await deliveries.create_delivery(**kwargs)

        assert exc_info.value.field == field
        assert exc_info.value.status_code == 422
        assert store.deliveries == {}

    @pytest.mark.asyncio
    async def test_rejects_past_expiry(self, deliveries, clock):
        with pytest.raises(DeliveryValidationError) as exc_info:
            await deliveries.create_delivery(
                sender_id=SENDER_ID,
                title="Report",
                recipient_email=RECIPIENT,
                expires_at=clock(),
            )
        assert exc_info.value.field == "expires_at"


class TestAttachFile:
    """Tests for DeliveryService.attach_file."""

    @pytest.mark.asyncio
    async def test_uploads_and_records_digest(self, deliveries, store, storage, make_delivery):
        delivery = await make_delivery()
        data = b"%PDF-1.7 contract"

        delivery_file = await deliveries.attach_file(
            delivery.id, SENDER_ID, "contract.pdf", "application/pdf", data
        )

        assert delivery_file.sha256 == hashlib.sha256(data).hexdigest()
        assert delivery_file.size_bytes == len(data)
        assert delivery_file.storage_key.startswith(f"deliveries/{delivery.id}/")
        assert storage.objects[delivery_file.storage_key] == data
        assert await store.list_files(delivery.id) == [delivery_file]

    @pytest.mark.asyncio
    async def test_same_filename_twice_gets_distinct_keys(self, deliveries, make_delivery):
        delivery = await make_delivery()

        first = await deliveries.attach_file(delivery.id, SENDER_ID, "a.pdf", "x/y", b"1")
        second = await deliveries.attach_file(delivery.id, SENDER_ID, "a.pdf", "x/y", b"2")

        assert first.storage_key != second.storage_key

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filename", ["../etc/passwd", "a/b.pdf", "..", "bad\x00name"])
    async def test_rejects_unsafe_filenames(self, deliveries, storage, make_delivery, filename):
        delivery = await make_delivery()

        with pytest.raises(DeliveryValidationError):
            await deliveries.attach_file(delivery.id, SENDER_ID, filename, "text/plain", b"x")

        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_rejects_empty_and_oversized(self, deliveries, access_settings, make_delivery):
        delivery = await make_delivery()

        with pytest.raises(DeliveryValidationError):
            await deliveries.attach_file(delivery.id, SENDER_ID, "a.txt", "text/plain", b"")

        too_big = b"x" * (access_settings.max_file_size_bytes + 1)
        with pytest.raises(DeliveryValidationError):
            await deliveries.attach_file(delivery.id, SENDER_ID, "a.txt", "text/plain", too_big)

    @pytest.mark.asyncio
    async def test_terminal_delivery_refuses_files(self, deliveries, make_delivery):
        delivery = await make_delivery(status=DeliveryStatus.REVOKED)

        with pytest.raises(InvalidStateError):
            await deliveries.attach_file(delivery.id, SENDER_ID, "a.pdf", "x/y", b"1")

    @pytest.mark.asyncio
    async def test_other_sender_refused(self, deliveries, make_delivery):
        delivery = await make_delivery()

        with pytest.raises(NotDeliveryOwnerError):
            await deliveries.attach_file(delivery.id, OTHER_SENDER_ID, "a.pdf", "x/y", b"1")


class TestOwnership:
    """Owner-or-admin checks on existing deliveries."""

    @pytest.mark.asyncio
    async def test_owner_gets_unmasked_delivery(self, deliveries, make_delivery):
        created = await make_delivery(files=[("a.pdf", b"A")])

        delivery = await deliveries.get_delivery(created.id, SENDER_ID)

        assert delivery.recipient_email == RECIPIENT
        assert len(delivery.files) == 1

    @pytest.mark.asyncio
    async def test_admin_may_act_on_any_delivery(self, deliveries, make_delivery):
        created = await make_delivery()
        delivery = await deliveries.get_delivery(created.id, OTHER_SENDER_ID, is_admin=True)
        assert delivery.id == created.id

    @pytest.mark.asyncio
    async def test_non_owner_refused(self, deliveries, make_delivery):
        created = await make_delivery()

        with pytest.raises(NotDeliveryOwnerError) as exc_info:
            await deliveries.revoke(created.id, OTHER_SENDER_ID)

        assert exc_info.value.status_code == 403
        assert created.status is DeliveryStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_delivery(self, deliveries):
        with pytest.raises(DeliveryNotFoundError):
            await deliveries.delete_delivery(uuid.uuid4(), SENDER_ID)


class TestListingAndStats:
    @pytest.mark.asyncio
    async def test_lists_own_deliveries_newest_first(self, deliveries, clock, make_delivery):
        older = await make_delivery()
        clock.advance(minutes=1)
        newer = await make_delivery()
        await make_delivery(sender_id=OTHER_SENDER_ID)

        items = await deliveries.list_deliveries(SENDER_ID)

        assert [d.id for d in items] == [newer.id, older.id]
        assert [d.id for d in await deliveries.list_deliveries(SENDER_ID, limit=1, offset=1)] == [
            older.id
        ]

    @pytest.mark.asyncio
    async def test_stats(self, deliveries, clock, make_delivery):
        clock.now = clock.now.replace(day=1) - timedelta(days=1)
        await make_delivery(status=DeliveryStatus.EXPIRED)
        clock.advance(days=2)
        await make_delivery()
        await make_delivery(status=DeliveryStatus.REVOKED)
        await make_delivery(sender_id=OTHER_SENDER_ID)

        own = await deliveries.stats(SENDER_ID)
        everyone = await deliveries.stats(None)

        assert (own.total, own.active, own.expired, own.revoked) == (3, 1, 1, 1)
        assert own.this_month == 2
        assert everyone.total == 4


class TestRevokeAndDelete:
    @pytest.mark.asyncio
    async def test_revoke_logs_sender(self, deliveries, store, make_delivery):
        delivery = await make_delivery()

        result = await deliveries.revoke(delivery.id, SENDER_ID)

        assert result.changed is True
        [entry] = store.logs_for(delivery.id, AccessAction.REVOKED)
        assert entry.log_metadata["viewer_type"] == "sender"

    @pytest.mark.asyncio
    async def test_delete_erases_files_and_row_but_keeps_log(
        self, deliveries, store, storage, make_delivery
    ):
        delivery = await make_delivery(files=[("a.pdf", b"A"), ("b.pdf", b"B")])

        report = await deliveries.delete_delivery(delivery.id, SENDER_ID)

        assert len(report.deleted_keys) == 2
        assert delivery.id not in store.deliveries
        assert storage.objects == {}
        assert store.logs_for(delivery.id, AccessAction.DESTROYED)

    @pytest.mark.asyncio
    async def test_delete_with_failed_blob_still_removes_row(
        self, deliveries, store, storage, make_delivery
    ):
        delivery = await make_delivery(files=[("a.pdf", b"A")])
        [delivery_file] = await store.list_files(delivery.id)
        storage.failing_keys.add(delivery_file.storage_key)

        report = await deliveries.delete_delivery(delivery.id, SENDER_ID)

        assert not report.complete
        assert delivery.id not in store.deliveries


class TestResendNotification:
    @pytest.mark.asyncio
    async def test_sends_notification(self, deliveries, mailer, make_delivery):
        delivery = await make_delivery(files=[("a.pdf", b"A"), ("b.pdf", b"B")])

        result = await deliveries.resend_notification(delivery.id, SENDER_ID)

        assert result.success
        [sent] = mailer.sent
        assert sent["kind"] == "delivery_notification"
        assert sent["recipient_email"] == RECIPIENT
        assert sent["file_count"] == 2

    @pytest.mark.asyncio
    async def test_refused_when_not_active(self, deliveries, mailer, clock, make_delivery):
        revoked = await make_delivery(status=DeliveryStatus.REVOKED)
        overdue = await make_delivery(expires_in=timedelta(minutes=1))
        clock.advance(minutes=2)

        for delivery in (revoked, overdue):
            with pytest.raises(InvalidStateError):
                await deliveries.resend_notification(delivery.id, SENDER_ID)

        assert mailer.sent == []
