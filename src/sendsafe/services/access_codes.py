"""One-time access codes: the second factor before downloading.

A recipient asks for a code, receives it by email, and submits it back.
Codes are 6 digits, live for a few minutes, and allow a small number of
wrong submissions. Running out of attempts destroys the delivery.

Verification order for a submission:
1. Newest unverified code for (delivery, email); none -> not found
2. Past its expiry -> expired, attempts untouched
3. Attempt budget already spent -> destroy, max attempts reached
4. Wrong code -> count the attempt; destroy when the budget is gone
5. Right code -> spend it (only one concurrent submission can)
"""

from __future__ import annotations

import hmac
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, NoReturn

from sendsafe.core.clock import utcnow
from sendsafe.db.models.access import AccessCode
from sendsafe.db.models.base import AccessAction
from sendsafe.services.access_gate import emails_match, normalize_email
from sendsafe.services.audit_log import AccessContext
from sendsafe.services.email import hash_email
from sendsafe.services.errors import (
    AccessCodeExpiredError,
    AccessCodeNotFoundError,
    DeliveryAccessError,
    InvalidAccessCodeError,
    MaxAttemptsReachedError,
    RecipientMismatchError,
)

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sendsafe.core.clock import Clock
    from sendsafe.core.config import AccessSettings
    from sendsafe.services.audit_log import AccessLogService
    from sendsafe.services.email import EmailNotificationService
    from sendsafe.services.lifecycle import DeliveryLifecycleService
    from sendsafe.services.repository import DeliveryStore

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
_CODE_SPACE = 10**CODE_LENGTH


def generate_code() -> str:
    """Draw a code uniformly from 000000-999999."""
    return f"{secrets.randbelow(_CODE_SPACE):0{CODE_LENGTH}d}"


@dataclass(frozen=True, slots=True)
class IssuedAccessCode:
    """Outcome of a code request. The code itself only travels by email.

    Attributes:
        delivery_id: Delivery the code unlocks.
        code_id: Id of the stored code.
        expires_at: When the code stops being accepted.
        notification_sent: False when the email could not be sent.
    """

    delivery_id: UUID
    code_id: UUID
    expires_at: datetime
    notification_sent: bool


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """A successful verification."""

    delivery_id: UUID
    code_id: UUID
    verified_at: datetime


class AccessCodeVerifier:
    """Issues and verifies recipient access codes."""

    def __init__(
        self,
        store: DeliveryStore,
        lifecycle: DeliveryLifecycleService,
        mailer: EmailNotificationService,
        audit: AccessLogService,
        settings: AccessSettings,
        *,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the verifier.

        Args:
            store: Storage backend for deliveries and codes.
            lifecycle: Lifecycle service, used for expiry and destruction.
            mailer: Notification sink for sending codes.
            audit: Access log writer.
            settings: Code lifetime and attempt budget.
            clock: Source of the current time.
        """
        self._store = store
        self._lifecycle = lifecycle
        self._mailer = mailer
        self._audit = audit
        self._settings = settings
        self._clock = clock or utcnow

    async def request_code(
        self,
        delivery_id: UUID,
        email: str,
        *,
        context: AccessContext | None = None,
    ) -> IssuedAccessCode:
        """Issue a new code for the recipient and email it.

        A failure to send the email does not fail the request: the code is
        stored and ``notification_sent`` is False.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            RecipientMismatchError: If the email is not the recipient's.
            DeliveryUnavailableError: If the delivery is terminal or past its expiry.
        """
        context = context or AccessContext()
        delivery = await self._lifecycle.get_delivery(delivery_id)

        if not emails_match(email, delivery.recipient_email):
            await self._log_failure(delivery_id, AccessAction.CODE_REQUESTED, context, "mismatch")
            raise RecipientMismatchError(delivery_id, missing=not normalize_email(email))

        try:
            await self._lifecycle.ensure_active(delivery)
        except DeliveryAccessError as e:
            await self._log_failure(delivery_id, AccessAction.CODE_REQUESTED, context, e.error)
            raise

        now = self._clock()
        access_code = AccessCode(
            id=uuid.uuid4(),
            delivery_id=delivery_id,
            recipient_email=normalize_email(email),
            code=generate_code(),
            created_at=now,
            expires_at=now + timedelta(minutes=self._settings.code_ttl_minutes),
            attempts=0,
            max_attempts=self._settings.code_max_attempts,
        )
        await self._store.add_code(access_code)

        notification = self._mailer.send_access_code(
            delivery_id=delivery_id,
            recipient_email=delivery.recipient_email,
            code=access_code.code,
            delivery_title=delivery.title,
            expires_in_minutes=self._settings.code_ttl_minutes,
        )
        if not notification.success:
            logger.warning(
                "Access code stored but email not sent",
                extra={"delivery_id": str(delivery_id), "error": notification.error},
            )

        await self._audit.record(
            delivery_id,
            AccessAction.CODE_REQUESTED,
            context=context,
            metadata={
                "email_hash": hash_email(email)[:16],
                "notification_sent": notification.success,
            },
        )

        return IssuedAccessCode(
            delivery_id=delivery_id,
            code_id=access_code.id,
            expires_at=access_code.expires_at,
            notification_sent=notification.success,
        )

    async def verify_code(
        self,
        delivery_id: UUID,
        email: str,
        code: str,
        *,
        context: AccessContext | None = None,
    ) -> VerificationResult:
        """Check a submitted code and spend it on success.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            DeliveryUnavailableError: If the delivery is terminal or past its expiry.
            AccessCodeNotFoundError: If no unverified code exists.
            AccessCodeExpiredError: If the newest code has expired.
            MaxAttemptsReachedError: If the attempt budget is gone (delivery destroyed).
            InvalidAccessCodeError: If the code is wrong; carries attempts remaining.
        """
        context = context or AccessContext()
        email = normalize_email(email)

        delivery = await self._lifecycle.get_delivery(delivery_id)
        try:
            await self._lifecycle.ensure_active(delivery)
        except DeliveryAccessError as e:
            await self._log_failure(delivery_id, AccessAction.CODE_VERIFIED, context, e.error)
            raise

        access_code = await self._store.latest_unverified_code(delivery_id, email)
        if access_code is None:
            await self._log_failure(delivery_id, AccessAction.CODE_VERIFIED, context, "not_found")
            raise AccessCodeNotFoundError(delivery_id)

        if self._clock() > access_code.expires_at:
            await self._log_failure(delivery_id, AccessAction.CODE_VERIFIED, context, "expired")
            raise AccessCodeExpiredError(delivery_id)

        if access_code.attempts >= access_code.max_attempts:
            await self._exhaust(delivery_id, context)

        if not hmac.compare_digest(access_code.code.encode(), code.strip().encode()):
            updated = await self._store.increment_code_attempts(access_code.id)
            remaining = 0 if updated is None else updated.max_attempts - updated.attempts
            if remaining <= 0:
                await self._exhaust(delivery_id, context)

            await self._log_failure(
                delivery_id,
                AccessAction.CODE_VERIFIED,
                context,
                "invalid_code",
                attempts_remaining=remaining,
            )
            raise InvalidAccessCodeError(delivery_id, remaining)

        verified_at = self._clock()
        spent = await self._store.mark_code_verified(access_code.id, verified_at)
        if spent is None:
            # A concurrent submission spent it first
            await self._log_failure(delivery_id, AccessAction.CODE_VERIFIED, context, "spent")
            raise AccessCodeNotFoundError(delivery_id)

        await self._audit.record(
            delivery_id,
            AccessAction.CODE_VERIFIED,
            context=context,
            metadata={"email_hash": hash_email(email)[:16]},
        )
        logger.info("Access code verified", extra={"delivery_id": str(delivery_id)})

        return VerificationResult(
            delivery_id=delivery_id,
            code_id=access_code.id,
            verified_at=verified_at,
        )

    async def has_verified_code(self, delivery_id: UUID, email: str) -> bool:
        """Whether the recipient verified a code within the verification window."""
        since = self._clock() - timedelta(minutes=self._settings.verification_window_minutes)
        return await self._store.has_verified_code(delivery_id, normalize_email(email), since)

    async def _exhaust(self, delivery_id: UUID, context: AccessContext) -> NoReturn:
        await self._lifecycle.handle_verification_exhausted(delivery_id)
        await self._log_failure(
            delivery_id,
            AccessAction.CODE_VERIFIED,
            context,
            "max_attempts_reached",
            attempts_remaining=0,
        )
        raise MaxAttemptsReachedError(delivery_id)

    async def _log_failure(
        self,
        delivery_id: UUID,
        action: AccessAction,
        context: AccessContext,
        reason: str,
        **extra: object,
    ) -> None:
        await self._audit.record(
            delivery_id,
            action,
            context=context,
            success=False,
            metadata={"reason": reason, **extra},
        )
