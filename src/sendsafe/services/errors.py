"""Domain errors raised by the delivery access services.

Every error carries the HTTP status and a machine-readable code so the
API error middleware can render it without a lookup table. All of them
are recoverable at the request boundary.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from uuid import UUID

# Message shown for any delivery that has left the active state
UNAVAILABLE_MESSAGE = "This delivery is no longer available"


class DeliveryAccessError(Exception):
    """Base class for delivery access failures."""

    status_code = 400
    error = "delivery_error"

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        self.message = message
        self.detail = detail
        super().__init__(message)


# -- not found ----------------------------------------------------------------


class DeliveryNotFoundError(DeliveryAccessError):
    """Raised when a delivery does not exist."""

    status_code = 404
    error = "not_found"

    def __init__(self, delivery_id: UUID) -> None:
        self.delivery_id = delivery_id
        super().__init__(f"Delivery {delivery_id} not found")


class DeliveryFileNotFoundError(DeliveryAccessError):
    """Raised when a file is not attached to the given delivery."""

    status_code = 404
    error = "not_found"

    def __init__(self, delivery_id: UUID, file_id: UUID) -> None:
        self.delivery_id = delivery_id
        self.file_id = file_id
        super().__init__(f"File {file_id} not found in delivery {delivery_id}")


class AccessCodeNotFoundError(DeliveryAccessError):
    """Raised when no unverified access code exists for the recipient."""

    status_code = 404
    error = "not_found"

    def __init__(self, delivery_id: UUID) -> None:
        self.delivery_id = delivery_id
        super().__init__("No valid access code found. Please request a new one.")


# -- unauthorized / forbidden ---------------------------------------------------


class RecipientMismatchError(DeliveryAccessError):
    """Raised when the presented email is missing or not the recipient's."""

    status_code = 401
    error = "unauthorized"

    def __init__(self, delivery_id: UUID, *, missing: bool = False) -> None:
        self.delivery_id = delivery_id
        self.missing = missing
        message = "Email is required" if missing else "Email does not match the recipient"
        super().__init__(message)


class DeliveryUnavailableError(DeliveryAccessError):
    """Raised when a delivery is expired or revoked."""

    status_code = 403
    error = "unavailable"

    def __init__(self, delivery_id: UUID, status: str | None = None) -> None:
        self.delivery_id = delivery_id
        self.status = status
        super().__init__(UNAVAILABLE_MESSAGE, {"status": status} if status else None)


class DeliveryExpiredError(DeliveryUnavailableError):
    """Raised when a delivery's expiry time has passed."""

    error = "expired"

    def __init__(self, delivery_id: UUID) -> None:
        super().__init__(delivery_id, "expired")


class LimitReachedError(DeliveryAccessError):
    """Raised when a view or download budget is exhausted."""

    status_code = 403
    error = "limit_reached"

    def __init__(self, delivery_id: UUID, counter: str) -> None:
        self.delivery_id = delivery_id
        self.counter = counter
        super().__init__(f"Maximum {counter} limit reached", {"counter": counter})


class VerificationRequiredError(DeliveryAccessError):
    """Raised when a download is attempted without a verified access code."""

    status_code = 403
    error = "verification_required"

    def __init__(self, delivery_id: UUID) -> None:
        self.delivery_id = delivery_id
        super().__init__("Verify the access code sent by email before downloading")


class NotDeliveryOwnerError(DeliveryAccessError):
    """Raised when a principal manages a delivery it does not own."""

    status_code = 403
    error = "forbidden"

    def __init__(self, delivery_id: UUID) -> None:
        self.delivery_id = delivery_id
        super().__init__("Only the sender or an administrator can manage this delivery")


class DeliveryValidationError(DeliveryAccessError):
    """Raised when sender input breaks a delivery rule."""

    status_code = 422
    error = "validation_error"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message, {"field": field} if field else None)


# -- state ----------------------------------------------------------------------


class InvalidStateError(DeliveryAccessError):
    """Raised when a transition is not legal from the current status."""

    status_code = 409
    error = "invalid_state"

    def __init__(self, delivery_id: UUID | None, current: str, requested: str) -> None:
        self.delivery_id = delivery_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot {requested} a delivery that is {current}",
            {"status": current},
        )


# -- access codes ---------------------------------------------------------------


class AccessCodeExpiredError(DeliveryAccessError):
    """Raised when the newest access code is past its expiry."""

    status_code = 403
    error = "code_expired"

    def __init__(self, delivery_id: UUID) -> None:
        self.delivery_id = delivery_id
        super().__init__("Access code has expired. Please request a new one.")


class MaxAttemptsReachedError(DeliveryAccessError):
    """Raised when the access code attempt budget is exhausted.

    The delivery has been destroyed by the time this is raised.
    """

    status_code = 403
    error = "max_attempts_reached"

    def __init__(self, delivery_id: UUID) -> None:
        self.delivery_id = delivery_id
        self.attempts_remaining = 0
        super().__init__(
            "Maximum verification attempts reached. This delivery is no longer available.",
            {"attempts_remaining": 0},
        )


class InvalidAccessCodeError(DeliveryAccessError):
    """Raised when a submitted code does not match."""

    status_code = 401
    error = "invalid_code"

    def __init__(self, delivery_id: UUID, attempts_remaining: int) -> None:
        self.delivery_id = delivery_id
        self.attempts_remaining = attempts_remaining
        super().__init__(
            "Invalid access code",
            {"attempts_remaining": attempts_remaining},
        )
