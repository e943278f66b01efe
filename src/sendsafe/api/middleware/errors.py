"""JSON error bodies for every failure that escapes a route.

Body shape::

    {"error": "<code>", "message": "<text>", "request_id": "...", "detail": {...}}

``request_id`` and ``detail`` are omitted when empty. Domain refusals
(DeliveryAccessError) and request-level APIErrors carry their own status
and code; object store outages become 502 and anything unexpected a
logged 500 without internals in the body.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from sendsafe.api.middleware.request_id import get_request_id
from sendsafe.services.errors import DeliveryAccessError
from sendsafe.services.storage import StorageError

logger = logging.getLogger(__name__)


class APIError(Exception):
    """A request the API refuses before any delivery rule is consulted."""

    status_code = 400
    error = "bad_request"

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationAPIError(APIError):
    error = "validation_error"


class PayloadTooLargeError(APIError):
    status_code = 413
    error = "payload_too_large"

    def __init__(self, limit_bytes: int) -> None:
        super().__init__(
            f"File exceeds the {limit_bytes} byte limit", {"limit_bytes": limit_bytes}
        )


def build_error_response(
    error: str,
    message: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    body: dict[str, Any] = {"error": error, "message": message}
    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id
    if detail:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        try:
            return await call_next(request)
        except (DeliveryAccessError, APIError) as exc:
            return build_error_response(exc.error, exc.message, exc.status_code, exc.detail)
        except StorageError as exc:
            logger.error(
                "Object store unavailable during %s %s",
                request.method,
                request.url.path,
                extra={"operation": exc.operation, "key": exc.key},
            )
            return build_error_response(
                "storage_unavailable", "File storage is temporarily unavailable", 502
            )
        except HTTPException as exc:
            return build_error_response("http_error", str(exc.detail), exc.status_code)
        except ValidationError as exc:
            return build_error_response(
                "validation_error",
                "Request validation failed",
                422,
                {"errors": exc.errors(include_url=False)},
            )
        except Exception:
            logger.exception("Unhandled error during %s %s", request.method, request.url.path)
            return build_error_response("internal_error", "An internal error occurred", 500)
