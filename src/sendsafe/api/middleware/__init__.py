"""HTTP middleware: request ids, gateway identity and JSON error bodies."""

from sendsafe.api.middleware.auth import (
    AuthenticatedUser,
    GatewayAuthMiddleware,
    require_admin_user,
    require_authenticated_user,
    require_role,
)
from sendsafe.api.middleware.errors import APIError, ErrorHandlerMiddleware
from sendsafe.api.middleware.request_id import RequestIDMiddleware

__all__ = [
    "APIError",
    "AuthenticatedUser",
    "ErrorHandlerMiddleware",
    "GatewayAuthMiddleware",
    "RequestIDMiddleware",
    "require_admin_user",
    "require_authenticated_user",
    "require_role",
]
