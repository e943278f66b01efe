"""Sender and admin identity from the trusted gateway.

The gateway in front of the API authenticates senders and forwards who
they are in two headers:

    X-Principal-Id:    UUID of the sender
    X-Principal-Roles: comma-separated roles, e.g. "sender,admin"

GatewayAuthMiddleware attaches an AuthenticatedUser to ``request.state``
and never rejects a request itself; the route dependencies below do.
Recipients never carry these headers; they are identified by email and
access code instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.responses import Response

logger = logging.getLogger(__name__)

PRINCIPAL_ID_HEADER = "X-Principal-Id"
PRINCIPAL_ROLES_HEADER = "X-Principal-Roles"

ROLE_SENDER = "sender"
ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class AuthenticatedUser:
    principal_id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    def may_act_as(self, role: str) -> bool:
        """Admins hold every role."""
        return self.is_admin or role in self.roles


def parse_roles(header: str | None) -> frozenset[str]:
    return frozenset(
        role.strip().lower() for role in (header or "").split(",") if role.strip()
    )


def user_from_headers(request: Request) -> AuthenticatedUser | None:
    """Build the gateway principal, or None for anonymous/malformed headers."""
    raw_id = request.headers.get(PRINCIPAL_ID_HEADER)
    if not raw_id:
        return None
    try:
        principal_id = UUID(raw_id)
    except ValueError:
        logger.warning(
            "Malformed %s header ignored", PRINCIPAL_ID_HEADER, extra={"path": request.url.path}
        )
        return None
    return AuthenticatedUser(
        principal_id=principal_id,
        roles=parse_roles(request.headers.get(PRINCIPAL_ROLES_HEADER)),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


class GatewayAuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request.state.user = user_from_headers(request)
        return await call_next(request)


async def require_authenticated_user(request: Request) -> AuthenticatedUser:
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user


def require_role(role: str) -> Callable[..., Awaitable[AuthenticatedUser]]:
    """Dependency factory: the caller must hold ``role`` (or be an admin).

    Usage:
        SenderUser = Annotated[AuthenticatedUser, Depends(require_role("sender"))]
    """

    async def _check_role(
        user: Annotated[AuthenticatedUser, Depends(require_authenticated_user)],
    ) -> AuthenticatedUser:
        if not user.may_act_as(role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role required: {role}",
            )
        return user

    return _check_role


require_admin_user = require_role(ROLE_ADMIN)
