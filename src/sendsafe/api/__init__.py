"""SendSafe HTTP API.

Three namespaces are mounted under ``/api``:

- ``/api/deliveries``: recipient pickup, gated by email and access code
- ``/api/sender``: delivery management for gateway-authenticated senders
- ``/api/audit``: compliance metrics for administrators

``create_app()`` builds a fully wired application, so tests can create
one per settings object.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sendsafe.api.middleware import (
    ErrorHandlerMiddleware,
    GatewayAuthMiddleware,
    RequestIDMiddleware,
)
from sendsafe.api.routers import audit_router, deliveries_router, sender_router

if TYPE_CHECKING:
    from sendsafe.core.config import Settings

logger = logging.getLogger(__name__)

DEV_ORIGINS = ["http://localhost:3000", "http://localhost:8000"]
EXPOSED_HEADERS = ["X-Request-ID", "X-Content-SHA256"]


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API application.

    Without ``settings`` the routes resolve them from the environment on
    first use.
    """
    version = settings.app_version if settings else "0.1.0"
    app = FastAPI(
        title="SendSafe API",
        description="Secure document delivery with view and download limits.",
        version=version,
        docs_url="/api/docs",
        redoc_url=None,
        openapi_url="/api/openapi.json",
    )
    app.state.settings = settings

    # Added innermost first: request ids exist before errors are rendered
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(GatewayAuthMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )

    for router in (deliveries_router, sender_router, audit_router):
        app.include_router(router, prefix="/api")

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    logger.info("SendSafe API %s ready", version)
    return app


def _cors_origins(settings: Settings | None) -> list[str]:
    if settings is not None and settings.is_production:
        return [settings.access.public_base_url]
    return DEV_ORIGINS
