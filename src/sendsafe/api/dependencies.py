"""FastAPI dependencies wiring the service layer per request.

One database session, and therefore one DeliveryStore, is shared by every
service built for a request; FastAPI caches each dependency for the
duration of the request.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request

# NOTE: AsyncSession and Settings are needed at runtime for dependency injection
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from sendsafe.core.config import Settings  # noqa: TC001
from sendsafe.core.settings import get_settings
from sendsafe.db.models.base import ViewerType
from sendsafe.services.access_codes import AccessCodeVerifier
from sendsafe.services.access_gate import AccessGate
from sendsafe.services.audit_log import AccessContext, AccessLogService
from sendsafe.services.counters import CounterService
from sendsafe.services.deliveries import DeliveryService
from sendsafe.services.destruction import DestructionCoordinator
from sendsafe.services.email import EmailNotificationService
from sendsafe.services.lifecycle import DeliveryLifecycleService
from sendsafe.services.pickup import PickupService
from sendsafe.services.repository import SqlDeliveryRepository
from sendsafe.services.storage import ObjectStoreClient

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with, or the environment's."""
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


AppSettings = Annotated[Settings, Depends(get_app_settings)]


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session from the application's session factory."""
    from sendsafe.db import get_async_session

    async with get_async_session() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


def get_store(db: DbSession) -> SqlDeliveryRepository:
    return SqlDeliveryRepository(db)


def get_storage_client(settings: AppSettings) -> ObjectStoreClient:
    """Get the object store client configured from settings."""
    return ObjectStoreClient.from_settings(settings.s3)


def get_mailer(settings: AppSettings) -> EmailNotificationService:
    return EmailNotificationService(
        settings.smtp,
        base_url=settings.access.public_base_url,
        app_name=settings.app_name,
    )


Store = Annotated[SqlDeliveryRepository, Depends(get_store)]
StorageClient = Annotated[ObjectStoreClient, Depends(get_storage_client)]
Mailer = Annotated[EmailNotificationService, Depends(get_mailer)]


def get_access_log_service(store: Store) -> AccessLogService:
    return AccessLogService(store)


AuditLog = Annotated[AccessLogService, Depends(get_access_log_service)]


def get_destruction_coordinator(
    store: Store, storage: StorageClient, audit: AuditLog
) -> DestructionCoordinator:
    return DestructionCoordinator(store, storage, audit)


Destruction = Annotated[DestructionCoordinator, Depends(get_destruction_coordinator)]


def get_lifecycle_service(
    store: Store, destruction: Destruction, audit: AuditLog
) -> DeliveryLifecycleService:
    return DeliveryLifecycleService(store, destruction, audit)


Lifecycle = Annotated[DeliveryLifecycleService, Depends(get_lifecycle_service)]


def get_pickup_service(
    store: Store,
    storage: StorageClient,
    mailer: Mailer,
    audit: AuditLog,
    lifecycle: Lifecycle,
    settings: AppSettings,
) -> PickupService:
    verifier = AccessCodeVerifier(store, lifecycle, mailer, audit, settings.access)
    return PickupService(
        store,
        AccessGate(store),
        lifecycle,
        CounterService(store),
        verifier,
        storage,
        audit,
        settings.access,
    )


def get_delivery_service(
    store: Store,
    storage: StorageClient,
    mailer: Mailer,
    lifecycle: Lifecycle,
    destruction: Destruction,
    settings: AppSettings,
) -> DeliveryService:
    return DeliveryService(store, storage, lifecycle, destruction, mailer, settings.access)


Pickup = Annotated[PickupService, Depends(get_pickup_service)]
Deliveries = Annotated[DeliveryService, Depends(get_delivery_service)]


def get_access_context(request: Request) -> AccessContext:
    """Recipient request details for the access log."""
    return AccessContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
        viewer_type=ViewerType.RECIPIENT,
    )


def get_sender_context(request: Request) -> AccessContext:
    """Sender request details for the access log."""
    return AccessContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
        viewer_type=ViewerType.SENDER,
    )


RecipientContext = Annotated[AccessContext, Depends(get_access_context)]
SenderContext = Annotated[AccessContext, Depends(get_sender_context)]
