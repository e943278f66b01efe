"""SendSafe background sweeper (``sendsafe-worker``).

Each sweep expires ACTIVE deliveries whose deadline has passed, then
erases the files of expired and revoked deliveries that still have
some. A sweep that comes back with a full expiry batch runs the next
batch immediately; otherwise the worker sleeps for
``sweep_interval_seconds`` or until SIGTERM/SIGINT.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, NoReturn

from sendsafe.db import close_engine, get_async_session
from sendsafe.services.audit_log import AccessLogService
from sendsafe.services.destruction import DestructionCoordinator
from sendsafe.services.lifecycle import DeliveryLifecycleService
from sendsafe.services.repository import SqlDeliveryRepository
from sendsafe.services.storage import ObjectStoreClient
from sendsafe.worker.handlers.expiry import expire_overdue_handler, purge_terminal_handler

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession

    from sendsafe.core.config import WorkerSettings
    from sendsafe.services.repository import DeliveryStore

logger = logging.getLogger(__name__)

# Cap on back-to-back expiry batches within one sweep
MAX_BATCHES_PER_SWEEP = 50
SHUTDOWN_GRACE_SECONDS = 30


class Worker:
    """Runs sweeps until stopped.

    ``session_factory`` and ``store_factory`` default to the PostgreSQL
    session and repository; tests swap in an in-memory store.
    """

    def __init__(
        self,
        config: WorkerSettings,
        storage: ObjectStoreClient,
        *,
        session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]] = (
            get_async_session
        ),
        store_factory: Callable[[AsyncSession], DeliveryStore] = SqlDeliveryRepository,
    ) -> None:
        self.config = config
        self._storage = storage
        self._session_factory = session_factory
        self._store_factory = store_factory
        self._stopping = asyncio.Event()
        self._started_at: datetime | None = None
        self._sweeps = 0
        self._sweeps_failed = 0

    async def start(self) -> None:
        self._started_at = datetime.now(UTC)
        logger.info(
            "Worker started (every %ds, batches of %d, purge %s)",
            self.config.sweep_interval_seconds,
            self.config.batch_size,
            "on" if self.config.purge_terminal_files else "off",
        )
        try:
            while not self._stopping.is_set():
                await self._sweep_safely()
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(
                        self._stopping.wait(), timeout=self.config.sweep_interval_seconds
                    )
        finally:
            await close_engine()
            logger.info(
                "Worker stopped after %d sweeps (%d failed), up %s",
                self._sweeps,
                self._sweeps_failed,
                self.uptime,
            )

    async def stop(self) -> None:
        logger.info("Worker stop requested")
        self._stopping.set()

    async def run_once(self) -> dict[str, Any]:
        """One sweep: expiry batches, then a purge batch when enabled."""
        async with self._session_factory() as session:
            store = self._store_factory(session)
            audit = AccessLogService(store)
            lifecycle = DeliveryLifecycleService(
                store, DestructionCoordinator(store, self._storage, audit), audit
            )

            expired = 0
            for _ in range(MAX_BATCHES_PER_SWEEP):
                batch = await expire_overdue_handler(lifecycle, self.config.batch_size)
                expired += batch["expired_count"]
                if self._stopping.is_set() or not batch["batch_full"]:
                    break

            result: dict[str, Any] = {"expired_count": expired}
            if self.config.purge_terminal_files:
                result["purge"] = await purge_terminal_handler(lifecycle, self.config.batch_size)

        self._sweeps += 1
        return result

    async def _sweep_safely(self) -> None:
        try:
            await self.run_once()
        except Exception:
            self._sweeps_failed += 1
            logger.exception("Sweep failed; retrying after the interval")

    @property
    def uptime(self) -> timedelta:
        if self._started_at is None:
            return timedelta(0)
        return timedelta(seconds=int((datetime.now(UTC) - self._started_at).total_seconds()))


async def _serve(stopping: asyncio.Event) -> None:
    from sendsafe.core.settings import get_settings

    settings = get_settings()
    storage = ObjectStoreClient.from_settings(settings.s3)
    if storage.ensure_bucket():
        logger.info("Created missing bucket %s", storage.bucket)

    worker = Worker(settings.worker, storage)
    task = asyncio.create_task(worker.start())
    await stopping.wait()
    await worker.stop()
    try:
        await asyncio.wait_for(task, timeout=SHUTDOWN_GRACE_SECONDS)
    except TimeoutError:
        logger.warning("Worker still busy after %ds, cancelling", SHUTDOWN_GRACE_SECONDS)
        task.cancel()


async def _main() -> None:
    stopping = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stopping.set)
    await _serve(stopping)


def run() -> NoReturn:
    """Entry point of the sendsafe-worker console script."""
    from sendsafe.core.settings import get_settings

    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(_main())
    except Exception:
        logger.exception("Worker crashed")
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    run()
