"""Background sweep of expired idempotency records.

Expired records are already ignored and dropped when touched, so the sweep
is not needed for correctness. It bounds memory in long-lived processes
using a store that keeps records in process (such as MemoryStore).

A sweep runs immediately on start and then every ``interval_seconds``.
A failing sweep is logged and the loop keeps going. Stopping is prompt:
the loop wakes as soon as it is signalled instead of finishing its sleep.

Examples:
    Run the sweep for the lifetime of a FastAPI app::

        from idempotency_coordinator.core.cleanup import start_cleanup_task, stop_cleanup_task

        @asynccontextmanager
        async def lifespan(app):
            sweeper = await start_cleanup_task(store, interval_seconds=300)
            yield
            await stop_cleanup_task(sweeper)
"""

import asyncio
from typing import Protocol

from idempotency_coordinator.observability.logging import get_logger
from idempotency_coordinator.observability.metrics import record_cleanup

logger = get_logger(__name__)


class SweepableStore(Protocol):
    """A store able to remove all of its expired records at once."""

    async def cleanup_expired(self) -> int: ...


async def cleanup_loop(
    store: SweepableStore,
    interval_seconds: float = 300,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Sweep ``store`` every ``interval_seconds`` until ``stop_event`` is set."""
    if stop_event is None:
        stop_event = asyncio.Event()

    logger.info("cleanup.started", interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            removed = await store.cleanup_expired()
        except Exception as e:
            logger.error("cleanup.failed", error=str(e), error_type=type(e).__name__)
        else:
            record_cleanup(removed)
            if removed:
                logger.info("cleanup.completed", records_removed=removed)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("cleanup.stopped")


class CleanupTask:
    """Handle on a running cleanup loop.

    Attributes:
        task: The asyncio task running cleanup_loop()
        interval_seconds: Time between sweeps
    """

    def __init__(self, store: SweepableStore, interval_seconds: float = 300) -> None:
        self.interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()
        self.task: asyncio.Task[None] = asyncio.create_task(
            cleanup_loop(store, interval_seconds, self._stop_event)
        )

    def done(self) -> bool:
        return self.task.done()

    def cancelled(self) -> bool:
        return self.task.cancelled()

    async def stop(self, timeout_seconds: float = 5.0) -> None:
        """Signal the loop to stop and wait for it.

        A sweep still running after ``timeout_seconds`` is cancelled.
        """
        self._stop_event.set()

        try:
            await asyncio.wait_for(asyncio.shield(self.task), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("cleanup.stop_timeout", timeout_seconds=timeout_seconds)
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                logger.debug("cleanup.cancelled")


async def start_cleanup_task(store: SweepableStore, interval_seconds: float = 300) -> CleanupTask:
    """Start the cleanup loop in the background; pass the handle to stop_cleanup_task()."""
    return CleanupTask(store, interval_seconds)


async def stop_cleanup_task(sweeper: CleanupTask, timeout_seconds: float = 5.0) -> None:
    """Stop a loop started by start_cleanup_task()."""
    await sweeper.stop(timeout_seconds)
