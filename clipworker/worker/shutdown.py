"""
Shutdown coordinator.

SIGTERM hands the in-flight record back: the scheduler is stopped, every
record still owned by this worker is reverted to ready (matched by owner,
not by the id the coordinator last saw), and the process exits after a
short grace period. A claim that commits after the release is handed back
by the scheduler or the retry loop, both of which check for shutdown
between claiming and processing. SIGINT exits at once without
releasing anything; the record stays processing until the external
stale-claim sweeper recovers it.

The in-flight handler is not cancelled. If it finishes during the grace
period its completion write no longer matches (the record is not owned
any more) and is dropped.
"""

import asyncio
import logging
import os
import signal
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from clipworker.constants import SPAN_RELEASE_CLAIM
from clipworker.db.repository import JobRepository
from clipworker.observability.tracing import get_tracer
from clipworker.types.job import SessionFactory
from clipworker.types.queue import Queue, queues_by_priority

if TYPE_CHECKING:
    from clipworker.worker.heartbeat import HeartbeatReporter
    from clipworker.worker.scheduler import PriorityScheduler

logger = logging.getLogger(__name__)

EXIT_TERMINATED = 0
EXIT_INTERRUPTED = 130


def hard_exit(code: int) -> None:
    """Flush log handlers and leave without unwinding the event loop."""
    logging.shutdown()
    os._exit(code)


class ShutdownCoordinator:
    def __init__(
        self,
        session_factory: SessionFactory,
        worker_id: str,
        grace_seconds: float,
        exit_func: Callable[[int], Any] = hard_exit,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._session_factory = session_factory
        self.worker_id = worker_id
        self.grace_seconds = grace_seconds
        self._exit = exit_func
        self._sleep = sleep
        self._current: tuple[Queue, UUID] | None = None
        self._scheduler: "PriorityScheduler | None" = None
        self._heartbeat: "HeartbeatReporter | None" = None
        self._queues = queues_by_priority()
        self._terminating = False
        self._terminate_task: asyncio.Task | None = None

    def attach(
        self,
        scheduler: "PriorityScheduler | None" = None,
        heartbeat: "HeartbeatReporter | None" = None,
    ) -> None:
        self._scheduler = scheduler
        self._heartbeat = heartbeat

    @property
    def current(self) -> tuple[Queue, UUID] | None:
        """The (queue, record id) this worker currently owns, if any."""
        return self._current

    @property
    def terminating(self) -> bool:
        return self._terminating

    def acquire(self, queue: Queue, record_id: UUID) -> None:
        self._current = (queue, record_id)

    def clear(self) -> None:
        self._current = None

    async def release(self) -> bool:
        """
        Revert every record this worker owns to ready.

        Ownership is matched in the store (``status = processing AND owner =
        worker_id`` on each queue), so a claim that committed before the
        scheduler saw it is handed back as well. Failures are logged.

        Returns:
            True if at least one record was handed back.
        """
        with get_tracer().start_as_current_span(SPAN_RELEASE_CLAIM) as span:
            span.set_attribute("worker_id", self.worker_id)
            if self._current is not None:
                span.set_attribute("record_id", str(self._current[1]))
            try:
                async with self._session_factory() as session:
                    released = await JobRepository(session).release_owned(self._queues, self.worker_id)
            except (SQLAlchemyError, OSError) as e:
                logger.error(
                    "Failed to release claim on shutdown",
                    extra={"worker_id": self.worker_id, "error": str(e)},
                )
                return False
            span.set_attribute("released", released)

        logger.info(
            "Released claims on shutdown",
            extra={
                "worker_id": self.worker_id,
                "released": released,
                "record_id": str(self._current[1]) if self._current else None,
            },
        )
        self._current = None
        return released > 0

    async def terminate(self) -> None:
        """Graceful path (SIGTERM): stop polling, release, wait, exit."""
        self._terminating = True
        logger.info("Received SIGTERM, releasing claim", extra={"worker_id": self.worker_id})

        if self._scheduler is not None:
            self._scheduler.stop()

        await self.release()

        if self._heartbeat is not None:
            await self._heartbeat.stop()

        await self._sleep(self.grace_seconds)
        self._exit(EXIT_TERMINATED)

    def interrupt(self) -> None:
        """Immediate path (SIGINT): exit without releasing."""
        logger.warning("Received SIGINT, exiting immediately", extra={"worker_id": self.worker_id})
        self._exit(EXIT_INTERRUPTED)

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        """Register the signal handlers on ``loop``."""
        loop.add_signal_handler(signal.SIGTERM, self._on_sigterm, loop)
        loop.add_signal_handler(signal.SIGINT, self.interrupt)

    def _on_sigterm(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._terminating:
            return
        self._terminating = True
        self._terminate_task = loop.create_task(self.terminate())
