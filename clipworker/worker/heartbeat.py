"""
Heartbeat reporter.

Upserts the worker's liveness row on start and every interval, independent
of record processing. The row is informational: nothing in the worker
reads it back.
"""

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from clipworker.constants import HEARTBEAT_STATUS_RUNNING, HEARTBEAT_STATUS_STOPPED
from clipworker.db.repository import JobRepository
from clipworker.observability.metrics import MetricsCollector, get_metrics
from clipworker.types.job import SessionFactory

logger = logging.getLogger(__name__)


class HeartbeatReporter:
    def __init__(
        self,
        session_factory: SessionFactory,
        worker_id: str,
        worker_type: str,
        interval_seconds: float,
        metrics: MetricsCollector | None = None,
    ):
        self._session_factory = session_factory
        self.worker_id = worker_id
        self.worker_type = worker_type
        self.interval_seconds = interval_seconds
        self._metrics = metrics or get_metrics()
        self._task: asyncio.Task | None = None

    async def beat(self, status: str = HEARTBEAT_STATUS_RUNNING) -> bool:
        """
        Write one heartbeat.

        Returns:
            False if the write failed; the failure is logged, never raised.
        """
        try:
            async with self._session_factory() as session:
                await JobRepository(session).record_heartbeat(self.worker_id, self.worker_type, status)
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Heartbeat failed", extra={"worker_id": self.worker_id, "error": str(e)})
            self._metrics.record_heartbeat_failure()
            return False

        logger.debug("Heartbeat sent", extra={"worker_id": self.worker_id, "status": status})
        return True

    async def start(self) -> None:
        """Send the first heartbeat and schedule the periodic ones."""
        await self.beat()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the periodic task and record the worker as stopped."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.beat(HEARTBEAT_STATUS_STOPPED)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.beat()
            except Exception:
                logger.exception("Unexpected heartbeat error", extra={"worker_id": self.worker_id})
                self._metrics.record_heartbeat_failure()
