"""
Retry state machine.

Drives one claimed record through handler attempts:

- success                          -> done
- JobValidationError               -> failed, on any attempt
- other failure, attempts < max    -> ready, backoff, reclaim the same record
- other failure, attempts >= max   -> failed "<reason> (after N attempts)"

Every write out of processing is conditional on this worker still owning
the record, so a record released by shutdown or finished elsewhere is
never overwritten.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from clipworker.clients import Collaborators
from clipworker.constants import SPAN_PROCESS_RECORD
from clipworker.db.repository import JobRepository, Record
from clipworker.exceptions import JobValidationError, PersistenceError, ProcessingError
from clipworker.observability.metrics import MetricsCollector, get_metrics
from clipworker.observability.tracing import get_tracer
from clipworker.types.job import HandlerContext, HandlerResult, SessionFactory
from clipworker.types.queue import Queue
from clipworker.worker.claim import ClaimProtocol
from clipworker.worker.handlers import execute_handler

if TYPE_CHECKING:
    from clipworker.worker.shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)

Executor = Callable[[HandlerContext], Awaitable[HandlerResult]]


class Outcome(StrEnum):
    """How processing of a claimed record ended for this worker."""

    DONE = "done"
    FAILED = "failed"
    ABANDONED = "abandoned"


class RetryStateMachine:
    """
    Process claimed records with bounded, self-reclaiming retries.

    Args:
        claim: Claim protocol used to re-enter the race after a backoff.
        session_factory: Async context manager factory yielding sessions
            that commit on exit.
        collaborators: External engines handed to handlers.
        worker_id: Identity written as ``owner``.
        max_attempts: Attempt bound.
        backoff_seconds: Wait between a requeue and the reclaim.
        shutdown: Coordinator told which record is currently owned.
        executor: Handler dispatcher (tests inject fakes).
        sleep: Backoff sleep (tests inject a no-op).
        metrics: Metrics collector.
    """

    def __init__(
        self,
        claim: ClaimProtocol,
        session_factory: SessionFactory,
        collaborators: Collaborators,
        worker_id: str,
        max_attempts: int,
        backoff_seconds: float,
        shutdown: "ShutdownCoordinator | None" = None,
        executor: Executor = execute_handler,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: MetricsCollector | None = None,
    ):
        self._claim = claim
        self._session_factory = session_factory
        self._collaborators = collaborators
        self.worker_id = worker_id
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._shutdown = shutdown
        self._execute = executor
        self._sleep = sleep
        self._metrics = metrics or get_metrics()

    async def process(self, queue: Queue, record: Record) -> Outcome:
        """
        Run ``record`` to a terminal state, or until ownership is lost.

        Never raises for handler failures; they become transitions.
        """
        current = record
        queue_name = str(queue.name)

        while True:
            attempt = current.attempts
            record_id = current.id
            start_time = time.perf_counter()

            if self._shutdown is not None:
                self._shutdown.acquire(queue, record_id)

            try:
                with get_tracer().start_as_current_span(SPAN_PROCESS_RECORD) as span:
                    span.set_attribute("queue", queue_name)
                    span.set_attribute("record_id", str(record_id))
                    span.set_attribute("attempt", attempt)
                    context = await self._build_context(queue, current)
                    result = await self._execute(context)

            except JobValidationError as e:
                logger.warning(
                    "Record failed validation",
                    extra={"queue": queue_name, "record_id": str(record_id), "error": str(e)},
                )
                await self._write(lambda repo: repo.fail(queue, record_id, self.worker_id, str(e)))
                self._finished(queue_name, Outcome.FAILED, start_time)
                return Outcome.FAILED

            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.warning(
                    "Record attempt failed",
                    extra={
                        "queue": queue_name,
                        "record_id": str(record_id),
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "error": reason,
                    },
                    exc_info=not isinstance(e, ProcessingError),
                )

                if attempt >= self.max_attempts:
                    error = f"{reason} (after {attempt} attempts)"
                    await self._write(lambda repo: repo.fail(queue, record_id, self.worker_id, error))
                    self._finished(queue_name, Outcome.FAILED, start_time)
                    return Outcome.FAILED

                requeued = await self._write(
                    lambda repo: repo.requeue(queue, record_id, self.worker_id, error=reason)
                )
                self._clear_current()
                self._metrics.record_retry(queue_name)
                self._finished(queue_name, "retry", start_time)

                if requeued is None:
                    return Outcome.ABANDONED

                logger.info(
                    "Retrying record after backoff",
                    extra={"queue": queue_name, "record_id": str(record_id), "backoff": self.backoff_seconds},
                )
                await self._sleep(self.backoff_seconds)

                if self._shutting_down():
                    logger.info(
                        "Shutdown during backoff, leaving record ready",
                        extra={"queue": queue_name, "record_id": str(record_id)},
                    )
                    return Outcome.ABANDONED

                reclaimed = await self._claim.claim_by_id(queue, record_id, self.worker_id)
                if reclaimed is None:
                    await self._resolve_lost_reclaim(queue, record_id, attempt)
                    return Outcome.ABANDONED

                if self._shutting_down():
                    await self._claim.release(queue, record_id, self.worker_id)
                    return Outcome.ABANDONED

                current = reclaimed
                continue

            output = result.output
            await self._write(lambda repo: repo.complete(queue, record_id, self.worker_id, output))
            self._finished(queue_name, Outcome.DONE, start_time)
            logger.info(
                "Record completed",
                extra={"queue": queue_name, "record_id": str(record_id), "attempt": attempt},
            )
            return Outcome.DONE

    async def _build_context(self, queue: Queue, record: Record) -> HandlerContext:
        user_id = None
        parent_job_id = None

        if queue.is_task:
            parent_job_id = record.job_id
            async with self._session_factory() as session:
                parent = await JobRepository(session).get_job(parent_job_id)
            user_id = parent.user_id if parent is not None else None
            payload = record.input
        else:
            user_id = record.user_id
            payload = record.payload

        return HandlerContext(
            queue=queue,
            record_id=record.id,
            worker_id=self.worker_id,
            attempt=record.attempts,
            max_attempts=self.max_attempts,
            payload=payload or {},
            collaborators=self._collaborators,
            session_factory=self._session_factory,
            user_id=user_id,
            parent_job_id=parent_job_id,
        )

    async def _resolve_lost_reclaim(self, queue: Queue, record_id: UUID, attempt: int) -> None:
        """
        Decide what to do after losing the reclaim of our own retried record.

        Owned or finished elsewhere: leave it alone. Still ready (or gone):
        nobody will pick it up through this path, so fail it.
        """
        queue_name = str(queue.name)
        status = await self._write(lambda repo: repo.get_status(queue, record_id))

        if status == queue.processing_status:
            logger.info("Retried record claimed by another worker", extra={"queue": queue_name, "record_id": str(record_id)})
            return
        if status in (queue.done_status, queue.failed_status):
            logger.info(
                "Retried record already finished",
                extra={"queue": queue_name, "record_id": str(record_id), "status": status},
            )
            return

        error = f"Worker retry failed: record in unexpected state after {attempt} attempts"
        logger.warning(
            "Retried record in unexpected state, marking failed",
            extra={"queue": queue_name, "record_id": str(record_id), "status": status or "missing"},
        )
        await self._write(lambda repo: repo.fail_if_ready(queue, record_id, error))

    async def _write(self, operation: Callable[[JobRepository], Awaitable[Any]]) -> Any:
        """Run one repository operation in its own transaction; store errors are logged."""
        try:
            async with self._session_factory() as session:
                return await operation(JobRepository(session))
        except (SQLAlchemyError, OSError) as e:
            error = PersistenceError(f"Status write failed: {e}")
            logger.error(str(error), extra={"worker_id": self.worker_id})
            return None

    def _shutting_down(self) -> bool:
        return self._shutdown is not None and self._shutdown.terminating

    def _clear_current(self) -> None:
        if self._shutdown is not None:
            self._shutdown.clear()

    def _finished(self, queue_name: str, status: str, start_time: float) -> None:
        self._clear_current()
        self._metrics.record_finished(queue_name, str(status), time.perf_counter() - start_time)

