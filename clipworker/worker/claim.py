"""
Claim protocol.

Ownership of a record is only ever established by a compare-and-swap on
its status. Two interchangeable implementations are provided:

- AtomicClaim: select-and-update in one statement (FOR UPDATE SKIP LOCKED
  on PostgreSQL).
- ReadThenUpdateClaim: read the oldest candidate, then conditionally update
  it by id. Losing the race is reported as "no work", never as an error.
"""

import logging
from abc import ABC, abstractmethod
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from clipworker.config import Settings
from clipworker.constants import SPAN_CLAIM_RECORD
from clipworker.db.repository import JobRepository, Record
from clipworker.exceptions import ClaimLostError, TransientInfraError
from clipworker.observability.metrics import MetricsCollector, get_metrics
from clipworker.observability.tracing import get_tracer
from clipworker.types.job import SessionFactory
from clipworker.types.queue import Queue

logger = logging.getLogger(__name__)


class ClaimProtocol(ABC):
    """
    Acquire exclusive ownership of one eligible record.

    A successful claim moves the record to the processing status, increments
    ``attempts`` and sets ``owner``. Store failures are logged and reported
    as None so the scheduler treats them as an empty queue.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        max_attempts: int,
        metrics: MetricsCollector | None = None,
    ):
        self._session_factory = session_factory
        self.max_attempts = max_attempts
        self._metrics = metrics or get_metrics()

    @abstractmethod
    async def _claim_oldest(self, repo: JobRepository, queue: Queue, worker_id: str) -> Record | None:
        """Claim the oldest eligible record, or raise ClaimLostError."""

    async def claim(self, queue: Queue, worker_id: str) -> Record | None:
        """
        Claim the oldest eligible record of ``queue``.

        Returns:
            The claimed record, or None when the queue is empty, the race was
            lost, or the store is unavailable.
        """
        with get_tracer().start_as_current_span(SPAN_CLAIM_RECORD) as span:
            span.set_attribute("queue", str(queue.name))
            span.set_attribute("worker_id", worker_id)
            record = await self._guarded(queue, worker_id, lambda repo: self._claim_oldest(repo, queue, worker_id))
            span.set_attribute("claimed", record is not None)
            return record

    async def claim_by_id(self, queue: Queue, record_id: UUID, worker_id: str) -> Record | None:
        """
        Re-enter the claim race for one known record.

        Used by the retry path after its backoff: the same compare-and-swap
        as a regular claim, so another worker may win it instead.
        """
        async def attempt(repo: JobRepository) -> Record:
            record = await repo.claim_record(queue, record_id, worker_id, self.max_attempts)
            if record is None:
                raise ClaimLostError(str(record_id))
            return record

        with get_tracer().start_as_current_span(SPAN_CLAIM_RECORD) as span:
            span.set_attribute("queue", str(queue.name))
            span.set_attribute("record_id", str(record_id))
            record = await self._guarded(queue, worker_id, attempt)
            span.set_attribute("claimed", record is not None)
            return record

    async def release(self, queue: Queue, record_id: UUID, worker_id: str) -> bool:
        """
        Hand a claimed record back without processing it.

        Used when shutdown starts between a claim and its processing. Store
        errors are logged and reported as False.
        """
        try:
            async with self._session_factory() as session:
                released = await JobRepository(session).release(queue, record_id, worker_id)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "Failed to hand back claimed record",
                extra={"queue": str(queue.name), "record_id": str(record_id), "error": str(e)},
            )
            return False

        logger.info(
            "Claimed record handed back",
            extra={"queue": str(queue.name), "record_id": str(record_id), "released": released},
        )
        return released

    async def _guarded(self, queue, worker_id, operation) -> Record | None:
        queue_name = str(queue.name)
        try:
            async with self._session_factory() as session:
                record = await operation(JobRepository(session))
        except ClaimLostError as e:
            logger.debug("Claim race lost", extra={"queue": queue_name, "record_id": str(e)})
            return None
        except (SQLAlchemyError, OSError) as e:
            error = TransientInfraError(f"Claim failed on {queue_name}: {e}")
            logger.warning(str(error), extra={"queue": queue_name, "worker_id": worker_id})
            self._metrics.record_claim_error(queue_name)
            return None

        if record is None:
            return None

        self._metrics.record_claim(queue_name)
        logger.info(
            "Record claimed",
            extra={
                "queue": queue_name,
                "record_id": str(record.id),
                "attempt": record.attempts,
            },
        )
        return record


class AtomicClaim(ClaimProtocol):
    """Single-statement claim: UPDATE ... WHERE id = (SELECT ... SKIP LOCKED) RETURNING."""

    async def _claim_oldest(self, repo: JobRepository, queue: Queue, worker_id: str) -> Record | None:
        return await repo.claim_oldest(queue, worker_id, self.max_attempts)


class ReadThenUpdateClaim(ClaimProtocol):
    """Two-step claim: read the oldest candidate, then compare-and-swap it by id."""

    async def _claim_oldest(self, repo: JobRepository, queue: Queue, worker_id: str) -> Record | None:
        candidate = await repo.find_oldest_ready(queue, self.max_attempts)
        if candidate is None:
            return None

        record = await repo.claim_record(queue, candidate.id, worker_id, self.max_attempts)
        if record is None:
            raise ClaimLostError(str(candidate.id))
        return record


def build_claim_protocol(
    settings: Settings,
    session_factory: SessionFactory,
    metrics: MetricsCollector | None = None,
) -> ClaimProtocol:
    """Pick the claim implementation named by ``claim_strategy``."""
    if settings.claim_strategy == "read_update":
        return ReadThenUpdateClaim(session_factory, settings.max_attempts, metrics)
    return AtomicClaim(session_factory, settings.max_attempts, metrics)
