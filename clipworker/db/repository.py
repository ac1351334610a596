"""
Job repository for database operations.
Implements the conditional-update data access patterns the workers rely on.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import and_, delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from clipworker.constants import (
    TERMINAL_STATUSES,
    JobStatus,
    JobType,
    TaskKind,
    TaskStatus,
)
from clipworker.db.models import (
    DiscoveredCandidate,
    Job,
    Task,
    WorkerHeartbeat,
    utcnow,
)
from clipworker.types.queue import Queue

logger = logging.getLogger(__name__)

Record = Job | Task


class JobRepository:
    """
    Repository for job and task database operations.

    Every ownership-changing write is a compare-and-swap: it only applies
    when the row is still in the status (and, after claim, owner) the caller
    expects. A write that matched no row returns None/False instead of
    raising, leaving the decision to the caller.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    # ------------------------------------------------------------------
    # Producers (used by tests and seeding scripts)
    # ------------------------------------------------------------------

    async def create_job(
        self,
        job_type: JobType,
        payload: dict[str, Any] | None = None,
        user_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Job:
        """Insert a new READY job."""
        job = Job(
            type=job_type,
            status=JobStatus.READY,
            attempts=0,
            payload=payload or {},
            user_id=user_id,
            created_at=created_at or utcnow(),
        )
        self._session.add(job)
        await self._session.flush()
        return job

    async def create_task(
        self,
        job_id: UUID,
        kind: TaskKind,
        task_input: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> Task:
        """Insert a new QUEUED task under an existing job."""
        task = Task(
            job_id=job_id,
            kind=kind,
            status=TaskStatus.QUEUED,
            attempts=0,
            input=task_input or {},
            created_at=created_at or utcnow(),
        )
        self._session.add(task)
        await self._session.flush()
        return task

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_job(self, job_id: UUID) -> Job | None:
        """Get a job by ID."""
        stmt = select(Job).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_record(self, queue: Queue, record_id: UUID) -> Record | None:
        """Get a job or task by ID, depending on the queue."""
        model = queue.model
        stmt = select(model).where(model.id == record_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_status(self, queue: Queue, record_id: UUID) -> str | None:
        """Get the current status of a record, or None if it does not exist."""
        model = queue.model
        stmt = select(model.status).where(model.id == record_id)
        result = await self._session.execute(stmt)
        status = result.scalar_one_or_none()
        return status.value if status is not None else None

    async def find_oldest_ready(self, queue: Queue, max_attempts: int) -> Record | None:
        """
        Find the oldest record eligible for claiming, without locking it.

        Args:
            queue: The queue to scan.
            max_attempts: Records at the attempt bound are not eligible.

        Returns:
            The candidate record or None if the queue is empty.
        """
        model = queue.model
        stmt = (
            select(model)
            .where(*self._eligible(model, queue, max_attempts))
            .order_by(model.created_at.asc(), model.id.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def claim_oldest(
        self,
        queue: Queue,
        worker_id: str,
        max_attempts: int,
    ) -> Record | None:
        """
        Atomically claim the oldest eligible record in one statement.

        The candidate subquery uses FOR UPDATE SKIP LOCKED on PostgreSQL so
        concurrent claimers skip rows another transaction is already taking;
        the outer status condition makes the write a compare-and-swap on
        databases without row locks.

        Args:
            queue: The queue to claim from.
            worker_id: The claiming worker.
            max_attempts: Records at the attempt bound are not eligible.

        Returns:
            The claimed record (status PROCESSING) or None.
        """
        model = queue.model
        pending = aliased(model)
        candidate = (
            select(pending.id)
            .where(*self._eligible(pending, queue, max_attempts))
            .order_by(pending.created_at.asc(), pending.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(model)
            .where(
                and_(
                    model.id == candidate,
                    model.status == queue.ready_status,
                )
            )
            .values(**self._claim_values(model, queue, worker_id))
            .returning(model)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_record(
        self,
        queue: Queue,
        record_id: UUID,
        worker_id: str,
        max_attempts: int,
    ) -> Record | None:
        """
        Claim one known record if it is still eligible.

        Zero affected rows means another worker won the race.
        """
        model = queue.model
        stmt = (
            update(model)
            .where(
                and_(
                    model.id == record_id,
                    model.status == queue.ready_status,
                    model.attempts < max_attempts,
                )
            )
            .values(**self._claim_values(model, queue, worker_id))
            .returning(model)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Transitions out of PROCESSING
    # ------------------------------------------------------------------

    async def complete(
        self,
        queue: Queue,
        record_id: UUID,
        worker_id: str,
        result: dict[str, Any] | None = None,
    ) -> Record | None:
        """
        Mark an owned record as DONE with its result.

        Returns:
            Updated record or None if this worker no longer owns it.
        """
        now = utcnow()
        record = await self._transition(
            queue,
            record_id,
            worker_id,
            status=queue.done_status,
            result=result,
            error=None,
            owner=None,
            completed_at=now,
        )

        if record is not None and queue.propagates_to_parent:
            await self._finish_parent(
                record.job_id,
                JobStatus.DONE,
                result=result,
                error=None,
            )

        return record

    async def fail(
        self,
        queue: Queue,
        record_id: UUID,
        worker_id: str,
        error: str,
    ) -> Record | None:
        """
        Mark an owned record as FAILED.

        Returns:
            Updated record or None if this worker no longer owns it.
        """
        record = await self._transition(
            queue,
            record_id,
            worker_id,
            status=queue.failed_status,
            error=error,
            owner=None,
            completed_at=utcnow(),
        )

        if record is not None and queue.propagates_to_parent:
            await self._finish_parent(
                record.job_id,
                JobStatus.FAILED,
                result=None,
                error=error,
            )

        return record

    async def requeue(
        self,
        queue: Queue,
        record_id: UUID,
        worker_id: str,
        error: str | None = None,
    ) -> Record | None:
        """
        Return an owned record to the ready status so it re-enters the claim race.

        The attempt counter is left untouched.
        """
        return await self._transition(
            queue,
            record_id,
            worker_id,
            status=queue.ready_status,
            error=error,
            owner=None,
        )

    async def release(self, queue: Queue, record_id: UUID, worker_id: str) -> bool:
        """
        Release a claim on shutdown.

        Only applies while the record is still PROCESSING and owned by this
        worker, so a record that completed in the same instant is not touched.

        Returns:
            True if the record was returned to the ready status.
        """
        record = await self.requeue(queue, record_id, worker_id)
        return record is not None

    async def release_owned(self, queues: Iterable[Queue], worker_id: str) -> int:
        """
        Revert every record ``worker_id`` holds in ``queues`` to the ready status.

        Matches on owner rather than on a known id, so a claim that has
        committed but not yet been handed to the caller is released too.

        Returns:
            Number of records handed back.
        """
        released = 0
        for queue in queues:
            model = queue.model
            stmt = (
                update(model)
                .where(
                    and_(
                        queue.type_column(model) == queue.type_value,
                        model.status == queue.processing_status,
                        model.owner == worker_id,
                    )
                )
                .values(status=queue.ready_status, owner=None, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            result = await self._session.execute(stmt)
            released += result.rowcount
        return released

    async def fail_if_ready(self, queue: Queue, record_id: UUID, error: str) -> bool:
        """
        Fail a record that is unexpectedly sitting in the ready status.

        Used when a self-reclaim after backoff neither succeeded nor found the
        record owned or finished by someone else.
        """
        model = queue.model
        now = utcnow()
        stmt = (
            update(model)
            .where(
                and_(
                    model.id == record_id,
                    model.status == queue.ready_status,
                )
            )
            .values(
                status=queue.failed_status,
                error=error,
                owner=None,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Heartbeat and discovery output
    # ------------------------------------------------------------------

    async def record_heartbeat(
        self,
        worker_id: str,
        worker_type: str,
        status: str,
    ) -> None:
        """Upsert the liveness row for a worker."""
        if self._session.bind.dialect.name == "sqlite":
            insert = sqlite.insert
        else:
            insert = postgresql.insert

        now = utcnow()
        stmt = insert(WorkerHeartbeat).values(
            worker_id=worker_id,
            worker_type=worker_type,
            last_seen=now,
            status=status,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[WorkerHeartbeat.worker_id],
            set_={
                "worker_type": stmt.excluded.worker_type,
                "last_seen": stmt.excluded.last_seen,
                "status": stmt.excluded.status,
            },
        )
        await self._session.execute(stmt)

    async def get_heartbeat(self, worker_id: str) -> WorkerHeartbeat | None:
        stmt = select(WorkerHeartbeat).where(WorkerHeartbeat.worker_id == worker_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def replace_candidates(
        self,
        job_id: UUID,
        user_id: str | None,
        platform: str,
        candidates: Sequence[dict[str, Any]],
    ) -> int:
        """
        Store the candidate set of a discover job, replacing any earlier set.

        A re-run of the same job (after a lost completion write) therefore
        leaves exactly one set behind.

        Returns:
            Number of candidates stored.
        """
        await self._session.execute(
            delete(DiscoveredCandidate)
            .where(DiscoveredCandidate.job_id == job_id)
            .execution_options(synchronize_session=False)
        )
        rows = [
            DiscoveredCandidate(
                job_id=job_id,
                user_id=user_id,
                source_platform=platform,
                clip_url=candidate["url"],
                title=candidate.get("title"),
                thumbnail_url=candidate.get("thumbnail_url"),
                duration=candidate.get("duration"),
                viral_score=candidate.get("viral_score"),
            )
            for candidate in candidates
        ]
        self._session.add_all(rows)
        await self._session.flush()
        return len(rows)

    async def list_candidates(self, job_id: UUID) -> Sequence[DiscoveredCandidate]:
        stmt = (
            select(DiscoveredCandidate)
            .where(DiscoveredCandidate.job_id == job_id)
            .order_by(DiscoveredCandidate.viral_score.desc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _eligible(model: Any, queue: Queue, max_attempts: int) -> list[Any]:
        return [
            model.status == queue.ready_status,
            queue.type_column(model) == queue.type_value,
            model.attempts < max_attempts,
        ]

    @staticmethod
    def _claim_values(model: Any, queue: Queue, worker_id: str) -> dict[str, Any]:
        return {
            "status": queue.processing_status,
            "owner": worker_id,
            "attempts": model.attempts + 1,
            "updated_at": utcnow(),
        }

    async def _transition(
        self,
        queue: Queue,
        record_id: UUID,
        worker_id: str,
        **values: Any,
    ) -> Record | None:
        model = queue.model
        stmt = (
            update(model)
            .where(
                and_(
                    model.id == record_id,
                    model.status == queue.processing_status,
                    model.owner == worker_id,
                )
            )
            .values(updated_at=utcnow(), **values)
            .returning(model)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()

        if record is None:
            logger.warning(
                "Conditional update matched no owned record",
                extra={
                    "queue": queue.name.value,
                    "record_id": str(record_id),
                    "worker_id": worker_id,
                    "target_status": str(values.get("status")),
                },
            )

        return record

    async def _finish_parent(
        self,
        job_id: UUID,
        status: JobStatus,
        result: dict[str, Any] | None,
        error: str | None,
    ) -> None:
        now = utcnow()
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status.notin_(list(TERMINAL_STATUSES)),
                )
            )
            .values(
                status=status,
                result=result,
                error=error,
                owner=None,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)
        logger.info(
            "Parent job finished from task",
            extra={"job_id": str(job_id), "status": status.value},
        )
