"""
Integration tests for the retry state machine.

Handlers are replaced by a scripted executor; claims and status writes go
to the real store.
"""

import pytest
from sqlalchemy import update

from clipworker.constants import JobStatus, JobType, QueueName, TaskKind, TaskStatus
from clipworker.db.models import Job
from clipworker.db.repository import JobRepository
from clipworker.exceptions import JobValidationError, ProcessingError
from clipworker.types.job import HandlerContext, HandlerResult
from clipworker.types.queue import get_queue
from clipworker.worker.claim import AtomicClaim
from clipworker.worker.retry import Outcome, RetryStateMachine
from clipworker.worker.shutdown import ShutdownCoordinator

AI_SHORT = get_queue(QueueName.AI_SHORT)
RENDER = get_queue(QueueName.RENDER)


async def no_sleep(_: float) -> None:
    return None


class ScriptedExecutor:
    """Raises the scripted exceptions in order, then succeeds."""

    def __init__(self, *failures: Exception, output: dict | None = None):
        self.failures = list(failures)
        self.output = output if output is not None else {"url": "https://cdn.test/out.mp4"}
        self.contexts: list[HandlerContext] = []

    async def __call__(self, context: HandlerContext) -> HandlerResult:
        self.contexts.append(context)
        if self.failures:
            raise self.failures.pop(0)
        return HandlerResult(output=self.output)

    @property
    def attempts(self) -> list[int]:
        return [context.attempt for context in self.contexts]


class NeverReclaims(AtomicClaim):
    """Loses every reclaim without touching the record."""

    async def claim_by_id(self, queue, record_id, worker_id):
        return None


class TestRetryStateMachine:
    """Tests for RetryStateMachine."""

    def _machine(self, claim, session_factory, collaborators, executor, metrics, sleep=no_sleep, shutdown=None):
        return RetryStateMachine(
            claim=claim,
            session_factory=session_factory,
            collaborators=collaborators,
            worker_id="w1",
            max_attempts=3,
            backoff_seconds=5,
            shutdown=shutdown,
            executor=executor,
            sleep=sleep,
            metrics=metrics,
        )

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, session_factory, collaborators, seed, fetch, metrics):
        job = await seed(JobType.AI_SHORT, {"script": "hello"})
        claim = AtomicClaim(session_factory, max_attempts=3, metrics=metrics)
        executor = ScriptedExecutor()
        machine = self._machine(claim, session_factory, collaborators, executor, metrics)

        outcome = await machine.process(AI_SHORT, await claim.claim(AI_SHORT, "w1"))

        assert outcome == Outcome.DONE
        stored = await fetch(AI_SHORT, job.id)
        assert stored.status == JobStatus.DONE
        assert stored.result == {"url": "https://cdn.test/out.mp4"}
        assert stored.owner is None
        assert executor.contexts[0].payload == {"script": "hello"}
        assert executor.contexts[0].user_id == "user-1"

    @pytest.mark.asyncio
    async def test_transient_failures_retry_then_succeed(self, session_factory, collaborators, seed, fetch, metrics):
        """Test two transient failures followed by success on the third attempt."""
        job = await seed(JobType.AI_SHORT, {"script": "hello"})
        claim = AtomicClaim(session_factory, max_attempts=3, metrics=metrics)
        executor = ScriptedExecutor(ProcessingError("mux failed"), RuntimeError("network blip"))
        sleeps: list[float] = []

        async def record_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        machine = self._machine(claim, session_factory, collaborators, executor, metrics, sleep=record_sleep)

        outcome = await machine.process(AI_SHORT, await claim.claim(AI_SHORT, "w1"))

        assert outcome == Outcome.DONE
        assert executor.attempts == [1, 2, 3]
        assert sleeps == [5, 5]
        stored = await fetch(AI_SHORT, job.id)
        assert stored.status == JobStatus.DONE
        assert stored.attempts == 3
        assert stored.error is None
        assert metrics.retries.labels(queue="ai_short")._value.get() == 2

    @pytest.mark.asyncio
    async def test_validation_error_fails_immediately(self, session_factory, collaborators, seed, fetch, metrics):
        job = await seed(JobType.AI_SHORT, {})
        claim = AtomicClaim(session_factory, max_attempts=3, metrics=metrics)
        executor = ScriptedExecutor(JobValidationError("Invalid job payload: script"))
        machine = self._machine(claim, session_factory, collaborators, executor, metrics)

        outcome = await machine.process(AI_SHORT, await claim.claim(AI_SHORT, "w1"))

        assert outcome == Outcome.FAILED
        assert len(executor.contexts) == 1
        stored = await fetch(AI_SHORT, job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.attempts == 1
        assert stored.error == "Invalid job payload: script"

    @pytest.mark.asyncio
    async def test_exhausted_attempts_fail_with_count(self, session_factory, collaborators, seed, fetch, metrics):
        job = await seed(JobType.AI_SHORT, {"script": "hello"})
        claim = AtomicClaim(session_factory, max_attempts=3, metrics=metrics)
        executor = ScriptedExecutor(RuntimeError("boom"), RuntimeError("boom"), RuntimeError("boom"))
        machine = self._machine(claim, session_factory, collaborators, executor, metrics)

        outcome = await machine.process(AI_SHORT, await claim.claim(AI_SHORT, "w1"))

        assert outcome == Outcome.FAILED
        assert executor.attempts == [1, 2, 3]
        stored = await fetch(AI_SHORT, job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.attempts == 3
        assert stored.error == "boom (after 3 attempts)"
        assert metrics.records_finished.labels(queue="ai_short", status="failed")._value.get() == 1

    @pytest.mark.asyncio
    async def test_reclaim_lost_to_another_worker(self, session_factory, collaborators, seed, fetch, metrics):
        """Test that a record taken by another worker during backoff is left alone."""
        job = await seed(JobType.AI_SHORT, {"script": "hello"})
        claim = AtomicClaim(session_factory, max_attempts=3, metrics=metrics)
        executor = ScriptedExecutor(RuntimeError("boom"))

        async def rival_claims(_: float) -> None:
            await claim.claim(AI_SHORT, "w2")

        machine = self._machine(claim, session_factory, collaborators, executor, metrics, sleep=rival_claims)

        outcome = await machine.process(AI_SHORT, await claim.claim(AI_SHORT, "w1"))

        assert outcome == Outcome.ABANDONED
        assert len(executor.contexts) == 1
        stored = await fetch(AI_SHORT, job.id)
        assert stored.status == JobStatus.PROCESSING
        assert stored.owner == "w2"
        assert stored.attempts == 2

    @pytest.mark.asyncio
    async def test_reclaim_lost_after_record_finished(self, session_factory, collaborators, seed, fetch, metrics):
        job = await seed(JobType.AI_SHORT, {"script": "hello"})
        claim = AtomicClaim(session_factory, max_attempts=3, metrics=metrics)
        executor = ScriptedExecutor(RuntimeError("boom"))

        async def finished_elsewhere(_: float) -> None:
            async with session_factory() as session:
                await session.execute(update(Job).where(Job.id == job.id).values(status=JobStatus.DONE))

        machine = self._machine(claim, session_factory, collaborators, executor, metrics, sleep=finished_elsewhere)

        outcome = await machine.process(AI_SHORT, await claim.claim(AI_SHORT, "w1"))

        assert outcome == Outcome.ABANDONED
        assert (await fetch(AI_SHORT, job.id)).status == JobStatus.DONE

    @pytest.mark.asyncio
    async def test_reclaim_lost_while_ready_fails_record(self, session_factory, collaborators, seed, fetch, metrics):
        """Test that a record stranded in ready after a lost reclaim is failed."""
        job = await seed(JobType.AI_SHORT, {"script": "hello"})
        claim = NeverReclaims(session_factory, max_attempts=3, metrics=metrics)
        executor = ScriptedExecutor(RuntimeError("boom"))
        machine = self._machine(claim, session_factory, collaborators, executor, metrics)

        outcome = await machine.process(AI_SHORT, await claim.claim(AI_SHORT, "w1"))

        assert outcome == Outcome.ABANDONED
        stored = await fetch(AI_SHORT, job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "Worker retry failed: record in unexpected state after 1 attempts"

    @pytest.mark.asyncio
    async def test_render_task_result_reaches_parent(self, session_factory, collaborators, seed, fetch, metrics):
        task = await seed(TaskKind.RENDER, {"clip_url": "https://a"}, user_id="owner-9")
        claim = AtomicClaim(session_factory, max_attempts=3, metrics=metrics)
        executor = ScriptedExecutor(output={"path": "p.mp4", "url": "https://cdn.test/p.mp4"})
        machine = self._machine(claim, session_factory, collaborators, executor, metrics)

        outcome = await machine.process(RENDER, await claim.claim(RENDER, "w1"))

        assert outcome == Outcome.DONE
        assert executor.contexts[0].user_id == "owner-9"
        assert executor.contexts[0].parent_job_id == task.job_id
        assert (await fetch(RENDER, task.id)).status == TaskStatus.DONE
        async with session_factory() as session:
            parent = await JobRepository(session).get_job(task.job_id)
        assert parent.status == JobStatus.DONE
        assert parent.result == {"path": "p.mp4", "url": "https://cdn.test/p.mp4"}

    @pytest.mark.asyncio
    async def test_completion_after_release_is_dropped(self, session_factory, collaborators, seed, fetch, metrics):
        """Test that a handler finishing after a shutdown release does not overwrite the record."""
        job = await seed(JobType.AI_SHORT, {"script": "hello"})
        claim = AtomicClaim(session_factory, max_attempts=3, metrics=metrics)
        shutdown = ShutdownCoordinator(session_factory, "w1", grace_seconds=0, exit_func=lambda code: None)

        class ReleasingExecutor(ScriptedExecutor):
            async def __call__(self, context):
                assert shutdown.current == (AI_SHORT, job.id)
                await shutdown.release()
                return await super().__call__(context)

        executor = ReleasingExecutor()
        machine = self._machine(claim, session_factory, collaborators, executor, metrics, shutdown=shutdown)

        await machine.process(AI_SHORT, await claim.claim(AI_SHORT, "w1"))

        stored = await fetch(AI_SHORT, job.id)
        assert stored.status == JobStatus.READY
        assert stored.owner is None
        assert stored.result is None
        assert shutdown.current is None

    @pytest.mark.asyncio
    async def test_shutdown_during_backoff_skips_reclaim(self, session_factory, collaborators, seed, fetch, metrics):
        """Test that a record waiting out its backoff stays ready once shutdown has begun."""
        job = await seed(JobType.AI_SHORT, {"script": "hello"})
        claim = AtomicClaim(session_factory, max_attempts=3, metrics=metrics)
        exits: list[int] = []
        shutdown = ShutdownCoordinator(session_factory, "w1", grace_seconds=0, exit_func=exits.append, sleep=no_sleep)
        executor = ScriptedExecutor(RuntimeError("boom"))

        async def sigterm(_: float) -> None:
            await shutdown.terminate()

        machine = self._machine(claim, session_factory, collaborators, executor, metrics, sleep=sigterm, shutdown=shutdown)

        outcome = await machine.process(AI_SHORT, await claim.claim(AI_SHORT, "w1"))

        assert outcome == Outcome.ABANDONED
        assert len(executor.contexts) == 1
        assert exits == [0]
        stored = await fetch(AI_SHORT, job.id)
        assert stored.status == JobStatus.READY
        assert stored.attempts == 1
        assert stored.owner is None

    @pytest.mark.asyncio
    async def test_shutdown_during_reclaim_hands_record_back(
        self, session_factory, collaborators, seed, fetch, metrics
    ):
        """Test that a reclaim committing as SIGTERM lands is released instead of processed."""
        job = await seed(JobType.AI_SHORT, {"script": "hello"})
        shutdown = ShutdownCoordinator(session_factory, "w1", grace_seconds=0, exit_func=lambda code: None, sleep=no_sleep)

        class SigtermOnReclaim(AtomicClaim):
            async def claim_by_id(self, queue, record_id, worker_id):
                record = await super().claim_by_id(queue, record_id, worker_id)
                await shutdown.terminate()
                return record

        claim = SigtermOnReclaim(session_factory, max_attempts=3, metrics=metrics)
        executor = ScriptedExecutor(RuntimeError("boom"))
        machine = self._machine(claim, session_factory, collaborators, executor, metrics, shutdown=shutdown)

        outcome = await machine.process(AI_SHORT, await claim.claim(AI_SHORT, "w1"))

        assert outcome == Outcome.ABANDONED
        assert len(executor.contexts) == 1
        stored = await fetch(AI_SHORT, job.id)
        assert stored.status == JobStatus.READY
        assert stored.attempts == 2
        assert stored.owner is None
