"""
Integration tests for worker functionality.

The scheduler, claim protocol, retry state machine and real handlers run
against the store; only the external engines are faked.
"""

import pytest

from clipworker.config import Settings
from clipworker.constants import JobStatus, JobType, QueueName, TaskKind, TaskStatus
from clipworker.db.repository import JobRepository
from clipworker.types.queue import get_queue
from clipworker.worker.claim import AtomicClaim, build_claim_protocol
from clipworker.worker.handlers import execute_handler
from clipworker.worker.retry import RetryStateMachine
from clipworker.worker.scheduler import PriorityScheduler, Trigger
from clipworker.worker.shutdown import ShutdownCoordinator


class StopWhenIdle(Trigger):
    """Stops the scheduler after the first tick that found nothing."""

    def __init__(self):
        self.scheduler: PriorityScheduler | None = None
        self.ticks: list[bool] = []

    async def wait(self, processed: bool) -> None:
        self.ticks.append(processed)
        if not processed:
            self.scheduler.stop()

    def cancel(self) -> None:
        pass


async def no_sleep(_: float) -> None:
    return None


class TestWorkerIntegration:
    """Integration tests for record processing through the scheduler."""

    @pytest.fixture
    def worker(self, test_settings: Settings, session_factory, collaborators, metrics):
        def _build(strategy: str = "atomic") -> PriorityScheduler:
            settings = test_settings.model_copy(update={"claim_strategy": strategy})
            claim = build_claim_protocol(settings, session_factory, metrics)
            shutdown = ShutdownCoordinator(session_factory, settings.worker_id, 0, exit_func=lambda code: None)
            retry = RetryStateMachine(
                claim=claim,
                session_factory=session_factory,
                collaborators=collaborators,
                worker_id=settings.worker_id,
                max_attempts=settings.max_attempts,
                backoff_seconds=settings.retry_backoff_seconds,
                shutdown=shutdown,
                sleep=no_sleep,
                metrics=metrics,
            )
            trigger = StopWhenIdle()
            scheduler = PriorityScheduler(claim, retry, settings.worker_id, trigger)
            trigger.scheduler = scheduler
            shutdown.attach(scheduler=scheduler)
            return scheduler

        return _build

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", ["atomic", "read_update"])
    async def test_ticks_follow_queue_priority(self, worker, seed, at, strategy):
        """Test that newer high-priority work is taken before older low-priority work."""
        await seed(JobType.DISCOVER, {"platform": "rumble"}, created_at=at(0))
        await seed(JobType.AI_SHORT, {"script": "Hello there."}, created_at=at(1))
        await seed(TaskKind.EDIT, {"source_url": "https://cdn.test/a.mp4"}, created_at=at(2))
        await seed(TaskKind.RENDER, {"clip_url": "https://clips/a"}, created_at=at(3))
        scheduler = worker(strategy)

        order = [await scheduler.tick() for _ in range(5)]

        assert order == [QueueName.RENDER, QueueName.EDIT, QueueName.AI_SHORT, QueueName.DISCOVER, None]

    @pytest.mark.asyncio
    async def test_render_task_lifecycle(self, worker, seed, fetch, session_factory, collaborators):
        """Test complete render lifecycle: queued -> processing -> done, parent done."""
        task = await seed(TaskKind.RENDER, {"clip_url": "https://clips/a"})

        assert await worker().tick() == QueueName.RENDER

        stored = await fetch(get_queue(QueueName.RENDER), task.id)
        assert stored.status == TaskStatus.DONE
        assert stored.attempts == 1
        assert stored.owner is None
        async with session_factory() as session:
            parent = await JobRepository(session).get_job(task.job_id)
        expected_url = f"https://cdn.test/renders/user-1/{task.job_id}.mp4"
        assert parent.status == JobStatus.DONE
        assert parent.result["url"] == expected_url
        assert collaborators.storage.uploads == [f"user-1/{task.job_id}.mp4"]

    @pytest.mark.asyncio
    async def test_discover_job_stores_candidates(self, worker, seed, fetch, session_factory):
        job = await seed(JobType.DISCOVER, {"platform": "rumble"})

        assert await worker().tick() == QueueName.DISCOVER

        stored = await fetch(get_queue(QueueName.DISCOVER), job.id)
        assert stored.status == JobStatus.DONE
        assert stored.result == {"candidates": 3, "platform": "rumble"}
        async with session_factory() as session:
            candidates = await JobRepository(session).list_candidates(job.id)
        assert len(candidates) == 3
        assert {c.source_platform for c in candidates} == {"rumble"}

    @pytest.mark.asyncio
    async def test_invalid_payload_fails_without_retry(self, worker, seed, fetch, collaborators):
        job = await seed(JobType.AI_SHORT, {"voice": "Rachel"})

        assert await worker().tick() == QueueName.AI_SHORT

        stored = await fetch(get_queue(QueueName.AI_SHORT), job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.attempts == 1
        assert stored.error.startswith("Invalid job payload")
        assert collaborators.voice.requests == []

    @pytest.mark.asyncio
    async def test_edit_without_source_fails(self, worker, seed, fetch):
        """Test that an edit task with no source and no rendered parent is failed, not retried."""
        task = await seed(TaskKind.EDIT, {"settings": {"fitMode": "cover"}})

        await worker().tick()

        stored = await fetch(get_queue(QueueName.EDIT), task.id)
        assert stored.status == TaskStatus.FAILED
        assert stored.attempts == 1
        assert stored.error == "No source video URL for edit task"

    @pytest.mark.asyncio
    async def test_edit_uses_parent_render(self, worker, seed, fetch, collaborators):
        task = await seed(
            TaskKind.EDIT,
            {"settings": {"watermarkText": "@me"}},
            parent_result={"url": "https://cdn.test/renders/user-1/base.mp4"},
        )

        await worker().tick()

        stored = await fetch(get_queue(QueueName.EDIT), task.id)
        assert stored.status == TaskStatus.DONE
        assert stored.result["url"] == f"https://cdn.test/renders/user-1/edits/{task.id}.mp4"
        assert collaborators.media.last_edit_settings.watermark_text == "@me"

    @pytest.mark.asyncio
    async def test_run_drains_queues_then_stops(self, worker, seed, fetch, at):
        jobs = [await seed(JobType.DISCOVER, {"platform": "youtube"}, created_at=at(n)) for n in range(3)]
        scheduler = worker()

        await scheduler.run()

        assert scheduler.stopping is True
        assert scheduler._trigger.ticks == [True, True, True, False]
        for job in jobs:
            assert (await fetch(get_queue(QueueName.DISCOVER), job.id)).status == JobStatus.DONE

    @pytest.mark.asyncio
    async def test_rerun_discover_keeps_one_candidate_set(self, seed, fetch, session_factory, collaborators, metrics):
        """Test that a discover job re-run after a lost completion write stores its candidates once."""
        job = await seed(JobType.DISCOVER, {"platform": "youtube"})
        queue = get_queue(QueueName.DISCOVER)
        claim = AtomicClaim(session_factory, max_attempts=3, metrics=metrics)
        shutdown = ShutdownCoordinator(session_factory, "w1", 0, exit_func=lambda code: None)

        async def run_then_release(context):
            result = await execute_handler(context)
            await shutdown.release()
            return result

        first = RetryStateMachine(
            claim, session_factory, collaborators, "w1", max_attempts=3, backoff_seconds=0,
            shutdown=shutdown, executor=run_then_release, sleep=no_sleep, metrics=metrics,
        )
        await first.process(queue, await claim.claim(queue, "w1"))
        assert (await fetch(queue, job.id)).status == JobStatus.READY

        second = RetryStateMachine(
            claim, session_factory, collaborators, "w2", max_attempts=3, backoff_seconds=0,
            sleep=no_sleep, metrics=metrics,
        )
        await second.process(queue, await claim.claim(queue, "w2"))

        stored = await fetch(queue, job.id)
        assert stored.status == JobStatus.DONE
        assert stored.result == {"candidates": 3, "platform": "youtube"}
        async with session_factory() as session:
            candidates = await JobRepository(session).list_candidates(job.id)
        assert len(candidates) == 3
