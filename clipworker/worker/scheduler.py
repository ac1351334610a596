"""
Priority scheduler.

Each tick probes the queues in fixed descending priority (render tasks,
edit tasks, ai_short jobs, discover jobs) and processes the first record
it manages to claim to completion before returning. A worker therefore
never has more than one record in flight.

A lower-priority queue is only probed when every higher-priority queue came
up empty on the same tick. With a steady supply of render tasks the
discover queue can wait indefinitely; that is accepted.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from clipworker.constants import QueueName
from clipworker.types.queue import Queue, queues_by_priority
from clipworker.worker.claim import ClaimProtocol
from clipworker.worker.retry import RetryStateMachine

logger = logging.getLogger(__name__)


class Trigger(ABC):
    """Decides when the next tick happens."""

    @abstractmethod
    async def wait(self, processed: bool) -> None:
        """Block until the next tick is due."""

    @abstractmethod
    def cancel(self) -> None:
        """Wake any pending wait; later waits return immediately."""


class IntervalTrigger(Trigger):
    """
    Fixed-interval polling.

    Args:
        poll_interval: Pause after a tick that processed a record.
        idle_interval: Pause after a tick that found nothing.
    """

    def __init__(self, poll_interval: float, idle_interval: float):
        self.poll_interval = poll_interval
        self.idle_interval = idle_interval
        self._cancelled = asyncio.Event()

    async def wait(self, processed: bool) -> None:
        delay = self.poll_interval if processed else self.idle_interval
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def cancel(self) -> None:
        self._cancelled.set()


class PriorityScheduler:
    """Poll loop over the queues in priority order."""

    def __init__(
        self,
        claim: ClaimProtocol,
        retry: RetryStateMachine,
        worker_id: str,
        trigger: Trigger,
        queues: list[Queue] | None = None,
    ):
        self._claim = claim
        self._retry = retry
        self.worker_id = worker_id
        self._trigger = trigger
        self._queues = queues if queues is not None else queues_by_priority()
        self._stopping = False

    @property
    def stopping(self) -> bool:
        return self._stopping

    async def tick(self) -> QueueName | None:
        """
        Claim and process at most one record.

        Returns:
            The queue the processed record came from, or None if every queue
            was empty (or the scheduler is stopping).
        """
        for queue in self._queues:
            if self._stopping:
                return None

            record = await self._claim.claim(queue, self.worker_id)
            if record is None:
                continue

            # stop() may have landed while the claim was in flight
            if self._stopping:
                await self._claim.release(queue, record.id, self.worker_id)
                return None

            outcome = await self._retry.process(queue, record)
            logger.debug(
                "Tick processed record",
                extra={"queue": str(queue.name), "record_id": str(record.id), "outcome": str(outcome)},
            )
            return queue.name

        return None

    async def run(self) -> None:
        """Tick until stopped. Errors are logged and the loop keeps going."""
        logger.info(
            "Scheduler starting",
            extra={"worker_id": self.worker_id, "queues": [str(q.name) for q in self._queues]},
        )

        while not self._stopping:
            processed = None
            try:
                processed = await self.tick()
            except Exception as e:
                logger.exception(f"Error in scheduler tick: {e}", extra={"worker_id": self.worker_id})

            if self._stopping:
                break
            await self._trigger.wait(processed is not None)

        logger.info("Scheduler stopped", extra={"worker_id": self.worker_id})

    def stop(self) -> None:
        """Stop after the in-flight record, if any; wakes a pending wait."""
        self._stopping = True
        self._trigger.cancel()
