"""
Queue definitions.

A queue is a (table, type filter, status vocabulary) triple. The scheduler
probes queues in QUEUE_PRIORITY order and the claim protocol is generic over
them.
"""

from dataclasses import dataclass
from typing import Any

from clipworker.constants import (
    QUEUE_PRIORITY,
    JobStatus,
    JobType,
    QueueName,
    TaskKind,
    TaskStatus,
)
from clipworker.db.models import Job, Task


@dataclass(frozen=True)
class Queue:
    """A claimable slice of the job store."""

    name: QueueName
    model: type[Job] | type[Task]
    type_value: str
    ready_status: str
    processing_status: str
    done_status: str
    failed_status: str
    propagates_to_parent: bool = False

    @property
    def is_task(self) -> bool:
        return self.model is Task

    def type_column(self, model: Any) -> Any:
        """Column holding the type filter on ``model`` (or an alias of it)."""
        return model.kind if self.is_task else model.type


def _task_queue(kind: TaskKind, propagates_to_parent: bool = False) -> Queue:
    return Queue(
        name=QueueName(kind.value),
        model=Task,
        type_value=kind,
        ready_status=TaskStatus.QUEUED,
        processing_status=TaskStatus.PROCESSING,
        done_status=TaskStatus.DONE,
        failed_status=TaskStatus.FAILED,
        propagates_to_parent=propagates_to_parent,
    )


def _job_queue(job_type: JobType) -> Queue:
    return Queue(
        name=QueueName(job_type.value),
        model=Job,
        type_value=job_type,
        ready_status=JobStatus.READY,
        processing_status=JobStatus.PROCESSING,
        done_status=JobStatus.DONE,
        failed_status=JobStatus.FAILED,
    )


QUEUES: dict[QueueName, Queue] = {
    QueueName.RENDER: _task_queue(TaskKind.RENDER, propagates_to_parent=True),
    QueueName.EDIT: _task_queue(TaskKind.EDIT),
    QueueName.AI_SHORT: _job_queue(JobType.AI_SHORT),
    QueueName.DISCOVER: _job_queue(JobType.DISCOVER),
}


def get_queue(name: QueueName | str) -> Queue:
    return QUEUES[QueueName(name)]


def queues_by_priority() -> list[Queue]:
    """Queues in descending priority order."""
    return [QUEUES[name] for name in QUEUE_PRIORITY]
