"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobType(StrEnum):
    """Kinds of top-level jobs produced by the application."""

    RENDER = "render"
    EDIT = "edit"
    DISCOVER = "discover"
    AI_SHORT = "ai_short"


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - READY -> PROCESSING (claimed, attempts += 1)
    - PROCESSING -> DONE (success)
    - PROCESSING -> FAILED (validation error or retries exhausted)
    - PROCESSING -> READY (retry or shutdown release)
    """

    READY = "ready"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class TaskKind(StrEnum):
    """Kinds of fine-grained tasks attached to a job."""

    RENDER = "render"
    EDIT = "edit"


class TaskStatus(StrEnum):
    """Task lifecycle states. Same machine as JobStatus with QUEUED as entry."""

    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class QueueName(StrEnum):
    """Queues probed by the scheduler."""

    RENDER = "render"
    EDIT = "edit"
    AI_SHORT = "ai_short"
    DISCOVER = "discover"


# Descending priority: a queue is only probed when all earlier ones were empty
QUEUE_PRIORITY: tuple[QueueName, ...] = (
    QueueName.RENDER,
    QueueName.EDIT,
    QueueName.AI_SHORT,
    QueueName.DISCOVER,
)

TERMINAL_STATUSES = frozenset({"done", "failed"})

# Default values
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 5.0
DEFAULT_IDLE_INTERVAL_SECONDS = 30.0
DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 60.0
DEFAULT_SHUTDOWN_GRACE_SECONDS = 1.0

HEARTBEAT_STATUS_RUNNING = "running"
HEARTBEAT_STATUS_STOPPED = "stopped"
CANDIDATE_STATUS = "candidate"

# Metrics names
METRIC_CLAIMS = "worker_claims_total"
METRIC_CLAIM_ERRORS = "worker_claim_errors_total"
METRIC_RECORDS_FINISHED = "worker_records_finished_total"
METRIC_RECORD_DURATION = "worker_record_duration_seconds"
METRIC_RETRIES = "worker_retries_total"
METRIC_HEARTBEAT_FAILURES = "worker_heartbeat_failures_total"

# Trace span names
SPAN_CLAIM_RECORD = "claim_record"
SPAN_PROCESS_RECORD = "process_record"
SPAN_RELEASE_CLAIM = "release_claim"
