"""
Worker error taxonomy.

Errors raised while processing a claimed record are converted into state
transitions at the handler boundary; only ConfigurationError is fatal.
"""


class WorkerError(Exception):
    """Base class for all worker errors."""


class ConfigurationError(WorkerError):
    """Raised when required startup configuration is missing or invalid."""


class TransientInfraError(WorkerError):
    """Store or network failure while polling or claiming. Treated as no work."""


class ClaimLostError(WorkerError):
    """Another worker won the compare-and-swap for the same record."""


class JobValidationError(WorkerError):
    """
    Malformed or incomplete job payload.

    Never retried: the record moves to failed on the attempt that raised it.
    """


class ProcessingError(WorkerError):
    """
    Failure inside a delegated external step.

    Retryable until the attempt budget is exhausted.

    Attributes:
        step: Name of the external step that failed, when known.
    """

    def __init__(self, message: str, step: str | None = None):
        self.step = step
        super().__init__(message)


class PersistenceError(WorkerError):
    """A terminal or requeue status write did not apply."""
