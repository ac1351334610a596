"""
Handler registry.

Handlers must be idempotent: a record may be processed more than once
when a worker is restarted mid-flight or a status write is lost.
"""

import logging
import shutil
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel, ValidationError

from clipworker.constants import QueueName
from clipworker.exceptions import JobValidationError
from clipworker.types.job import HandlerContext, HandlerResult

logger = logging.getLogger(__name__)

# Type alias for handler functions
Handler = Callable[[HandlerContext], Awaitable[HandlerResult]]

PayloadT = TypeVar("PayloadT", bound=BaseModel)

# Handler registry
_handlers: dict[str, Handler] = {}


def register_handler(queue_name: QueueName | str) -> Callable[[Handler], Handler]:
    """
    Decorator to register a queue handler.

    Args:
        queue_name: The queue this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler(QueueName.RENDER)
        async def handle_render(context: HandlerContext) -> HandlerResult:
            ...
    """
    def decorator(handler: Handler) -> Handler:
        _handlers[str(queue_name)] = handler
        logger.debug("Registered handler", extra={"queue": str(queue_name)})
        return handler
    return decorator


def get_handler(queue_name: QueueName | str) -> Handler | None:
    """
    Get the handler for a queue.

    Args:
        queue_name: The queue name.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(str(queue_name))


def list_handlers() -> list[str]:
    """List all queues with a registered handler."""
    return list(_handlers.keys())


def parse_payload(model: type[PayloadT], data: dict[str, Any] | None) -> PayloadT:
    """Validate a raw payload, turning schema errors into a non-retryable failure."""
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "payload" for err in e.errors())
        raise JobValidationError(f"Invalid job payload: {fields}") from e


@contextmanager
def workspace(context: HandlerContext, root: Path) -> Iterator[Path]:
    """Per-attempt scratch directory, removed when the handler returns."""
    path = root / f"{context.queue.name}_{context.record_id}_{context.attempt}"
    path.mkdir(parents=True, exist_ok=True)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


async def execute_handler(context: HandlerContext) -> HandlerResult:
    """
    Execute the handler registered for the context's queue.

    Exceptions raised by the handler propagate; the retry state machine
    decides how each one is recorded.

    Raises:
        JobValidationError: If no handler is registered for the queue.
    """
    queue_name = str(context.queue.name)
    handler = get_handler(queue_name)

    if handler is None:
        raise JobValidationError(f"No handler registered for queue: {queue_name}")

    start_time = time.perf_counter()
    result = await handler(context)
    if result.duration_ms is None:
        result.duration_ms = (time.perf_counter() - start_time) * 1000
    return result
