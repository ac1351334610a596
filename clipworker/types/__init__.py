"""
Type definitions for the worker.
Contains queue descriptors, handler context/result and payload schemas.
"""

from clipworker.types.job import (
    HandlerContext,
    HandlerResult,
    SessionFactory,
)
from clipworker.types.payloads import (
    AiShortConfig,
    CaptionBox,
    DiscoverConfig,
    EditInput,
    EditSettings,
    RenderInput,
    Scene,
)
from clipworker.types.queue import (
    QUEUES,
    Queue,
    get_queue,
    queues_by_priority,
)

__all__ = [
    # Queue types
    "Queue",
    "QUEUES",
    "get_queue",
    "queues_by_priority",
    # Handler types
    "HandlerContext",
    "HandlerResult",
    "SessionFactory",
    # Payload types
    "RenderInput",
    "EditInput",
    "EditSettings",
    "CaptionBox",
    "AiShortConfig",
    "Scene",
    "DiscoverConfig",
]
