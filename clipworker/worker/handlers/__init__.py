"""
Queue handlers.

Importing this package registers the handler for every queue.
"""

from clipworker.worker.handlers import ai_short, discover, edit, render
from clipworker.worker.handlers.registry import (
    Handler,
    execute_handler,
    get_handler,
    list_handlers,
    parse_payload,
    register_handler,
)

__all__ = [
    "Handler",
    "ai_short",
    "discover",
    "edit",
    "render",
    "execute_handler",
    "get_handler",
    "list_handlers",
    "parse_payload",
    "register_handler",
]
