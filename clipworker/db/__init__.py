"""
Database module.
Contains database connection, models, and repository implementations.
"""

from clipworker.db.connection import (
    close_db,
    create_engine_for_url,
    create_session_factory,
    get_engine,
    get_session_context,
    init_db,
)
from clipworker.db.models import (
    Base,
    DiscoveredCandidate,
    Job,
    Task,
    WorkerHeartbeat,
)

__all__ = [
    "get_session_context",
    "get_engine",
    "create_engine_for_url",
    "create_session_factory",
    "init_db",
    "close_db",
    "Base",
    "Job",
    "Task",
    "WorkerHeartbeat",
    "DiscoveredCandidate",
]
