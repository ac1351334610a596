"""
Job-related type definitions for internal use.
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from clipworker.types.queue import Queue

if TYPE_CHECKING:
    from clipworker.clients import Collaborators

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class HandlerResult(BaseModel):
    """
    Result of a successful handler run.
    Stored verbatim as the record's result reference.
    """

    output: dict[str, Any] | None = None
    duration_ms: float | None = None


@dataclass
class HandlerContext:
    """
    Context passed to handlers during execution.
    Contains the claimed record's data and the collaborators to delegate to.
    """

    queue: Queue
    record_id: UUID
    worker_id: str
    attempt: int
    max_attempts: int
    payload: dict[str, Any]
    collaborators: "Collaborators"
    session_factory: SessionFactory
    user_id: str | None = None
    parent_job_id: UUID | None = None

    @property
    def artifact_owner(self) -> str:
        """Storage namespace for uploaded artifacts."""
        return self.user_id or "anonymous"
