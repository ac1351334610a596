"""
Pytest configuration and shared fixtures.

Store tests run against a temporary SQLite file (aiosqlite) so several
connections can race on the same rows without a PostgreSQL server.
External collaborators are replaced by in-memory fakes.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from uuid import UUID

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from clipworker.clients import Collaborators
from clipworker.clients.stock_media import SceneImage
from clipworker.config import Settings
from clipworker.constants import JobType, TaskKind
from clipworker.db import Base, close_db, create_engine_for_url, create_session_factory, get_session_context, init_db
from clipworker.db.repository import JobRepository, Record
from clipworker.exceptions import ProcessingError
from clipworker.observability.metrics import MetricsCollector
from clipworker.types.job import SessionFactory
from clipworker.types.queue import Queue

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def at() -> Callable[[float], datetime]:
    """Creation timestamps relative to a fixed T0, for deterministic ordering."""

    def _at(seconds: float) -> datetime:
        return T0 + timedelta(seconds=seconds)

    return _at


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Get the test database URL."""
    return f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async engine with the schema in place."""
    engine = create_engine_for_url(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine: AsyncEngine) -> AsyncGenerator[SessionFactory]:
    """The worker's committing session context, bound to the test engine."""
    await init_db(async_engine)

    yield get_session_context

    await close_db()


@pytest_asyncio.fixture
async def db_session(async_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with create_session_factory(async_engine)() as session:
        yield session
        await session.rollback()


@pytest.fixture
def seed(session_factory: SessionFactory) -> Callable[..., Awaitable[Record]]:
    """Insert a ready job, or a queued task under a fresh parent job."""

    async def _seed(
        queue_or_type: JobType | TaskKind,
        payload: dict[str, Any] | None = None,
        created_at: datetime | None = None,
        user_id: str | None = "user-1",
        parent_result: dict[str, Any] | None = None,
    ) -> Record:
        async with session_factory() as session:
            repo = JobRepository(session)
            if isinstance(queue_or_type, TaskKind):
                parent = await repo.create_job(JobType.RENDER, {}, user_id=user_id, created_at=created_at)
                parent.result = parent_result
                await session.flush()
                return await repo.create_task(parent.id, queue_or_type, payload, created_at=created_at)
            return await repo.create_job(queue_or_type, payload, user_id=user_id, created_at=created_at)

    return _seed


@pytest.fixture
def fetch(session_factory: SessionFactory) -> Callable[[Queue, UUID], Awaitable[Record | None]]:
    """Read a record's current state through a fresh session."""

    async def _fetch(queue: Queue, record_id: UUID) -> Record | None:
        async with session_factory() as session:
            return await JobRepository(session).get_record(queue, record_id)

    return _fetch


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        database_url=database_url,
        worker_id="test-worker",
        log_level="DEBUG",
        log_format="console",
        worker_poll_interval_seconds=0.01,
        worker_idle_interval_seconds=0.01,
        retry_backoff_seconds=0,
        shutdown_grace_seconds=0,
    )


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeMedia:
    """Records every call and writes a small file for each produced artifact."""

    def __init__(self):
        self.calls: list[str] = []
        self.fail_download = False
        self.fail_thumbnail = False
        self.duration: float | None = 12.0
        self.font_path = "/nonexistent/font.ttf"

    def _produce(self, step: str, output: Path) -> None:
        self.calls.append(step)
        output.write_bytes(step.encode())

    async def download(self, url: str, output: Path) -> None:
        if self.fail_download:
            self.calls.append("download_failed")
            raise ProcessingError("yt-dlp failed with exit code 1", step="download")
        self._produce("download", output)

    async def placeholder(self, output: Path, label: str = "ClipFlow") -> None:
        self._produce("placeholder", output)

    async def to_vertical(self, source: Path, output: Path) -> None:
        self._produce("to_vertical", output)

    async def apply_edit(self, source: Path, output: Path, settings: Any) -> None:
        self.last_edit_settings = settings
        self._produce("apply_edit", output)

    async def thumbnail(self, source: Path, output: Path) -> None:
        if self.fail_thumbnail:
            raise ProcessingError("thumbnail failed", step="thumbnail")
        self._produce("thumbnail", output)

    async def probe_duration(self, source: Path) -> float | None:
        return self.duration

    async def slice_audio(self, source: Path, output: Path, start: float, duration: float) -> None:
        self._produce("slice_audio", output)

    async def image_clip(self, image: Path, output: Path, duration: float, text_file: Path | None = None) -> None:
        self._produce("image_clip", output)

    async def concat(self, clips: list[Path], output: Path, list_file: Path) -> None:
        self._produce("concat", output)

    async def mux_audio(self, video: Path, audio: Path, output: Path) -> None:
        self._produce("mux_audio", output)

    async def solid_clip(self, audio: Path, output: Path, duration: float, text: str = "") -> None:
        self._produce("solid_clip", output)


class FakeStorage:
    def __init__(self):
        self.uploads: list[str] = []

    async def upload(self, local_path: Path, storage_path: str, content_type: str = "video/mp4") -> str:
        assert local_path.exists()
        self.uploads.append(storage_path)
        return f"https://cdn.test/renders/{storage_path}"


class FakeVoice:
    def __init__(self):
        self.requests: list[tuple[str, str]] = []

    async def synthesize(self, text: str, voice: str, output: Path) -> Path:
        self.requests.append((text, voice))
        output.write_bytes(b"mp3")
        return output


class FakeStockMedia:
    def __init__(self, available: bool = True):
        self.available = available

    async def images_for_scenes(self, scenes: list[Any], work_dir: Path) -> list[SceneImage]:
        if not self.available:
            return []
        images = []
        for index, scene in enumerate(scenes[:10]):
            path = work_dir / f"scene_{index}.jpg"
            path.write_bytes(b"jpg")
            images.append(SceneImage(path=path, scene_index=index, text=scene.text))
        return images


@pytest.fixture
def collaborators(tmp_path: Path) -> Collaborators:
    """Collaborators backed by in-memory fakes."""
    return Collaborators(
        media=FakeMedia(),
        storage=FakeStorage(),
        voice=FakeVoice(),
        stock_media=FakeStockMedia(),
        twitch=None,
        youtube=None,
        http=None,
        work_dir=tmp_path / "work",
    )
