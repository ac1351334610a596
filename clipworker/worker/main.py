"""
Worker process entry point.

Runs one priority scheduler (one record in flight), a heartbeat task and
the signal handlers in a single event loop.
"""

import asyncio
import logging
import sys

from clipworker.clients import build_collaborators
from clipworker.config import Settings, load_settings
from clipworker.db import close_db, get_engine, get_session_context, init_db
from clipworker.exceptions import ConfigurationError
from clipworker.observability.logging import setup_logging
from clipworker.observability.metrics import setup_metrics
from clipworker.observability.tracing import instrument_sqlalchemy, setup_tracing
from clipworker.worker.claim import build_claim_protocol
from clipworker.worker.heartbeat import HeartbeatReporter
from clipworker.worker.retry import RetryStateMachine
from clipworker.worker.scheduler import IntervalTrigger, PriorityScheduler
from clipworker.worker.shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)


async def run_async(settings: Settings) -> None:
    """Run the worker until stopped by a signal."""
    await init_db()
    if settings.otel_enabled:
        instrument_sqlalchemy(get_engine())

    metrics = setup_metrics(settings.prometheus_port if settings.metrics_enabled else None)
    collaborators = build_collaborators(settings)

    claim = build_claim_protocol(settings, get_session_context, metrics)
    shutdown = ShutdownCoordinator(
        get_session_context,
        worker_id=settings.worker_id,
        grace_seconds=settings.shutdown_grace_seconds,
    )
    retry = RetryStateMachine(
        claim,
        get_session_context,
        collaborators,
        worker_id=settings.worker_id,
        max_attempts=settings.max_attempts,
        backoff_seconds=settings.retry_backoff_seconds,
        shutdown=shutdown,
        metrics=metrics,
    )
    scheduler = PriorityScheduler(
        claim,
        retry,
        worker_id=settings.worker_id,
        trigger=IntervalTrigger(
            poll_interval=settings.worker_poll_interval_seconds,
            idle_interval=settings.worker_idle_interval_seconds,
        ),
    )
    heartbeat = HeartbeatReporter(
        get_session_context,
        worker_id=settings.worker_id,
        worker_type=settings.worker_type,
        interval_seconds=settings.heartbeat_interval_seconds,
        metrics=metrics,
    )

    shutdown.attach(scheduler=scheduler, heartbeat=heartbeat)
    shutdown.install(asyncio.get_running_loop())

    logger.info(
        "Worker starting",
        extra={
            "worker_id": settings.worker_id,
            "worker_type": settings.worker_type,
            "claim_strategy": settings.claim_strategy,
            "max_attempts": settings.max_attempts,
        },
    )

    try:
        await heartbeat.start()
        await scheduler.run()
    finally:
        await heartbeat.stop()
        await collaborators.aclose()
        await close_db()
        logger.info("Worker stopped", extra={"worker_id": settings.worker_id})


def run() -> None:
    """Run the worker."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(str(e))
        sys.exit(1)

    setup_logging(settings)
    setup_tracing(settings)

    asyncio.run(run_async(settings))


if __name__ == "__main__":
    run()
