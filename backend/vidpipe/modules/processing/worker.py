"""Queue worker loop for processing jobs.

A fixed pool of consumer coroutines blocks on the job queue and hands each
job to the orchestrator. Each consumer runs at most one job at a time.

Usage:
    vidpipe-worker --concurrency 2 --queue redis
"""

import argparse
import asyncio
import logging
import signal
from typing import Optional

from prometheus_client import start_http_server
from redis.exceptions import RedisError

from vidpipe import __version__
from vidpipe.core.config import settings
from vidpipe.core.logging import job_log_context, log_error, setup_logging
from vidpipe.core.metrics import REGISTRY, set_app_info
from vidpipe.core.tracing import setup_tracing, shutdown_tracing
from vidpipe.modules.processing.interfaces import JobQueue
from vidpipe.modules.processing.models import FailureReason, JobOutcome, ProcessingJob
from vidpipe.modules.processing.orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)

DEQUEUE_ERROR_BACKOFF_SECONDS = 2.0


class ProcessingWorkerPool:
    """Consumes processing jobs with a bounded number of concurrent jobs."""

    def __init__(
        self,
        queue: JobQueue,
        orchestrator: JobOrchestrator,
        concurrency: Optional[int] = None,
        poll_timeout: Optional[float] = None,
        shutdown_grace: Optional[float] = None,
    ):
        self.queue = queue
        self.orchestrator = orchestrator
        self.concurrency = max(1, concurrency or settings.WORKER_CONCURRENCY)
        self.poll_timeout = poll_timeout or settings.QUEUE_POLL_TIMEOUT_SECONDS
        self.shutdown_grace = (
            shutdown_grace if shutdown_grace is not None else settings.SHUTDOWN_GRACE_SECONDS
        )
        self._stopping = asyncio.Event()
        self._consumers: list[asyncio.Task] = []
        self._active: dict[str, asyncio.Event] = {}

    @property
    def active_jobs(self) -> list[str]:
        """Video ids of the jobs currently running."""
        return list(self._active)

    async def run(self) -> None:
        """Run consumers until stop() is called."""
        logger.info(f"Starting {self.concurrency} processing consumer(s)")
        self._consumers = [
            asyncio.create_task(self._consume(index), name=f"processing-consumer-{index}")
            for index in range(self.concurrency)
        ]
        await asyncio.gather(*self._consumers, return_exceptions=True)
        logger.info("Processing consumers stopped")

    async def stop(self) -> None:
        """Stop dequeueing and wait for in-flight jobs.

        Jobs still running after the grace period are cancelled and finalize
        as failed.
        """
        if self._stopping.is_set():
            return
        logger.info(f"Stopping worker pool; {len(self._active)} job(s) in flight")
        self._stopping.set()
        if not self._consumers:
            return

        _, pending = await asyncio.wait(self._consumers, timeout=self.shutdown_grace)
        if not pending:
            return

        for video_id in self.active_jobs:
            self.cancel(video_id)
        _, pending = await asyncio.wait(pending, timeout=self.shutdown_grace)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def cancel(self, video_id: str) -> bool:
        """Signal an in-flight job to stop at its next checkpoint.

        Returns:
            True if a job for the video was running
        """
        event = self._active.get(video_id)
        if event is None:
            return False
        logger.info(f"Cancelling job for video {video_id}")
        event.set()
        return True

    async def _consume(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                job = await self.queue.dequeue(self.poll_timeout)
            except (RedisError, OSError) as e:
                log_error(logger, f"Consumer {index} failed to dequeue", e)
                await asyncio.sleep(DEQUEUE_ERROR_BACKOFF_SECONDS)
                continue
            if job is None:
                continue
            await self.handle(job)

    async def handle(self, job: ProcessingJob) -> JobOutcome:
        """Run one job, recording defects as an internal error."""
        cancel = asyncio.Event()
        self._active[job.video_id] = cancel
        try:
            return await self.orchestrator.process(job, cancel)
        except asyncio.CancelledError:
            with job_log_context(job.video_id, job.job_id):
                logger.warning("Job interrupted by worker shutdown")
            await asyncio.shield(
                self.orchestrator.finalize(job, JobOutcome.failure(FailureReason.CANCELLED))
            )
            raise
        except Exception as e:
            with job_log_context(job.video_id, job.job_id):
                log_error(logger, "Unhandled error while processing job", e)
            return await self.orchestrator.finalize(
                job, JobOutcome.failure(FailureReason.INTERNAL_ERROR)
            )
        finally:
            self._active.pop(job.video_id, None)
            self.orchestrator.forget(job)


def build_orchestrator() -> JobOrchestrator:
    """Wire an orchestrator to the collaborators configured in settings."""
    from vidpipe.core.redis import redis_client
    from vidpipe.core.storage import get_storage
    from vidpipe.modules.catalog.service import SQLAlchemyCatalogStore
    from vidpipe.modules.notification.service import DatabaseNotifier
    from vidpipe.modules.processing.ffmpeg import (
        FFmpegEncoder,
        FFmpegThumbnailer,
        FFprobeProber,
    )
    from vidpipe.modules.processing.progress import RedisProgressReporter
    from vidpipe.modules.processing.publisher import ArtifactPublisher
    from vidpipe.modules.processing.source import SourceFetcher

    storage = get_storage()
    return JobOrchestrator(
        catalog=SQLAlchemyCatalogStore(),
        notifier=DatabaseNotifier(),
        publisher=ArtifactPublisher(storage),
        encoder=FFmpegEncoder(),
        thumbnailer=FFmpegThumbnailer(),
        prober=FFprobeProber(),
        fetcher=SourceFetcher(storage),
        progress_reporter=RedisProgressReporter(redis_client),
    )


def build_queue(kind: str) -> JobQueue:
    from vidpipe.modules.queue.service import InMemoryJobQueue, RedisJobQueue

    if kind == "memory":
        return InMemoryJobQueue()
    from vidpipe.core.redis import redis_client

    return RedisJobQueue(redis_client)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="vidpipe-worker",
        description="Consume video processing jobs and publish HLS renditions.",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.WORKER_CONCURRENCY,
        help="Number of jobs processed at once (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--queue",
        default="redis",
        choices=["memory", "redis"],
        help="Job queue backend (default: %(default)s)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=settings.METRICS_PORT,
        help="Expose Prometheus metrics on this port; 0 disables",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the catalog and notification tables before starting",
    )
    return parser.parse_args(argv)


async def serve(args: argparse.Namespace) -> None:
    if args.init_db:
        from vidpipe.core.database import init_db

        await init_db()

    pool = ProcessingWorkerPool(
        build_queue(args.queue),
        build_orchestrator(),
        concurrency=args.concurrency,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: _request_stop(pool, s))

    await pool.run()


def _request_stop(pool: ProcessingWorkerPool, sig: signal.Signals) -> None:
    logger.info(f"{sig.name} received, finishing in-flight jobs before exit")
    asyncio.get_running_loop().create_task(pool.stop())


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(level=args.log_level, json_format=settings.LOG_JSON)
    setup_tracing(
        service_name="vidpipe-worker",
        service_version=__version__,
        environment=settings.ENVIRONMENT,
        otlp_endpoint=settings.OTLP_ENDPOINT,
        enable_console_export=settings.TRACING_CONSOLE_EXPORT,
    )
    set_app_info(__version__, settings.ENVIRONMENT)
    if args.metrics_port:
        start_http_server(args.metrics_port, registry=REGISTRY)
        logger.info(f"Metrics exposed on port {args.metrics_port}")

    try:
        asyncio.run(serve(args))
    finally:
        shutdown_tracing()


if __name__ == "__main__":
    main()
