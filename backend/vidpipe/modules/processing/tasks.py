"""Celery tasks for video processing.

For deployments that dispatch jobs through Celery instead of the worker
pool. The task runs one job inline through the same orchestrator.
"""

import asyncio
import logging
from typing import Optional

from celery import Task

from vidpipe.core.celery_app import celery_app
from vidpipe.core.logging import job_log_context, log_error
from vidpipe.modules.processing.models import FailureReason, JobOutcome, ProcessingJob

logger = logging.getLogger(__name__)


def outcome_to_dict(video_id: str, outcome: JobOutcome) -> dict:
    """JSON-serializable task result."""
    result = {
        "video_id": video_id,
        "success": outcome.published,
        "status": outcome.stage.value,
    }
    if outcome.published:
        result.update({
            "thumbnail": outcome.thumbnail_locator,
            "hls_playlist": outcome.master_playlist_locator,
            "renditions": [r.spec.name for r in outcome.renditions],
        })
    else:
        result["error"] = outcome.reason
    return result


class ProcessVideoTask(Task):
    """Base task for processing jobs.

    Jobs are never retried by Celery; re-processing means enqueuing a
    fresh job.
    """
    abstract = True
    max_retries = 0


@celery_app.task(bind=True, base=ProcessVideoTask, name="vidpipe.process_video")
def process_video_task(
    self: ProcessVideoTask,
    video_id: str,
    source_locator: str,
    user_id: Optional[str] = None,
) -> dict:
    """Process one uploaded video.

    Args:
        video_id: Catalog id of the video
        source_locator: Where the uploaded source lives
        user_id: Owner of the video, looked up in the catalog when omitted

    Returns:
        dict: Processing result
    """
    job = ProcessingJob(video_id=video_id, source_locator=source_locator, user_id=user_id)
    return asyncio.run(_process_video_async(job))


async def _process_video_async(job: ProcessingJob) -> dict:
    from vidpipe.core.database import engine
    from vidpipe.core.redis import redis_client
    from vidpipe.modules.processing.worker import build_orchestrator

    orchestrator = build_orchestrator()
    try:
        try:
            outcome = await orchestrator.process(job)
        except Exception as e:
            with job_log_context(job.video_id, job.job_id):
                log_error(logger, "Unhandled error while processing job", e)
            outcome = await orchestrator.finalize(
                job, JobOutcome.failure(FailureReason.INTERNAL_ERROR)
            )
        return outcome_to_dict(job.video_id, outcome)
    finally:
        orchestrator.forget(job)
        # Connections are bound to this task's event loop
        await engine.dispose()
        await redis_client.connection_pool.disconnect()


async def enqueue_processing_job(
    video_id: str,
    source_locator: str,
    user_id: Optional[str] = None,
) -> ProcessingJob:
    """Push a processing job onto the shared Redis queue."""
    from vidpipe.core.redis import redis_client
    from vidpipe.modules.queue.service import RedisJobQueue

    job = ProcessingJob(video_id=video_id, source_locator=source_locator, user_id=user_id)
    await RedisJobQueue(redis_client).enqueue(job)
    return job
