"""Processing job queues.

RedisJobQueue shares the list-based queue the upload service pushes to;
InMemoryJobQueue serves single-process deployments and tests.
"""

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from vidpipe.core.config import settings
from vidpipe.core.metrics import MALFORMED_MESSAGES_TOTAL
from vidpipe.modules.processing.models import ProcessingJob
from vidpipe.modules.processing.schemas import ProcessingJobMessage

logger = logging.getLogger(__name__)


def encode_job(job: ProcessingJob) -> str:
    return ProcessingJobMessage.from_job(job).model_dump_json(by_alias=True)


def decode_job(raw: "str | bytes", queue_name: str) -> Optional[ProcessingJob]:
    """Parse a queued payload, dropping it when malformed."""
    try:
        return ProcessingJobMessage.model_validate_json(raw).to_job()
    except ValidationError as e:
        MALFORMED_MESSAGES_TOTAL.labels(queue_name=queue_name).inc()
        preview = raw[:200] if isinstance(raw, str) else raw[:200].decode("utf-8", errors="replace")
        logger.error(
            f"Dropping malformed message from {queue_name}: {e.error_count()} error(s)",
            extra={"payload_preview": preview},
        )
        return None


class RedisJobQueue:
    """FIFO job queue on a Redis list (RPUSH to enqueue, BLPOP to consume)."""

    def __init__(self, redis_client, queue_name: Optional[str] = None):
        self.redis = redis_client
        self.queue_name = queue_name or settings.PROCESSING_QUEUE_NAME

    async def enqueue(self, job: ProcessingJob) -> None:
        await self.redis.rpush(self.queue_name, encode_job(job))
        logger.info(f"Enqueued video {job.video_id} on {self.queue_name}")

    async def dequeue(self, timeout: float) -> Optional[ProcessingJob]:
        """Block until a job arrives or timeout elapses.

        Returns:
            The next job, or None on timeout or a dropped malformed message
        """
        # BLPOP takes whole seconds; 0 would block forever
        item = await self.redis.blpop([self.queue_name], timeout=max(1, int(timeout)))
        if item is None:
            return None
        _, raw = item
        return decode_job(raw, self.queue_name)

    async def size(self) -> int:
        return await self.redis.llen(self.queue_name)


class InMemoryJobQueue:
    """Process-local job queue backed by asyncio.Queue."""

    def __init__(self, queue_name: str = "memory"):
        self.queue_name = queue_name
        self._queue: asyncio.Queue[str] = asyncio.Queue()

    async def enqueue(self, job: ProcessingJob) -> None:
        await self._queue.put(encode_job(job))

    async def enqueue_raw(self, payload: str) -> None:
        await self._queue.put(payload)

    async def dequeue(self, timeout: float) -> Optional[ProcessingJob]:
        try:
            raw = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return decode_job(raw, self.queue_name)

    async def size(self) -> int:
        return self._queue.qsize()
