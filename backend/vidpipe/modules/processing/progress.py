"""Job progress reporting.

Progress is written to a short-lived Redis key per video so the upload UI can
poll it; reporting failures never affect the job.
"""

import json
import logging
from typing import Optional

from redis.exceptions import RedisError

from vidpipe.core.config import settings

logger = logging.getLogger(__name__)

PROGRESS_KEY_PREFIX = "video_progress"


def progress_key(video_id: str) -> str:
    return f"{PROGRESS_KEY_PREFIX}:{video_id}"


class RedisProgressReporter:
    """Stores {status, stage, progress} JSON under video_progress:{video_id}."""

    def __init__(self, redis_client, ttl_seconds: Optional[int] = None):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or settings.PROGRESS_TTL_SECONDS

    async def report(self, video_id: str, stage: str, progress: int) -> None:
        payload = json.dumps({
            "status": "processing" if stage not in ("published", "failed") else stage,
            "stage": stage,
            "progress": max(0, min(100, int(progress))),
        })
        try:
            await self.redis.setex(progress_key(video_id), self.ttl_seconds, payload)
        except (RedisError, OSError) as e:
            logger.warning(f"Failed to store progress for video {video_id}: {e}")


class NullProgressReporter:
    """Discards progress updates."""

    async def report(self, video_id: str, stage: str, progress: int) -> None:
        return None


class JobProgress:
    """Folds per-stage and per-rendition progress into one percentage.

    Stages before encoding take the first 10%, encoding 10-90%, publishing
    90-100%. Each rendition contributes an equal share of the encoding band.
    """

    ENCODE_START = 10
    ENCODE_END = 90

    def __init__(self, reporter, video_id: str):
        self.reporter = reporter
        self.video_id = video_id
        self._fractions: dict[str, float] = {}
        self._last_reported = -1

    async def stage(self, stage: str, progress: int) -> None:
        await self._report(stage, progress)

    def start_encoding(self, rendition_names: list[str]) -> None:
        self._fractions = {name: 0.0 for name in rendition_names}

    async def rendition(self, name: str, fraction: float) -> None:
        if name not in self._fractions:
            return
        self._fractions[name] = max(self._fractions[name], min(1.0, fraction))
        overall = sum(self._fractions.values()) / len(self._fractions)
        band = self.ENCODE_END - self.ENCODE_START
        await self._report("encoding", self.ENCODE_START + int(overall * band))

    async def _report(self, stage: str, progress: int) -> None:
        if stage == "encoding" and progress <= self._last_reported:
            return
        self._last_reported = progress
        await self.reporter.report(self.video_id, stage, progress)
