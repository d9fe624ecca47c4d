"""Catalog record store used by the processing pipeline.

Each call runs in its own session and commits immediately; concurrent
writes to the same video are last-write-wins.
"""

import logging
import math
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidpipe.core.database import async_session_maker
from vidpipe.modules.catalog.repository import VideoRepository
from vidpipe.modules.processing.models import RenditionResult

logger = logging.getLogger(__name__)


def build_qualities(renditions: list[RenditionResult]) -> list[dict]:
    """Describe published renditions the way playback clients read them."""
    return [
        {
            "resolution": r.spec.name,
            "url": r.playlist_locator,
            "bitrate": r.spec.bandwidth,
            "width": r.spec.target_width,
            "height": r.spec.target_height,
            "format": "hls",
        }
        for r in sorted(renditions, key=lambda r: r.spec.target_height)
    ]


def build_processed_files(renditions: list[RenditionResult]) -> dict[str, str]:
    """Map each rendition name to its published MP4."""
    return {r.spec.name: r.mp4_locator for r in renditions if r.mp4_locator}


class VideoNotFoundError(LookupError):
    """The catalog has no record for a video."""


class SQLAlchemyCatalogStore:
    """Catalog store backed by the videos table."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory or async_session_maker

    async def mark_processing(self, video_id: str) -> None:
        async with self.session_factory() as session:
            updated = await VideoRepository(session).set_processing(video_id)
            await session.commit()
        if not updated:
            raise VideoNotFoundError(video_id)

    async def mark_published(
        self,
        video_id: str,
        thumbnail_locator: str,
        master_playlist_locator: str,
        renditions: list[RenditionResult],
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Record a published video with its streaming artifacts.

        Raises:
            VideoNotFoundError: If the video row no longer exists
        """
        duration = None
        if duration_seconds is not None and math.isfinite(duration_seconds):
            duration = int(duration_seconds)
        async with self.session_factory() as session:
            updated = await VideoRepository(session).set_published(
                video_id,
                thumbnail=thumbnail_locator,
                hls_playlist=master_playlist_locator,
                qualities=build_qualities(renditions),
                processed_files=build_processed_files(renditions),
                duration=duration,
            )
            await session.commit()
        if not updated:
            raise VideoNotFoundError(video_id)
        logger.info(f"Catalog marked video {video_id} published")

    async def mark_failed(self, video_id: str, reason: str) -> None:
        async with self.session_factory() as session:
            updated = await VideoRepository(session).set_failed(video_id, reason)
            await session.commit()
        if not updated:
            raise VideoNotFoundError(video_id)

    async def get_owner_id(self, video_id: str) -> Optional[str]:
        async with self.session_factory() as session:
            video = await VideoRepository(session).get_by_id(video_id)
        return video.user_id if video else None
