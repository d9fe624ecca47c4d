"""Repository for catalog video records."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vidpipe.modules.catalog.models import Video, VideoStatus


class VideoRepository:
    """Repository for Video operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, video_id: str) -> Optional[Video]:
        result = await self.session.execute(select(Video).where(Video.id == video_id))
        return result.scalar_one_or_none()

    async def set_processing(self, video_id: str) -> bool:
        return await self._update(
            video_id,
            status=VideoStatus.PROCESSING.value,
            failure_reason=None,
        )

    async def set_published(
        self,
        video_id: str,
        thumbnail: str,
        hls_playlist: str,
        qualities: list[dict],
        processed_files: Optional[dict] = None,
        duration: Optional[int] = None,
    ) -> bool:
        values = {
            "status": VideoStatus.PUBLISHED.value,
            "thumbnail": thumbnail,
            "hls_playlist": hls_playlist,
            "qualities": qualities,
            "processed_files": processed_files or {},
            "failure_reason": None,
            "processed_at": datetime.now(timezone.utc),
        }
        if duration is not None:
            values["duration"] = duration
        return await self._update(video_id, **values)

    async def set_failed(self, video_id: str, reason: str) -> bool:
        return await self._update(
            video_id,
            status=VideoStatus.FAILED.value,
            failure_reason=reason,
            processed_at=datetime.now(timezone.utc),
        )

    async def _update(self, video_id: str, **values) -> bool:
        """Update a video row in place.

        Returns:
            True if a row was updated
        """
        result = await self.session.execute(
            update(Video).where(Video.id == video_id).values(**values)
        )
        return result.rowcount > 0
