"""Notifications for processing outcomes.

Writes one in-app notification per terminal job outcome. Delivery problems
are logged and never escalate into the job.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidpipe.core.database import async_session_maker
from vidpipe.modules.catalog.repository import VideoRepository
from vidpipe.modules.notification.models import Notification, NotificationType
from vidpipe.modules.processing.models import JobOutcome

logger = logging.getLogger(__name__)


def build_notification_content(
    video_id: str,
    title: Optional[str],
    outcome: JobOutcome,
) -> tuple[str, str, dict]:
    """Title, message and data payload for an outcome."""
    name = f'"{title}"' if title else "your video"
    if outcome.published:
        return (
            "Video processed successfully",
            f"Your video {name} has been processed and is now live!",
            {"videoId": video_id, "thumbnail": outcome.thumbnail_locator},
        )
    return (
        "Video processing failed",
        f"Failed to process your video {name}. Please try uploading again.",
        {"videoId": video_id, "error": outcome.reason},
    )


class DatabaseNotifier:
    """Stores notifications in the notifications table."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory or async_session_maker

    async def notify(
        self,
        video_id: str,
        user_id: Optional[str],
        outcome: JobOutcome,
    ) -> None:
        if not user_id:
            logger.warning(f"No owner known for video {video_id}; notification skipped")
            return

        try:
            async with self.session_factory() as session:
                video = await VideoRepository(session).get_by_id(video_id)
                title, message, data = build_notification_content(
                    video_id, video.title if video else None, outcome
                )
                session.add(
                    Notification(
                        user_id=user_id,
                        title=title,
                        message=message,
                        type=NotificationType.VIDEO_UPLOAD.value,
                        data=data,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to store notification for video {video_id}: {e}")
            return

        logger.info(f"Notified user {user_id} about video {video_id}")
