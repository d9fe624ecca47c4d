"""Catalog model for uploaded videos.

Only the columns the processing pipeline reads or writes are mapped; the
rest of the videos table belongs to the catalog service.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from vidpipe.core.database import Base


class VideoStatus(str, Enum):
    """Processing status of a video."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    PUBLISHED = "published"
    FAILED = "failed"


class Video(Base):
    """An uploaded video and its published streaming artifacts."""

    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), default="")

    status: Mapped[str] = mapped_column(
        String(20), default=VideoStatus.UPLOADING.value, index=True
    )
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds
    thumbnail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hls_playlist: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # [{resolution, url, bitrate, width, height, format}]
    qualities: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    # {rendition name: progressive MP4 url}
    processed_files: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Video {self.id} - {self.status}>"
