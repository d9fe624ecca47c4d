"""Value types for processing jobs, renditions and outcomes."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class JobStage(str, Enum):
    """Stages of the processing state machine, in execution order."""
    FETCHING = "fetching"
    PROBING = "probing"
    THUMBNAILING = "thumbnailing"
    ENCODING = "encoding"
    ASSEMBLING = "assembling"
    PUBLISHING = "publishing"
    FINALIZING = "finalizing"
    PUBLISHED = "published"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Fixed reasons a job can fail with."""
    SOURCE_FETCH_FAILED = "source fetch failed"
    PROBE_FAILED = "probe failed"
    THUMBNAIL_FAILED = "thumbnail failed"
    ALL_RENDITIONS_FAILED = "all renditions failed"
    ARTIFACT_PUBLISH_FAILED = "artifact publish failed"
    INTERNAL_ERROR = "internal error"
    CANCELLED = "cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ProcessingJob:
    """A request to process one uploaded video."""
    video_id: str
    source_locator: str
    enqueued_at: datetime = field(default_factory=_utcnow)
    user_id: Optional[str] = None
    job_id: str = field(default_factory=new_job_id)


@dataclass(frozen=True)
class SourceMetadata:
    """Probed properties of the source video."""
    duration_seconds: float
    width: int
    height: int


@dataclass(frozen=True)
class RenditionSpec:
    """One output tier of the ladder."""
    name: str
    target_height: int
    video_bitrate: int  # bps
    audio_bitrate: int  # bps
    target_width: int = 0

    @property
    def bandwidth(self) -> int:
        """Peak bandwidth advertised in the master playlist."""
        return self.video_bitrate + self.audio_bitrate

    @property
    def resolution(self) -> str:
        return f"{self.target_width}x{self.target_height}"


@dataclass(frozen=True)
class RenditionResult:
    """Outcome of encoding one rendition.

    A succeeded result holds the local playlist, segment and MP4 paths until
    the publisher replaces them with durable locators.
    """
    spec: RenditionSpec
    succeeded: bool
    playlist_locator: Optional[str] = None
    segment_locators: tuple[str, ...] = ()
    mp4_locator: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def success(
        cls,
        spec: RenditionSpec,
        playlist_locator: str,
        segment_locators: list[str],
        mp4_locator: Optional[str] = None,
    ) -> "RenditionResult":
        return cls(
            spec=spec,
            succeeded=True,
            playlist_locator=playlist_locator,
            segment_locators=tuple(segment_locators),
            mp4_locator=mp4_locator,
        )

    @classmethod
    def failed(cls, spec: RenditionSpec, reason: str) -> "RenditionResult":
        return cls(spec=spec, succeeded=False, reason=reason)


@dataclass(frozen=True)
class JobOutcome:
    """Terminal result of a processing job.

    A published outcome lists only the renditions referenced by the master
    playlist.
    """
    published: bool
    thumbnail_locator: Optional[str] = None
    master_playlist_locator: Optional[str] = None
    renditions: tuple[RenditionResult, ...] = ()
    reason: Optional[str] = None
    duration_seconds: Optional[float] = None

    @classmethod
    def success(
        cls,
        thumbnail_locator: str,
        master_playlist_locator: str,
        renditions: list[RenditionResult],
        duration_seconds: Optional[float] = None,
    ) -> "JobOutcome":
        return cls(
            published=True,
            thumbnail_locator=thumbnail_locator,
            master_playlist_locator=master_playlist_locator,
            renditions=tuple(renditions),
            duration_seconds=duration_seconds,
        )

    @classmethod
    def failure(cls, reason: "FailureReason | str") -> "JobOutcome":
        if isinstance(reason, FailureReason):
            reason = reason.value
        return cls(published=False, reason=reason)

    @property
    def stage(self) -> JobStage:
        return JobStage.PUBLISHED if self.published else JobStage.FAILED
