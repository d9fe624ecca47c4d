"""Narrow interfaces to the collaborators the pipeline depends on."""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Union

from vidpipe.modules.processing.models import (
    JobOutcome,
    ProcessingJob,
    RenditionResult,
    RenditionSpec,
    SourceMetadata,
)

# Receives completion fractions in [0.0, 1.0]; may be sync or async
ProgressCallback = Callable[[float], Union[None, Awaitable[None]]]


class JobQueue(Protocol):
    async def enqueue(self, job: ProcessingJob) -> None: ...

    async def dequeue(self, timeout: float) -> Optional[ProcessingJob]:
        """Block up to timeout seconds; None when nothing arrived."""
        ...


class CatalogStore(Protocol):
    async def mark_processing(self, video_id: str) -> None: ...

    async def mark_published(
        self,
        video_id: str,
        thumbnail_locator: str,
        master_playlist_locator: str,
        renditions: list[RenditionResult],
        duration_seconds: Optional[float] = None,
    ) -> None: ...

    async def mark_failed(self, video_id: str, reason: str) -> None: ...

    async def get_owner_id(self, video_id: str) -> Optional[str]: ...


class Notifier(Protocol):
    async def notify(
        self,
        video_id: str,
        user_id: Optional[str],
        outcome: JobOutcome,
    ) -> None:
        """Deliver one notification; never raises."""
        ...


class SourceProber(Protocol):
    async def probe(self, source_path: Path) -> SourceMetadata: ...


class RenditionEncoder(Protocol):
    async def encode(
        self,
        source_path: Path,
        spec: RenditionSpec,
        work_dir: Path,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
        duration: Optional[float] = None,
    ) -> RenditionResult: ...


class ThumbnailExtractor(Protocol):
    async def extract(
        self,
        source_path: Path,
        work_dir: Path,
        duration_seconds: float,
        offset_fraction: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Path: ...


class ProgressReporter(Protocol):
    async def report(self, video_id: str, stage: str, progress: int) -> None:
        """Publish job progress as a percentage; never raises."""
        ...
