"""Shared fakes for processing pipeline tests.

External processes, the catalog database, the notifier and the object store
are replaced by in-memory fakes that record how they were called.
"""

import asyncio
from pathlib import Path
from typing import Optional

import pytest

from vidpipe.core.retry import RetryConfig
from vidpipe.core.storage import StorageResult
from vidpipe.modules.processing.errors import ProbeError, ThumbnailError
from vidpipe.modules.processing.models import (
    JobOutcome,
    RenditionResult,
    RenditionSpec,
    SourceMetadata,
)
from vidpipe.modules.processing.orchestrator import JobOrchestrator
from vidpipe.modules.processing.publisher import ArtifactPublisher
from vidpipe.modules.processing.source import SourceFetcher


class FakeCatalog:
    def __init__(self, owner_id: Optional[str] = "user-1", fail_published: bool = False):
        self.owner_id = owner_id
        self.fail_published = fail_published
        self.calls: list[tuple] = []

    async def mark_processing(self, video_id: str) -> None:
        self.calls.append(("processing", video_id))

    async def mark_published(
        self,
        video_id,
        thumbnail_locator,
        master_playlist_locator,
        renditions,
        duration_seconds=None,
    ) -> None:
        if self.fail_published:
            raise ConnectionError("catalog unavailable")
        self.calls.append(
            ("published", video_id, thumbnail_locator, master_playlist_locator, list(renditions))
        )

    async def mark_failed(self, video_id: str, reason: str) -> None:
        self.calls.append(("failed", video_id, reason))

    async def get_owner_id(self, video_id: str) -> Optional[str]:
        return self.owner_id

    def kinds(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeNotifier:
    def __init__(self):
        self.sent: list[tuple[str, Optional[str], JobOutcome]] = []

    async def notify(self, video_id: str, user_id: Optional[str], outcome: JobOutcome) -> None:
        self.sent.append((video_id, user_id, outcome))


class FakeStorage:
    """Object store keeping objects in a dict; keys matching fail_when are rejected."""

    def __init__(self, fail_when=None):
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.put_keys: list[str] = []
        self.fail_when = fail_when or (lambda key: False)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        self.put_keys.append(key)
        if self.fail_when(key):
            return StorageResult(success=False, key=key, url="", error_message="rejected")
        self.objects[key] = data
        self.content_types[key] = content_type
        return StorageResult(success=True, key=key, url=f"https://cdn.test/{key}", file_size=len(data))

    def download(self, key: str, destination: str) -> bool:
        if key not in self.objects:
            return False
        Path(destination).write_bytes(self.objects[key])
        return True


class FakeProber:
    def __init__(self, metadata: Optional[SourceMetadata] = None, error: Optional[Exception] = None):
        self.metadata = metadata or SourceMetadata(duration_seconds=60.0, width=1920, height=1080)
        self.error = error
        self.calls = 0

    async def probe(self, source_path: Path) -> SourceMetadata:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.metadata


class FakeThumbnailer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    async def extract(self, source_path, work_dir, duration_seconds, offset_fraction=None, cancel=None) -> Path:
        self.calls += 1
        if self.fail:
            raise ThumbnailError("no frame")
        output = Path(work_dir) / "thumbnail.jpg"
        output.write_bytes(b"\xff\xd8jpeg")
        return output


class FakeEncoder:
    """Writes an MP4, a playlist and two segments per rendition unless the name is in fail_names."""

    def __init__(self, fail_names=(), delay: float = 0.0, before_encode=None):
        self.fail_names = set(fail_names)
        self.delay = delay
        self.before_encode = before_encode
        self.encoded: list[str] = []
        self.running = 0
        self.max_running = 0

    async def encode(self, source_path, spec: RenditionSpec, work_dir, progress=None, cancel=None, duration=None):
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.before_encode is not None:
                self.before_encode(spec)
            if self.delay:
                await asyncio.sleep(self.delay)
            self.encoded.append(spec.name)
            if cancel is not None and cancel.is_set():
                return RenditionResult.failed(spec, "cancelled")
            if spec.name in self.fail_names:
                return RenditionResult.failed(spec, "ffmpeg exited with code 1")
            rendition_dir = Path(work_dir) / spec.name
            rendition_dir.mkdir(parents=True, exist_ok=True)
            segments = []
            for index in range(2):
                segment = rendition_dir / f"{spec.name}_{index:03d}.ts"
                segment.write_bytes(b"ts-data")
                segments.append(str(segment))
            playlist = rendition_dir / f"{spec.name}.m3u8"
            playlist.write_text("#EXTM3U\n")
            mp4 = rendition_dir / f"{spec.name}.mp4"
            mp4.write_bytes(b"mp4-data")
            if progress is not None:
                await progress(1.0)
            return RenditionResult.success(spec, str(playlist), segments, mp4_locator=str(mp4))
        finally:
            self.running -= 1


class FakeProgressReporter:
    def __init__(self):
        self.updates: list[tuple[str, str, int]] = []

    async def report(self, video_id: str, stage: str, progress: int) -> None:
        self.updates.append((video_id, stage, progress))


def make_probe_error() -> ProbeError:
    return ProbeError("invalid data found when processing input")


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    path = tmp_path / "uploads" / "raw.mp4"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    return path


@pytest.fixture
def work_root(tmp_path: Path) -> Path:
    root = tmp_path / "work"
    root.mkdir()
    return root


@pytest.fixture
def build_orchestrator(work_root: Path):
    """Factory for an orchestrator wired to fakes; returns (orchestrator, fakes)."""

    def _build(
        encoder: Optional[FakeEncoder] = None,
        prober: Optional[FakeProber] = None,
        thumbnailer: Optional[FakeThumbnailer] = None,
        storage: Optional[FakeStorage] = None,
        catalog: Optional[FakeCatalog] = None,
        rendition_concurrency: int = 2,
    ):
        fakes = {
            "encoder": encoder or FakeEncoder(),
            "prober": prober or FakeProber(),
            "thumbnailer": thumbnailer or FakeThumbnailer(),
            "storage": storage or FakeStorage(),
            "catalog": catalog or FakeCatalog(),
            "notifier": FakeNotifier(),
            "progress": FakeProgressReporter(),
        }
        publisher = ArtifactPublisher(
            fakes["storage"],
            retry_config=RetryConfig(max_attempts=2, initial_delay=0.0),
        )
        orchestrator = JobOrchestrator(
            catalog=fakes["catalog"],
            notifier=fakes["notifier"],
            publisher=publisher,
            encoder=fakes["encoder"],
            thumbnailer=fakes["thumbnailer"],
            prober=fakes["prober"],
            fetcher=SourceFetcher(storage=fakes["storage"]),
            progress_reporter=fakes["progress"],
            work_root=work_root,
            rendition_concurrency=rendition_concurrency,
        )
        return orchestrator, fakes

    return _build
