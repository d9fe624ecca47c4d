"""Job orchestration for video processing.

Drives one job through fetching, probing, thumbnailing, encoding,
assembling, publishing and finalizing. Every exit path writes the outcome to
the catalog, sends exactly one notification and removes the job's scratch
directory.
"""

import asyncio
import logging
import shutil
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from opentelemetry.trace import StatusCode

from vidpipe.core.config import settings
from vidpipe.core.logging import job_log_context, log_error, log_info, log_warning
from vidpipe.core.metrics import JOBS_IN_PROGRESS, record_job_outcome, record_rendition
from vidpipe.core.tracing import create_span, set_span_status
from vidpipe.modules.processing.errors import (
    InternalError,
    ProbeError,
    PublishError,
    SourceFetchError,
    ThumbnailError,
)
from vidpipe.modules.processing.interfaces import (
    CatalogStore,
    Notifier,
    ProgressReporter,
    RenditionEncoder,
    SourceProber,
    ThumbnailExtractor,
)
from vidpipe.modules.processing.ladder import plan_renditions
from vidpipe.modules.processing.models import (
    FailureReason,
    JobOutcome,
    JobStage,
    ProcessingJob,
    RenditionResult,
    RenditionSpec,
)
from vidpipe.modules.processing.playlist import assemble_master_playlist
from vidpipe.modules.processing.progress import JobProgress, NullProgressReporter
from vidpipe.modules.processing.publisher import (
    ArtifactPublisher,
    master_playlist_key,
    rendition_key,
    thumbnail_key,
)
from vidpipe.modules.processing.source import SourceFetcher

logger = logging.getLogger(__name__)

STAGE_PROGRESS = {
    JobStage.FETCHING: 0,
    JobStage.PROBING: 2,
    JobStage.THUMBNAILING: 5,
    JobStage.ENCODING: JobProgress.ENCODE_START,
    JobStage.ASSEMBLING: JobProgress.ENCODE_END,
    JobStage.PUBLISHING: 92,
    JobStage.FINALIZING: 99,
}


class JobFailed(Exception):
    """Ends a job early with a fixed failure reason."""

    def __init__(self, reason: FailureReason):
        super().__init__(reason.value)
        self.reason = reason


class JobOrchestrator:
    """Runs processing jobs against injected collaborators."""

    def __init__(
        self,
        catalog: CatalogStore,
        notifier: Notifier,
        publisher: ArtifactPublisher,
        encoder: RenditionEncoder,
        thumbnailer: ThumbnailExtractor,
        prober: SourceProber,
        fetcher: Optional[SourceFetcher] = None,
        progress_reporter: Optional[ProgressReporter] = None,
        work_root: Optional[Path] = None,
        rendition_concurrency: Optional[int] = None,
    ):
        self.catalog = catalog
        self.notifier = notifier
        self.publisher = publisher
        self.encoder = encoder
        self.thumbnailer = thumbnailer
        self.prober = prober
        self.fetcher = fetcher or SourceFetcher()
        self.progress_reporter = progress_reporter or NullProgressReporter()
        self.work_root = Path(work_root or settings.WORK_DIR)
        self.rendition_concurrency = max(
            1, rendition_concurrency or settings.RENDITION_CONCURRENCY
        )
        self._finalizing: dict[str, asyncio.Task] = {}

    def forget(self, job: ProcessingJob) -> None:
        """Drop the finalize record for a job once its caller is done."""
        self._finalizing.pop(job.job_id, None)

    def work_dir_for(self, job: ProcessingJob) -> Path:
        return self.work_root / f"{job.video_id}-{job.job_id}"

    async def process(
        self,
        job: ProcessingJob,
        cancel: Optional[asyncio.Event] = None,
    ) -> JobOutcome:
        """Process a job to a terminal outcome.

        Failures of the pipeline stages become a failed outcome. Unexpected
        exceptions propagate after the scratch directory is removed; the
        caller records them through finalize().

        Args:
            job: Job to process
            cancel: Event that stops the job at the next checkpoint

        Returns:
            The finalized outcome
        """
        cancel = cancel or asyncio.Event()
        started = time.monotonic()
        work_dir = self.work_dir_for(job)

        with job_log_context(job.video_id, job.job_id), create_span(
            "processing.job",
            attributes={"video.id": job.video_id, "job.id": job.job_id},
        ):
            log_info(logger, f"Processing video {job.video_id}", source=job.source_locator)
            JOBS_IN_PROGRESS.inc()
            try:
                progress = JobProgress(self.progress_reporter, job.video_id)
                try:
                    outcome = await self._execute(job, work_dir, cancel, progress)
                except JobFailed as e:
                    outcome = JobOutcome.failure(e.reason)
                return await self.finalize(job, outcome, started_at=started)
            finally:
                JOBS_IN_PROGRESS.dec()
                self._cleanup(work_dir)

    async def finalize(
        self,
        job: ProcessingJob,
        outcome: JobOutcome,
        started_at: Optional[float] = None,
    ) -> JobOutcome:
        """Write the outcome to the catalog and send one notification.

        Never raises. Only the first outcome offered for a job is recorded;
        later calls wait for that one and return it. The recording runs in
        its own task, so cancelling the caller does not interrupt it. A
        catalog write failure on a published outcome turns it into an
        internal error so the owner is told the job failed.

        Returns:
            The outcome that was recorded
        """
        task = self._finalizing.get(job.job_id)
        if task is None:
            task = asyncio.create_task(self._record_outcome(job, outcome, started_at))
            self._finalizing[job.job_id] = task
        else:
            with job_log_context(job.video_id, job.job_id):
                logger.warning("Job already finalizing; keeping the first outcome")
        return await asyncio.shield(task)

    async def _record_outcome(
        self,
        job: ProcessingJob,
        outcome: JobOutcome,
        started_at: Optional[float],
    ) -> JobOutcome:
        with job_log_context(job.video_id, job.job_id):
            if outcome.published:
                try:
                    await self.catalog.mark_published(
                        job.video_id,
                        outcome.thumbnail_locator,
                        outcome.master_playlist_locator,
                        list(outcome.renditions),
                        duration_seconds=outcome.duration_seconds,
                    )
                except Exception as e:
                    log_error(logger, "Catalog update failed for published video", e)
                    outcome = JobOutcome.failure(FailureReason.INTERNAL_ERROR)

            if not outcome.published:
                try:
                    await self.catalog.mark_failed(job.video_id, outcome.reason)
                except Exception as e:
                    log_error(logger, "Catalog update failed for failed video", e)

            user_id = job.user_id
            if user_id is None:
                try:
                    user_id = await self.catalog.get_owner_id(job.video_id)
                except Exception as e:
                    log_warning(logger, f"Owner lookup failed: {e}")

            try:
                await self.notifier.notify(job.video_id, user_id, outcome)
            except Exception as e:
                log_error(logger, "Notification delivery failed", e)

            await self.progress_reporter.report(job.video_id, outcome.stage.value, 100)

            duration = time.monotonic() - started_at if started_at is not None else 0.0
            record_job_outcome(
                "published" if outcome.published else "failed",
                outcome.reason or "",
                duration,
            )
            if outcome.published:
                log_info(
                    logger,
                    f"Video {job.video_id} published with "
                    f"{len(outcome.renditions)} rendition(s)",
                    renditions=[r.spec.name for r in outcome.renditions],
                )
            else:
                set_span_status(StatusCode.ERROR, outcome.reason or "")
                log_warning(logger, f"Video {job.video_id} failed: {outcome.reason}")
            return outcome

    # ============================================
    # Stages
    # ============================================

    @asynccontextmanager
    async def _stage(
        self,
        job: ProcessingJob,
        stage: JobStage,
        progress: JobProgress,
        cancel: asyncio.Event,
    ) -> AsyncIterator[None]:
        if cancel.is_set():
            raise JobFailed(FailureReason.CANCELLED)
        logger.info(f"Entering stage {stage.value}")
        await progress.stage(stage.value, STAGE_PROGRESS[stage])
        with create_span(f"processing.{stage.value}", attributes={"video.id": job.video_id}):
            yield

    async def _execute(
        self,
        job: ProcessingJob,
        work_dir: Path,
        cancel: asyncio.Event,
        progress: JobProgress,
    ) -> JobOutcome:
        try:
            await self.catalog.mark_processing(job.video_id)
        except Exception as e:
            log_warning(logger, f"Could not mark video as processing: {e}")

        work_dir.mkdir(parents=True, exist_ok=True)

        async with self._stage(job, JobStage.FETCHING, progress, cancel):
            try:
                source_path = await self.fetcher.fetch(job.source_locator, work_dir)
            except SourceFetchError as e:
                log_warning(logger, f"Source fetch failed: {e}")
                raise JobFailed(FailureReason.SOURCE_FETCH_FAILED) from e

        async with self._stage(job, JobStage.PROBING, progress, cancel):
            try:
                metadata = await self.prober.probe(source_path)
            except ProbeError as e:
                log_warning(logger, f"Probe failed: {e}")
                raise JobFailed(FailureReason.PROBE_FAILED) from e
            if metadata.height <= 0:
                raise JobFailed(FailureReason.PROBE_FAILED)
            plan = plan_renditions(metadata)
            logger.info(
                f"Source {metadata.width}x{metadata.height}, "
                f"{metadata.duration_seconds:.1f}s; planned {[s.name for s in plan]}"
            )

        async with self._stage(job, JobStage.THUMBNAILING, progress, cancel):
            try:
                thumbnail_path = await self.thumbnailer.extract(
                    source_path, work_dir, metadata.duration_seconds, cancel=cancel
                )
            except ThumbnailError as e:
                if cancel.is_set():
                    raise JobFailed(FailureReason.CANCELLED) from e
                log_warning(logger, f"Thumbnail extraction failed: {e}")
                raise JobFailed(FailureReason.THUMBNAIL_FAILED) from e

        async with self._stage(job, JobStage.ENCODING, progress, cancel):
            results = await self._encode_all(
                source_path, plan, work_dir, cancel, progress, metadata.duration_seconds
            )
            if cancel.is_set():
                raise JobFailed(FailureReason.CANCELLED)
            succeeded = [r for r in results if r.succeeded]
            for result in results:
                if not result.succeeded:
                    log_warning(logger, f"Rendition {result.spec.name} failed: {result.reason}")
            if not succeeded:
                raise JobFailed(FailureReason.ALL_RENDITIONS_FAILED)

        async with self._stage(job, JobStage.ASSEMBLING, progress, cancel):
            master_path = work_dir / "master.m3u8"
            master_path.write_text(assemble_master_playlist([r.spec for r in succeeded]))

        async with self._stage(job, JobStage.PUBLISHING, progress, cancel):
            try:
                thumbnail_locator = await self.publisher.publish(
                    thumbnail_path, thumbnail_key(job.video_id)
                )
            except PublishError as e:
                log_warning(logger, f"Thumbnail publish failed: {e}")
                raise JobFailed(FailureReason.ARTIFACT_PUBLISH_FAILED) from e

            published = []
            for result in succeeded:
                try:
                    published.append(await self._publish_rendition(job, result))
                except PublishError as e:
                    log_warning(
                        logger,
                        f"Dropping rendition {result.spec.name} from master playlist: {e}",
                    )
            if not published:
                raise JobFailed(FailureReason.ARTIFACT_PUBLISH_FAILED)

            if len(published) < len(succeeded):
                master_path.write_text(
                    assemble_master_playlist([r.spec for r in published])
                )
            try:
                master_locator = await self.publisher.publish(
                    master_path, master_playlist_key(job.video_id)
                )
            except PublishError as e:
                log_warning(logger, f"Master playlist publish failed: {e}")
                raise JobFailed(FailureReason.ARTIFACT_PUBLISH_FAILED) from e

        await progress.stage(JobStage.FINALIZING.value, STAGE_PROGRESS[JobStage.FINALIZING])
        return JobOutcome.success(
            thumbnail_locator,
            master_locator,
            published,
            duration_seconds=metadata.duration_seconds,
        )

    async def _encode_all(
        self,
        source_path: Path,
        plan: list[RenditionSpec],
        work_dir: Path,
        cancel: asyncio.Event,
        progress: JobProgress,
        duration: float,
    ) -> list[RenditionResult]:
        """Encode every planned rendition, accumulating failures."""
        semaphore = asyncio.Semaphore(self.rendition_concurrency)
        progress.start_encoding([spec.name for spec in plan])

        async def encode_one(spec: RenditionSpec) -> RenditionResult:
            async with semaphore:
                if cancel.is_set():
                    return RenditionResult.failed(spec, "cancelled")

                async def on_progress(fraction: float) -> None:
                    await progress.rendition(spec.name, fraction)

                started = time.monotonic()
                with create_span("processing.encode_rendition", attributes={"rendition": spec.name}):
                    result = await self.encoder.encode(
                        source_path,
                        spec,
                        work_dir,
                        progress=on_progress,
                        cancel=cancel,
                        duration=duration,
                    )
                record_rendition(spec.name, result.succeeded, time.monotonic() - started)
                return result

        outcomes = await asyncio.gather(
            *(encode_one(spec) for spec in plan), return_exceptions=True
        )
        # Every encode has settled; a defect in one is re-raised only now
        for spec, item in zip(plan, outcomes):
            if isinstance(item, Exception):
                raise InternalError(f"encoder crashed on rendition {spec.name}") from item
            if isinstance(item, BaseException):
                raise item
        return list(outcomes)

    async def _publish_rendition(
        self,
        job: ProcessingJob,
        result: RenditionResult,
    ) -> RenditionResult:
        """Publish segments and the MP4 first, then the playlist that references them."""
        name = result.spec.name
        segment_locators = []
        for segment in result.segment_locators:
            segment_path = Path(segment)
            segment_locators.append(
                await self.publisher.publish(
                    segment_path, rendition_key(job.video_id, name, segment_path.name)
                )
            )
        mp4_locator = None
        if result.mp4_locator:
            mp4_path = Path(result.mp4_locator)
            mp4_locator = await self.publisher.publish(
                mp4_path, rendition_key(job.video_id, name, mp4_path.name)
            )
        playlist_path = Path(result.playlist_locator)
        playlist_locator = await self.publisher.publish(
            playlist_path, rendition_key(job.video_id, name, playlist_path.name)
        )
        return RenditionResult.success(
            result.spec, playlist_locator, segment_locators, mp4_locator=mp4_locator
        )

    def _cleanup(self, work_dir: Path) -> None:
        shutil.rmtree(work_dir, ignore_errors=True)
        if work_dir.exists():
            logger.warning(f"Could not remove scratch directory {work_dir}")
