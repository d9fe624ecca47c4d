"""FFmpeg invocation for probing, encoding and thumbnail extraction.

Every run is an independent child process started with
asyncio.create_subprocess_exec, bounded by a timeout and killed when the
job's cancellation event is set.
"""

import asyncio
import inspect
import json
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from vidpipe.core.config import settings
from vidpipe.modules.processing.errors import EncodeError, ProbeError, ThumbnailError
from vidpipe.modules.processing.interfaces import ProgressCallback
from vidpipe.modules.processing.models import RenditionResult, RenditionSpec, SourceMetadata

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


@dataclass
class FFmpegRunResult:
    """Result of one ffmpeg/ffprobe process."""
    returncode: Optional[int]
    timed_out: bool = False
    cancelled: bool = False
    stdout: bytes = b""
    stderr_tail: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled

    @property
    def failure_reason(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.timed_out:
            return "timeout"
        detail = self.stderr_tail.strip().splitlines()[-1:] if self.stderr_tail else []
        message = f"ffmpeg exited with code {self.returncode}"
        if detail:
            message = f"{message}: {detail[0]}"
        return message


def parse_progress_line(line: str, duration_seconds: Optional[float]) -> Optional[float]:
    """Parse one line of `-progress` output into a completion fraction.

    Both out_time_us and out_time_ms carry microseconds.

    Returns:
        Fraction in [0.0, 1.0], or None when the line carries no position or
        the duration is unknown.
    """
    if not duration_seconds or duration_seconds <= 0:
        return None
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        position_us = int(value)
    except ValueError:
        return None
    if position_us < 0:
        return None
    return min(1.0, position_us / 1_000_000 / duration_seconds)


async def _notify(callback: Optional[ProgressCallback], fraction: float) -> None:
    if callback is None:
        return
    result = callback(fraction)
    if inspect.isawaitable(result):
        await result


async def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill a child process if it is still running and reap it."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


async def run_ffmpeg(
    cmd: list[str],
    timeout: float,
    duration_seconds: Optional[float] = None,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[asyncio.Event] = None,
    capture_stdout: bool = False,
) -> FFmpegRunResult:
    """Run an ffmpeg or ffprobe command.

    Args:
        cmd: Command as a list of arguments
        timeout: Seconds before the process is killed and reported as timed out
        duration_seconds: Source duration used to turn positions into fractions
        progress: Sync or async callback receiving fractions in [0.0, 1.0]
        cancel: Event that kills the process when set
        capture_stdout: Collect stdout instead of parsing progress lines

    Returns:
        FFmpegRunResult describing how the process ended

    Raises:
        OSError: If the binary cannot be started
    """
    if cancel is not None and cancel.is_set():
        return FFmpegRunResult(returncode=None, cancelled=True)

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    stdout_chunks: list[bytes] = []
    stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
    timed_out = False
    cancelled = False
    last_fraction = -1.0

    async def read_stdout() -> None:
        nonlocal last_fraction
        while True:
            line = await process.stdout.readline()
            if not line:
                break
            if capture_stdout:
                stdout_chunks.append(line)
                continue
            fraction = parse_progress_line(
                line.decode("utf-8", errors="ignore"), duration_seconds
            )
            if fraction is not None and fraction > last_fraction:
                last_fraction = fraction
                await _notify(progress, fraction)

    async def read_stderr() -> None:
        # Drained continuously so a chatty ffmpeg never blocks on a full pipe
        while True:
            line = await process.stderr.readline()
            if not line:
                break
            stderr_tail.append(line.decode("utf-8", errors="ignore").rstrip())

    async def drain_and_wait() -> None:
        await asyncio.gather(read_stdout(), read_stderr())
        await process.wait()

    async def timeout_killer() -> None:
        nonlocal timed_out
        await asyncio.sleep(timeout)
        timed_out = True
        logger.warning(f"Killing {cmd[0]} after {timeout:.0f}s timeout")
        try:
            process.kill()
        except ProcessLookupError:
            pass

    async def cancel_watcher() -> None:
        nonlocal cancelled
        await cancel.wait()
        cancelled = True
        try:
            process.kill()
        except ProcessLookupError:
            pass

    watchers = [asyncio.create_task(timeout_killer())]
    if cancel is not None:
        watchers.append(asyncio.create_task(cancel_watcher()))
    try:
        await drain_and_wait()
    finally:
        for task in watchers:
            task.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)
        await _kill(process)

    return FFmpegRunResult(
        returncode=process.returncode,
        timed_out=timed_out,
        cancelled=cancelled,
        stdout=b"".join(stdout_chunks),
        stderr_tail="\n".join(stderr_tail),
    )


# ============================================
# Command builders
# ============================================

def build_probe_command(ffprobe_path: str, source_path: str) -> list[str]:
    return [
        ffprobe_path,
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        source_path,
    ]


def build_encode_command(
    ffmpeg_path: str,
    source_path: str,
    spec: RenditionSpec,
    output_path: str,
    preset: str = "fast",
    segment_seconds: int = 10,
) -> list[str]:
    """Build the command encoding one rendition to an intermediate MP4.

    Keyframes are forced on segment boundaries so the later stream copy into
    HLS cuts cleanly.
    """
    return [
        ffmpeg_path,
        "-y",
        "-hide_banner",
        "-nostats",
        "-i", source_path,
        # Video settings
        "-c:v", "libx264",
        "-preset", preset,
        "-b:v", str(spec.video_bitrate),
        "-maxrate", str(int(spec.video_bitrate * 1.5)),
        "-bufsize", str(int(spec.video_bitrate * 2)),
        "-vf", f"scale={spec.target_width}:{spec.target_height}",
        "-force_key_frames", f"expr:gte(t,n_forced*{segment_seconds})",
        # Audio settings
        "-c:a", "aac",
        "-b:a", str(spec.audio_bitrate),
        "-ac", "2",
        # Output format
        "-movflags", "+faststart",
        "-progress", "pipe:1",
        "-f", "mp4",
        output_path,
    ]


def build_segment_command(
    ffmpeg_path: str,
    input_path: str,
    spec: RenditionSpec,
    rendition_dir: str,
    segment_seconds: int = 10,
) -> list[str]:
    """Build the command that cuts an encoded MP4 into HLS segments."""
    return [
        ffmpeg_path,
        "-y",
        "-hide_banner",
        "-nostats",
        "-i", input_path,
        "-c", "copy",
        "-f", "hls",
        "-hls_time", str(segment_seconds),
        "-hls_list_size", "0",
        "-hls_segment_filename", str(Path(rendition_dir) / f"{spec.name}_%03d.ts"),
        str(Path(rendition_dir) / f"{spec.name}.m3u8"),
    ]


def build_thumbnail_command(
    ffmpeg_path: str,
    source_path: str,
    offset_seconds: float,
    output_path: str,
    width: int = 1280,
) -> list[str]:
    return [
        ffmpeg_path,
        "-y",
        "-hide_banner",
        "-nostats",
        "-ss", f"{offset_seconds:.3f}",
        "-i", source_path,
        "-frames:v", "1",
        "-vf", f"scale={width}:-2",
        "-q:v", "2",
        output_path,
    ]


def compute_thumbnail_offset(duration_seconds: float, fraction: float = 0.10) -> float:
    """Seek position for the poster frame, clamped to [0, duration)."""
    if not duration_seconds or not math.isfinite(duration_seconds) or duration_seconds <= 0:
        return 0.0
    offset = max(0.0, fraction * duration_seconds)
    if offset >= duration_seconds:
        offset = max(0.0, duration_seconds - 0.1)
    return offset


# ============================================
# Prober
# ============================================

def parse_probe_output(raw: bytes) -> SourceMetadata:
    """Extract duration and dimensions from ffprobe JSON output.

    Raises:
        ProbeError: If the output is not JSON or has no usable video stream
    """
    try:
        info = json.loads(raw or b"{}")
    except json.JSONDecodeError as e:
        raise ProbeError(f"unreadable ffprobe output: {e}") from e

    video_stream = next(
        (s for s in info.get("streams", []) if s.get("codec_type") == "video"),
        None,
    )
    if video_stream is None:
        raise ProbeError("no video stream")

    width = int(video_stream.get("width") or 0)
    height = int(video_stream.get("height") or 0)
    if height <= 0:
        raise ProbeError("video stream has no height")

    duration = 0.0
    for candidate in (info.get("format", {}).get("duration"), video_stream.get("duration")):
        try:
            duration = float(candidate)
        except (TypeError, ValueError):
            continue
        if math.isfinite(duration) and duration >= 0:
            break
        duration = 0.0

    return SourceMetadata(duration_seconds=duration, width=width, height=height)


class FFprobeProber:
    """Reads source metadata with ffprobe."""

    def __init__(self, ffprobe_path: Optional[str] = None, timeout: Optional[float] = None):
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH
        self.timeout = timeout if timeout is not None else settings.PROBE_TIMEOUT_SECONDS

    async def probe(self, source_path: Path) -> SourceMetadata:
        """Probe a local source file.

        Raises:
            ProbeError: On any probe failure
        """
        cmd = build_probe_command(self.ffprobe_path, str(source_path))
        try:
            result = await run_ffmpeg(cmd, timeout=self.timeout, capture_stdout=True)
        except OSError as e:
            raise ProbeError(f"cannot start ffprobe: {e}") from e
        if not result.success:
            raise ProbeError(result.failure_reason)
        return parse_probe_output(result.stdout)


# ============================================
# Encoder
# ============================================

class FFmpegEncoder:
    """Encodes one rendition into a progressive MP4 and a segmented HLS playlist.

    Output layout: work_dir/{name}/{name}.mp4, {name}.m3u8 and {name}_NNN.ts
    segments. The timeout bounds the encode and segment steps together.
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        preset: Optional[str] = None,
        segment_seconds: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.preset = preset or settings.ENCODER_PRESET
        self.segment_seconds = segment_seconds or settings.HLS_SEGMENT_SECONDS
        self.timeout = timeout if timeout is not None else settings.ENCODE_TIMEOUT_SECONDS

    async def encode(
        self,
        source_path: Path,
        spec: RenditionSpec,
        work_dir: Path,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
        duration: Optional[float] = None,
    ) -> RenditionResult:
        """Encode and segment one rendition.

        Never raises for encoder failures; they come back as a failed result
        and the partial MP4 is removed. asyncio.CancelledError propagates
        after the child process is killed.
        """
        rendition_dir = Path(work_dir) / spec.name
        mp4_path = rendition_dir / f"{spec.name}.mp4"
        deadline = time.monotonic() + self.timeout
        succeeded = False
        try:
            rendition_dir.mkdir(parents=True, exist_ok=True)
            await self._run(
                build_encode_command(
                    self.ffmpeg_path,
                    str(source_path),
                    spec,
                    str(mp4_path),
                    preset=self.preset,
                    segment_seconds=self.segment_seconds,
                ),
                deadline,
                duration,
                progress,
                cancel,
            )
            if not mp4_path.is_file():
                raise EncodeError("encoder produced no output")

            await self._run(
                build_segment_command(
                    self.ffmpeg_path,
                    str(mp4_path),
                    spec,
                    str(rendition_dir),
                    segment_seconds=self.segment_seconds,
                ),
                deadline,
                None,
                None,
                cancel,
            )
            playlist = rendition_dir / f"{spec.name}.m3u8"
            segments = sorted(rendition_dir.glob(f"{spec.name}_*.ts"))
            if not playlist.is_file() or not segments:
                raise EncodeError("segmenter produced no playlist")

            await _notify(progress, 1.0)
            succeeded = True
            return RenditionResult.success(
                spec,
                str(playlist),
                [str(segment) for segment in segments],
                mp4_locator=str(mp4_path),
            )
        except EncodeError as e:
            logger.warning(f"Rendition {spec.name} failed: {e}")
            return RenditionResult.failed(spec, str(e))
        except OSError as e:
            logger.warning(f"Rendition {spec.name} failed: {e}")
            return RenditionResult.failed(spec, f"io error: {e}")
        finally:
            if not succeeded:
                mp4_path.unlink(missing_ok=True)

    async def _run(
        self,
        cmd: list[str],
        deadline: float,
        duration: Optional[float],
        progress: Optional[ProgressCallback],
        cancel: Optional[asyncio.Event],
    ) -> None:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise EncodeError("timeout")
        result = await run_ffmpeg(
            cmd,
            timeout=remaining,
            duration_seconds=duration,
            progress=progress,
            cancel=cancel,
        )
        if not result.success:
            raise EncodeError(result.failure_reason)


# ============================================
# Thumbnailer
# ============================================

class FFmpegThumbnailer:
    """Extracts a single poster frame from the source."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        width: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.width = width or settings.THUMBNAIL_WIDTH
        self.timeout = timeout if timeout is not None else settings.THUMBNAIL_TIMEOUT_SECONDS

    async def extract(
        self,
        source_path: Path,
        work_dir: Path,
        duration_seconds: float,
        offset_fraction: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Path:
        """Write work_dir/thumbnail.jpg.

        Raises:
            ThumbnailError: If the frame could not be extracted
        """
        if offset_fraction is None:
            offset_fraction = settings.THUMBNAIL_OFFSET_FRACTION
        output = Path(work_dir) / "thumbnail.jpg"
        offset = compute_thumbnail_offset(duration_seconds, offset_fraction)
        cmd = build_thumbnail_command(
            self.ffmpeg_path, str(source_path), offset, str(output), width=self.width
        )
        try:
            result = await run_ffmpeg(cmd, timeout=self.timeout, cancel=cancel)
        except OSError as e:
            raise ThumbnailError(f"cannot start ffmpeg: {e}") from e
        if not result.success:
            raise ThumbnailError(result.failure_reason)
        if not output.is_file() or output.stat().st_size == 0:
            raise ThumbnailError("no frame written")
        return output
