"""Tests for ffmpeg command building, output parsing and process handling."""

import asyncio
import json
import sys

import pytest
from hypothesis import given, settings, strategies as st

from vidpipe.modules.processing.errors import ProbeError, ThumbnailError
from vidpipe.modules.processing.ffmpeg import (
    FFmpegEncoder,
    FFmpegThumbnailer,
    FFprobeProber,
    build_encode_command,
    build_segment_command,
    build_thumbnail_command,
    compute_thumbnail_offset,
    parse_probe_output,
    parse_progress_line,
    run_ffmpeg,
)
from vidpipe.modules.processing.models import RenditionSpec


SPEC_720 = RenditionSpec(
    name="720p",
    target_height=720,
    video_bitrate=2_500_000,
    audio_bitrate=128_000,
    target_width=1280,
)


def python_cmd(code: str) -> list[str]:
    return [sys.executable, "-c", code]


FAKE_FFMPEG = """\
import pathlib, sys, time
args = sys.argv[1:]
out = pathlib.Path(args[-1])
if out.suffix == ".mp4":
    time.sleep({encode_seconds})
    out.write_bytes(b"mp4")
else:
    time.sleep({segment_seconds})
    pattern = args[args.index("-hls_segment_filename") + 1]
    pathlib.Path(pattern.replace("%03d", "000")).write_bytes(b"ts")
    out.write_text("#EXTM3U\\n")
"""


def write_fake_ffmpeg(directory, encode_seconds: float = 0.0, segment_seconds: float = 0.0):
    """Executable standing in for ffmpeg that writes the files each step expects."""
    script = directory / "ffmpeg"
    script.write_text(
        f"#!{sys.executable}\n"
        + FAKE_FFMPEG.format(encode_seconds=encode_seconds, segment_seconds=segment_seconds)
    )
    script.chmod(0o755)
    return script


class TestProgressParsing:
    def test_out_time_us(self):
        assert parse_progress_line("out_time_us=5000000", 10.0) == pytest.approx(0.5)

    def test_out_time_ms_carries_microseconds(self):
        assert parse_progress_line("out_time_ms=2500000\n", 10.0) == pytest.approx(0.25)

    def test_clamped_to_one(self):
        assert parse_progress_line("out_time_us=99000000", 10.0) == 1.0

    @pytest.mark.parametrize(
        "line",
        ["frame=10", "out_time_us=N/A", "progress=continue", "", "out_time=00:00:01.000000"],
    )
    def test_lines_without_position(self, line):
        assert parse_progress_line(line, 10.0) is None

    def test_unknown_duration(self):
        assert parse_progress_line("out_time_us=5000000", 0.0) is None
        assert parse_progress_line("out_time_us=5000000", None) is None

    @given(
        position_us=st.integers(min_value=0, max_value=10**12),
        duration=st.floats(min_value=0.01, max_value=100_000.0),
    )
    @settings(max_examples=100)
    def test_fraction_always_in_unit_interval(self, position_us: int, duration: float) -> None:
        fraction = parse_progress_line(f"out_time_us={position_us}", duration)

        assert fraction is not None
        assert 0.0 <= fraction <= 1.0


class TestThumbnailOffset:
    def test_ten_percent_of_duration(self):
        assert compute_thumbnail_offset(100.0) == pytest.approx(10.0)

    @pytest.mark.parametrize("duration", [0.0, -1.0, float("nan"), float("inf")])
    def test_unknown_duration_seeks_to_start(self, duration):
        assert compute_thumbnail_offset(duration) == 0.0

    def test_fraction_past_end_is_clamped(self):
        assert compute_thumbnail_offset(5.0, fraction=2.0) == pytest.approx(4.9)

    @given(
        duration=st.floats(min_value=0.001, max_value=1_000_000.0),
        fraction=st.floats(min_value=-1.0, max_value=5.0),
    )
    @settings(max_examples=100)
    def test_offset_within_duration(self, duration: float, fraction: float) -> None:
        offset = compute_thumbnail_offset(duration, fraction)

        assert 0.0 <= offset < duration or offset == 0.0


class TestCommandBuilders:
    def test_encode_command(self):
        cmd = build_encode_command("ffmpeg", "/w/source.mp4", SPEC_720, "/w/720p/720p.mp4", preset="fast")

        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-i") + 1] == "/w/source.mp4"
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-b:v") + 1] == "2500000"
        assert cmd[cmd.index("-b:a") + 1] == "128000"
        assert cmd[cmd.index("-vf") + 1] == "scale=1280:720"
        assert cmd[cmd.index("-preset") + 1] == "fast"
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"
        assert cmd[-1] == "/w/720p/720p.mp4"

    def test_segment_command(self):
        cmd = build_segment_command("ffmpeg", "/w/720p/720p.mp4", SPEC_720, "/w/720p", segment_seconds=10)

        assert cmd[cmd.index("-c") + 1] == "copy"
        assert cmd[cmd.index("-f") + 1] == "hls"
        assert cmd[cmd.index("-hls_time") + 1] == "10"
        assert cmd[cmd.index("-hls_list_size") + 1] == "0"
        assert cmd[cmd.index("-hls_segment_filename") + 1] == "/w/720p/720p_%03d.ts"
        assert cmd[-1] == "/w/720p/720p.m3u8"

    def test_thumbnail_command(self):
        cmd = build_thumbnail_command("ffmpeg", "/w/source.mp4", 12.5, "/w/thumbnail.jpg")

        assert cmd[cmd.index("-ss") + 1] == "12.500"
        assert cmd[cmd.index("-frames:v") + 1] == "1"
        assert cmd[cmd.index("-vf") + 1] == "scale=1280:-2"
        assert cmd[-1] == "/w/thumbnail.jpg"


class TestProbeParsing:
    def test_video_stream_and_format_duration(self):
        raw = json.dumps({
            "streams": [
                {"codec_type": "audio"},
                {"codec_type": "video", "width": 1920, "height": 1080},
            ],
            "format": {"duration": "63.5"},
        }).encode()

        metadata = parse_probe_output(raw)

        assert (metadata.width, metadata.height) == (1920, 1080)
        assert metadata.duration_seconds == pytest.approx(63.5)

    def test_missing_duration_is_zero(self):
        raw = json.dumps({"streams": [{"codec_type": "video", "width": 640, "height": 360}]}).encode()

        assert parse_probe_output(raw).duration_seconds == 0.0

    @pytest.mark.parametrize(
        "raw",
        [
            b"not json",
            json.dumps({"streams": [{"codec_type": "audio"}]}).encode(),
            json.dumps({"streams": [{"codec_type": "video", "width": 640, "height": 0}]}).encode(),
        ],
        ids=["garbage", "audio-only", "zero-height"],
    )
    def test_unusable_output_raises(self, raw):
        with pytest.raises(ProbeError):
            parse_probe_output(raw)


class TestRunFFmpeg:
    @pytest.mark.asyncio
    async def test_progress_reported_from_stdout(self):
        fractions = []
        cmd = python_cmd(
            "print('out_time_us=2500000'); print('out_time_us=5000000'); print('progress=end')"
        )

        result = await run_ffmpeg(cmd, timeout=30, duration_seconds=10.0, progress=fractions.append)

        assert result.success
        assert fractions == [pytest.approx(0.25), pytest.approx(0.5)]

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        cmd = python_cmd("import sys; sys.stderr.write('boom\\n'); sys.exit(3)")

        result = await run_ffmpeg(cmd, timeout=30)

        assert not result.success
        assert result.returncode == 3
        assert "boom" in result.failure_reason

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        result = await run_ffmpeg(python_cmd("import time; time.sleep(30)"), timeout=0.2)

        assert result.timed_out
        assert result.failure_reason == "timeout"

    @pytest.mark.asyncio
    async def test_cancel_event_kills_process(self):
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.2, cancel.set)

        result = await run_ffmpeg(python_cmd("import time; time.sleep(30)"), timeout=30, cancel=cancel)

        assert result.cancelled
        assert result.failure_reason == "cancelled"

    @pytest.mark.asyncio
    async def test_capture_stdout(self):
        result = await run_ffmpeg(python_cmd("print('{\"a\": 1}')"), timeout=30, capture_stdout=True)

        assert json.loads(result.stdout) == {"a": 1}


class TestEncoderBoundary:
    @pytest.mark.asyncio
    async def test_missing_binary_becomes_failed_result(self, tmp_path):
        encoder = FFmpegEncoder(ffmpeg_path=str(tmp_path / "no-ffmpeg"), timeout=5)

        result = await encoder.encode(tmp_path / "source.mp4", SPEC_720, tmp_path)

        assert not result.succeeded
        assert result.reason
        assert not (tmp_path / "720p" / "720p.mp4").exists()

    @pytest.mark.asyncio
    async def test_failed_encoder_exit_becomes_failed_result(self, tmp_path):
        fake_ffmpeg = tmp_path / "ffmpeg"
        fake_ffmpeg.write_text(f"#!{sys.executable}\nimport sys\nsys.exit(1)\n")
        fake_ffmpeg.chmod(0o755)
        encoder = FFmpegEncoder(ffmpeg_path=str(fake_ffmpeg), timeout=5)

        result = await encoder.encode(tmp_path / "source.mp4", SPEC_720, tmp_path)

        assert not result.succeeded
        assert "exited with code 1" in result.reason

    @pytest.mark.asyncio
    async def test_successful_encode_keeps_mp4_next_to_playlist(self, tmp_path):
        encoder = FFmpegEncoder(ffmpeg_path=str(write_fake_ffmpeg(tmp_path)), timeout=10)

        result = await encoder.encode(tmp_path / "source.mp4", SPEC_720, tmp_path)

        assert result.succeeded
        assert result.mp4_locator == str(tmp_path / "720p" / "720p.mp4")
        assert (tmp_path / "720p" / "720p.mp4").read_bytes() == b"mp4"
        assert result.playlist_locator == str(tmp_path / "720p" / "720p.m3u8")
        assert result.segment_locators == (str(tmp_path / "720p" / "720p_000.ts"),)

    @pytest.mark.asyncio
    async def test_timeout_covers_encode_and_segment_together(self, tmp_path):
        fake_ffmpeg = write_fake_ffmpeg(tmp_path, encode_seconds=0.8, segment_seconds=0.8)
        encoder = FFmpegEncoder(ffmpeg_path=str(fake_ffmpeg), timeout=1.2)

        result = await encoder.encode(tmp_path / "source.mp4", SPEC_720, tmp_path)

        assert not result.succeeded
        assert result.reason == "timeout"
        assert not (tmp_path / "720p" / "720p.mp4").exists()

    @pytest.mark.asyncio
    async def test_thumbnailer_missing_binary_raises(self, tmp_path):
        thumbnailer = FFmpegThumbnailer(ffmpeg_path=str(tmp_path / "no-ffmpeg"), timeout=5)

        with pytest.raises(ThumbnailError):
            await thumbnailer.extract(tmp_path / "source.mp4", tmp_path, 10.0)

    @pytest.mark.asyncio
    async def test_prober_missing_binary_raises(self, tmp_path):
        prober = FFprobeProber(ffprobe_path=str(tmp_path / "no-ffprobe"), timeout=5)

        with pytest.raises(ProbeError):
            await prober.probe(tmp_path / "source.mp4")
