"""Rendition ladder planning.

Derives the set of HLS renditions to produce for a source from a fixed
ladder, never upscaling past the source height.
"""

from vidpipe.modules.processing.models import RenditionSpec, SourceMetadata


# (name, height, video bps, audio bps), ascending by height
STANDARD_LADDER: tuple[tuple[str, int, int, int], ...] = (
    ("144p", 144, 95_000, 48_000),
    ("240p", 240, 150_000, 64_000),
    ("360p", 360, 276_000, 64_000),
    ("480p", 480, 750_000, 96_000),
    ("720p", 720, 2_500_000, 128_000),
    ("1080p", 1080, 4_500_000, 128_000),
    ("1440p", 1440, 9_000_000, 192_000),
    ("2160p", 2160, 20_000_000, 192_000),
)

LOWEST_TIER = STANDARD_LADDER[0]


def _round_down_even(value: int) -> int:
    if value < 2:
        return value
    return value - (value % 2)


def target_width_for(source: SourceMetadata, target_height: int) -> int:
    """Width preserving the source aspect ratio, rounded to an even number.

    Falls back to 16:9 when the source width is unknown.
    """
    if source.width > 0 and source.height > 0:
        width = round(source.width * target_height / source.height)
    else:
        width = round(target_height * 16 / 9)
    return max(2, _round_down_even(int(width)))


def plan_renditions(source: SourceMetadata) -> list[RenditionSpec]:
    """Plan the renditions to encode for a source.

    Args:
        source: Probed source metadata with a positive height

    Returns:
        Every ladder tier whose height does not exceed the source height,
        ascending; a single tier at the source height when the source is
        smaller than the lowest tier.
    """
    plan = [
        RenditionSpec(
            name=name,
            target_height=height,
            video_bitrate=video_bps,
            audio_bitrate=audio_bps,
            target_width=target_width_for(source, height),
        )
        for name, height, video_bps, audio_bps in STANDARD_LADDER
        if height <= source.height
    ]
    if plan:
        return plan

    _, _, video_bps, audio_bps = LOWEST_TIER
    height = _round_down_even(source.height)
    return [
        RenditionSpec(
            name=f"{height}p",
            target_height=height,
            video_bitrate=video_bps,
            audio_bitrate=audio_bps,
            target_width=target_width_for(source, height),
        )
    ]
