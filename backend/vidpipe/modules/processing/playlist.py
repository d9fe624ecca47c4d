"""HLS master playlist assembly."""

from vidpipe.modules.processing.models import RenditionSpec


def variant_playlist_path(spec: RenditionSpec) -> str:
    """Path of a rendition's playlist relative to the master playlist."""
    return f"{spec.name}/{spec.name}.m3u8"


def assemble_master_playlist(entries: list[RenditionSpec]) -> str:
    """Build the master playlist text referencing each rendition.

    Entries are ordered by ascending bandwidth, ties broken by height.

    Args:
        entries: Renditions to advertise, at least one

    Returns:
        Master playlist text

    Raises:
        ValueError: If entries is empty
    """
    if not entries:
        raise ValueError("master playlist needs at least one rendition")

    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for spec in sorted(entries, key=lambda s: (s.bandwidth, s.target_height)):
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={spec.bandwidth},RESOLUTION={spec.resolution}"
        )
        lines.append(variant_playlist_path(spec))
    return "\n".join(lines) + "\n"
