"""Property-based tests for rendition ladder planning."""

from hypothesis import given, settings, strategies as st

from vidpipe.modules.processing.ladder import STANDARD_LADDER, plan_renditions
from vidpipe.modules.processing.models import SourceMetadata


LADDER_HEIGHTS = [height for _, height, _, _ in STANDARD_LADDER]

height_strategy = st.integers(min_value=1, max_value=8640)
width_strategy = st.integers(min_value=0, max_value=15360)


def source(height: int, width: int = 1920, duration: float = 60.0) -> SourceMetadata:
    return SourceMetadata(duration_seconds=duration, width=width, height=height)


class TestPlanRenditions:
    """Property tests for plan_renditions."""

    @given(height=height_strategy, width=width_strategy)
    @settings(max_examples=100)
    def test_never_upscales(self, height: int, width: int) -> None:
        """No planned rendition is taller than the source."""
        plan = plan_renditions(source(height, width))

        assert plan, "plan must never be empty"
        for spec in plan:
            assert spec.target_height <= height

    @given(height=height_strategy, width=width_strategy)
    @settings(max_examples=100)
    def test_plan_is_ascending_and_unique(self, height: int, width: int) -> None:
        plan = plan_renditions(source(height, width))

        heights = [spec.target_height for spec in plan]
        assert heights == sorted(heights)
        assert len({spec.name for spec in plan}) == len(plan)

    @given(height=st.integers(min_value=144, max_value=8640))
    @settings(max_examples=100)
    def test_plan_is_exactly_the_tiers_at_or_below_source(self, height: int) -> None:
        plan = plan_renditions(source(height))

        expected = [h for h in LADDER_HEIGHTS if h <= height]
        assert [spec.target_height for spec in plan] == expected

    @given(height=st.integers(min_value=1, max_value=143))
    @settings(max_examples=100)
    def test_small_source_gets_single_fallback_tier(self, height: int) -> None:
        plan = plan_renditions(source(height, width=height * 2))

        assert len(plan) == 1
        spec = plan[0]
        assert spec.target_height <= height
        assert spec.name == f"{spec.target_height}p"
        assert spec.video_bitrate == 95_000
        assert spec.audio_bitrate == 48_000

    @given(height=height_strategy, width=width_strategy)
    @settings(max_examples=100)
    def test_planning_is_deterministic(self, height: int, width: int) -> None:
        assert plan_renditions(source(height, width)) == plan_renditions(source(height, width))

    @given(height=st.integers(min_value=2, max_value=8640), width=width_strategy)
    @settings(max_examples=100)
    def test_target_widths_are_even(self, height: int, width: int) -> None:
        for spec in plan_renditions(source(height, width)):
            assert spec.target_width % 2 == 0
            assert spec.target_width >= 2


class TestStandardLadder:
    def test_2160p_source_gets_full_ladder(self) -> None:
        plan = plan_renditions(source(2160, 3840))

        assert [spec.name for spec in plan] == [
            "144p", "240p", "360p", "480p", "720p", "1080p", "1440p", "2160p",
        ]

    def test_source_between_tiers(self) -> None:
        plan = plan_renditions(source(600, 800))

        assert [spec.name for spec in plan] == ["144p", "240p", "360p", "480p"]

    def test_200_pixel_source_gets_only_144p(self) -> None:
        plan = plan_renditions(source(200, 356))

        assert [spec.name for spec in plan] == ["144p"]

    def test_1080p_source_gets_six_tiers(self) -> None:
        plan = plan_renditions(source(1080, 1920))

        assert len(plan) == 6
        assert plan[-1].name == "1080p"
        assert plan[-1].target_width == 1920
        assert plan[-1].bandwidth == 4_500_000 + 128_000

    def test_unknown_width_falls_back_to_16_by_9(self) -> None:
        plan = plan_renditions(source(720, width=0))

        assert plan[-1].resolution == "1280x720"

    def test_portrait_source_keeps_aspect_ratio(self) -> None:
        plan = plan_renditions(source(1920, width=1080))

        by_name = {spec.name: spec for spec in plan}
        assert by_name["720p"].target_width == 404
        assert "1440p" in by_name and "2160p" not in by_name

    def test_odd_height_fallback_rounds_down_to_even(self) -> None:
        plan = plan_renditions(source(101, width=180))

        assert plan[0].name == "100p"
        assert plan[0].target_height == 100

    def test_one_pixel_source(self) -> None:
        plan = plan_renditions(source(1, width=2))

        assert plan[0].name == "1p"
        assert plan[0].target_height == 1
