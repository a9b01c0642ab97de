"""Property-based tests for compression target computation.

Covers resolution capping, frame rate parsing and the CompressionResult
original-file invariant.
"""

import math

import pytest
from hypothesis import assume, given, settings, strategies as st

from reelshop.modules.transcoding.ffmpeg import (
    ProbeError,
    compute_target_dimensions,
    compute_target_fps,
    parse_frame_rate,
    probe_from_ffprobe,
)
from reelshop.modules.transcoding.schemas import CompressionParams, CompressionResult


dimension_strategy = st.integers(min_value=2, max_value=8192)
fps_strategy = st.floats(min_value=1.0, max_value=240.0, allow_nan=False, allow_infinity=False)
size_strategy = st.integers(min_value=1, max_value=10 * 1024 ** 3)


class TestTargetDimensions:
    """Target resolution never upscales and is codec friendly."""

    @given(width=dimension_strategy, height=dimension_strategy)
    @settings(max_examples=300)
    def test_never_upscales(self, width: int, height: int) -> None:
        target_w, target_h = compute_target_dimensions(width, height, 1920, 1080)

        assert max(target_w, target_h) <= max(width, height, 2)
        assert target_w <= max(width, 2)
        assert target_h <= max(height, 2)

    @given(width=dimension_strategy, height=dimension_strategy)
    @settings(max_examples=300)
    def test_dimensions_are_even(self, width: int, height: int) -> None:
        target_w, target_h = compute_target_dimensions(width, height, 1920, 1080)

        assert target_w % 2 == 0
        assert target_h % 2 == 0
        assert target_w >= 2 and target_h >= 2

    @given(width=dimension_strategy, height=dimension_strategy)
    @settings(max_examples=300)
    def test_edges_are_capped(self, width: int, height: int) -> None:
        target_w, target_h = compute_target_dimensions(width, height, 1920, 1080)

        assert max(target_w, target_h) <= 1920
        assert min(target_w, target_h) <= 1080

    @given(width=st.integers(min_value=200, max_value=8192), height=st.integers(min_value=200, max_value=8192))
    @settings(max_examples=200)
    def test_aspect_ratio_is_preserved(self, width: int, height: int) -> None:
        assume(max(width, height) <= 4 * min(width, height))
        target_w, target_h = compute_target_dimensions(width, height, 1920, 1080)

        # Even-rounding shifts each edge by at most 2px
        assert math.isclose(target_w / target_h, width / height, rel_tol=0.02)

    def test_portrait_4k_photo_sized_source(self) -> None:
        assert compute_target_dimensions(3000, 4000, 1920, 1080) == (1080, 1440)

    def test_portrait_9_16(self) -> None:
        assert compute_target_dimensions(2160, 3840, 1920, 1080) == (1080, 1920)

    def test_landscape_4k(self) -> None:
        assert compute_target_dimensions(3840, 2160, 1920, 1080) == (1920, 1080)

    def test_small_source_untouched_except_rounding(self) -> None:
        assert compute_target_dimensions(721, 1281, 1920, 1080) == (720, 1280)

    def test_invalid_dimensions_rejected(self) -> None:
        with pytest.raises(ValueError):
            compute_target_dimensions(0, 1080, 1920, 1080)

    @pytest.mark.parametrize("width,height", [(1, 1080), (1920, 1), (1, 1)])
    def test_one_pixel_edge_rejected(self, width: int, height: int) -> None:
        with pytest.raises(ValueError):
            compute_target_dimensions(width, height, 1920, 1080)

    @given(width=dimension_strategy, height=dimension_strategy)
    @settings(max_examples=300)
    def test_each_edge_never_grows(self, width: int, height: int) -> None:
        target_w, target_h = compute_target_dimensions(width, height, 1920, 1080)

        assert target_w <= width
        assert target_h <= height


class TestFrameRate:

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("30/1", 30.0),
            ("60", 60.0),
            ("25/1", 25.0),
            (24, 24.0),
        ],
    )
    def test_parses_rationals_and_numbers(self, value, expected) -> None:
        assert parse_frame_rate(value) == expected

    def test_parses_ntsc_rate(self) -> None:
        assert parse_frame_rate("30000/1001") == pytest.approx(29.97, abs=0.01)

    @pytest.mark.parametrize("value", [None, "", "0/0", "30/0", "abc", "0/1", "-30/1", "__import__('os')"])
    def test_rejects_invalid_values(self, value) -> None:
        assert parse_frame_rate(value) is None

    @given(source_fps=fps_strategy, max_fps=st.integers(min_value=1, max_value=120))
    @settings(max_examples=200)
    def test_target_fps_is_capped(self, source_fps: float, max_fps: int) -> None:
        target = compute_target_fps(source_fps, max_fps)

        assert target <= max_fps
        assert target <= source_fps

    def test_unknown_fps_uses_cap(self) -> None:
        assert compute_target_fps(None, 30) == 30.0


class TestCompressionResultInvariant:
    """When the original is used, both sizes are the source size."""

    @given(size=size_strategy, elapsed=st.floats(min_value=0, max_value=3600, allow_nan=False))
    @settings(max_examples=100)
    def test_original_factory_keeps_sizes_equal(self, size: int, elapsed: float) -> None:
        result = CompressionResult.original("/tmp/source.mov", size, elapsed)

        assert result.used_original is True
        assert result.compressed_size_bytes == result.original_size_bytes == size
        assert result.final_local_path == "/tmp/source.mov"
        assert result.savings_percent == 0.0

    @given(original=size_strategy, compressed=size_strategy)
    @settings(max_examples=100)
    def test_used_original_with_different_sizes_rejected(self, original: int, compressed: int) -> None:
        assume(original != compressed)
        with pytest.raises(ValueError):
            CompressionResult(
                final_local_path="/tmp/source.mov",
                original_size_bytes=original,
                compressed_size_bytes=compressed,
                used_original=True,
                elapsed_seconds=0.0,
            )

    def test_savings_percent_rounded_to_one_decimal(self) -> None:
        result = CompressionResult(
            final_local_path="/tmp/out.mp4",
            original_size_bytes=50 * 1024 * 1024,
            compressed_size_bytes=12 * 1024 * 1024,
            used_original=False,
            elapsed_seconds=12.0,
        )
        assert result.savings_percent == 76.0


class TestProbeParsing:

    def test_reads_dimensions_fps_and_audio(self) -> None:
        probe = probe_from_ffprobe({
            "streams": [
                {"codec_type": "video", "codec_name": "hevc", "width": 3840, "height": 2160, "r_frame_rate": "60/1"},
                {"codec_type": "audio", "codec_name": "aac"},
            ],
            "format": {"duration": "14.5", "size": "52428800"},
        })

        assert (probe.width, probe.height) == (3840, 2160)
        assert probe.fps == 60.0
        assert probe.has_audio is True
        assert probe.duration == 14.5
        assert probe.size_bytes == 52428800
        assert probe.video_codec == "hevc"

    def test_rotated_phone_footage_reported_as_portrait(self) -> None:
        probe = probe_from_ffprobe({
            "streams": [{
                "codec_type": "video",
                "width": 1920,
                "height": 1080,
                "r_frame_rate": "30/1",
                "side_data_list": [{"rotation": -90}],
            }],
            "format": {},
        })

        assert (probe.width, probe.height) == (1080, 1920)
        assert probe.has_audio is False

    def test_falls_back_to_average_frame_rate(self) -> None:
        probe = probe_from_ffprobe({
            "streams": [{"codec_type": "video", "width": 640, "height": 360, "r_frame_rate": "0/0", "avg_frame_rate": "25/1"}],
        })
        assert probe.fps == 25.0

    def test_no_video_stream_raises(self) -> None:
        with pytest.raises(ProbeError):
            probe_from_ffprobe({"streams": [{"codec_type": "audio"}]})

    def test_one_pixel_stream_raises(self) -> None:
        with pytest.raises(ProbeError):
            probe_from_ffprobe({"streams": [{"codec_type": "video", "width": 1, "height": 720}]})

    def test_params_defaults_match_delivery_profile(self) -> None:
        params = CompressionParams()
        assert (params.max_long_edge, params.max_short_edge, params.max_fps) == (1920, 1080, 30)
        assert params.crf == 25
        assert params.max_bitrate == "2000k"
