"""Transcoding module for uploaded product videos.

FFmpeg-based compression to the mobile delivery profile.
"""

from reelshop.modules.transcoding.ffmpeg import (
    FFmpegTranscoder,
    ProbeError,
    SourceMissingError,
    TranscodeError,
    TranscoderUnavailableError,
    compute_target_dimensions,
    compute_target_fps,
    parse_frame_rate,
    probe_from_ffprobe,
)
from reelshop.modules.transcoding.schemas import (
    CompressionParams,
    CompressionResult,
    VideoProbe,
)

__all__ = [
    "FFmpegTranscoder",
    "TranscodeError",
    "ProbeError",
    "SourceMissingError",
    "TranscoderUnavailableError",
    "compute_target_dimensions",
    "compute_target_fps",
    "parse_frame_rate",
    "probe_from_ffprobe",
    "CompressionParams",
    "CompressionResult",
    "VideoProbe",
]
