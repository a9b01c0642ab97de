"""Value types for video compression."""

from dataclasses import dataclass
from typing import Optional

from reelshop.core.config import Settings, settings as default_settings


@dataclass(frozen=True)
class CompressionParams:
    """Encoder settings for the mobile delivery profile.

    Portrait 9:16 sources end up at most 1080x1920, landscape at 1920x1080.
    """
    max_long_edge: int = 1920
    max_short_edge: int = 1080
    max_fps: int = 30
    crf: int = 25
    preset: str = "faster"
    max_bitrate: str = "2000k"
    buffer_size: str = "2400k"
    audio_bitrate: str = "96k"
    audio_sample_rate: int = 44100
    min_input_bytes: int = 10 * 1024
    min_size_reduction: float = -1.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CompressionParams":
        s = settings or default_settings
        return cls(
            max_long_edge=s.COMPRESSION_MAX_LONG_EDGE,
            max_short_edge=s.COMPRESSION_MAX_SHORT_EDGE,
            max_fps=s.COMPRESSION_MAX_FPS,
            crf=s.COMPRESSION_CRF,
            preset=s.COMPRESSION_PRESET,
            max_bitrate=s.COMPRESSION_MAX_BITRATE,
            buffer_size=s.COMPRESSION_BUFFER_SIZE,
            audio_bitrate=s.COMPRESSION_AUDIO_BITRATE,
            audio_sample_rate=s.COMPRESSION_AUDIO_SAMPLE_RATE,
            min_input_bytes=s.COMPRESSION_MIN_INPUT_BYTES,
            min_size_reduction=s.COMPRESSION_MIN_SIZE_REDUCTION,
        )


@dataclass(frozen=True)
class VideoProbe:
    """Stream information read from ffprobe."""
    width: int
    height: int
    fps: Optional[float]
    duration: float
    video_codec: Optional[str] = None
    has_audio: bool = False
    size_bytes: int = 0


@dataclass(frozen=True)
class CompressionResult:
    """Outcome of one transcode attempt.

    ``used_original`` means the source file is the artifact to store, in which
    case both sizes are the source size.
    """
    final_local_path: str
    original_size_bytes: int
    compressed_size_bytes: int
    used_original: bool
    elapsed_seconds: float
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None

    def __post_init__(self) -> None:
        if self.used_original and self.compressed_size_bytes != self.original_size_bytes:
            raise ValueError(
                "compressed_size_bytes must equal original_size_bytes when the original is used"
            )

    @classmethod
    def original(
        cls,
        source_path: str,
        size_bytes: int,
        elapsed_seconds: float = 0.0,
    ) -> "CompressionResult":
        return cls(
            final_local_path=source_path,
            original_size_bytes=size_bytes,
            compressed_size_bytes=size_bytes,
            used_original=True,
            elapsed_seconds=elapsed_seconds,
        )

    @property
    def savings_percent(self) -> Optional[float]:
        if not self.original_size_bytes:
            return None
        return round((1 - self.compressed_size_bytes / self.original_size_bytes) * 100, 1)
