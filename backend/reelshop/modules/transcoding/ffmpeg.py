"""FFmpeg transcoding for uploaded product videos.

Re-encodes a source to H.264/AAC MP4 capped at the delivery resolution and
frame rate, using a constant-quality target with a bitrate ceiling and the
moov atom at the head of the file for progressive playback. Also grabs
JPEG poster frames for videos uploaded without a thumbnail.
"""

import asyncio
import json
import logging
import math
import time
from fractions import Fraction
from pathlib import Path
from typing import Optional, Union

from reelshop.core.logging import log_info, log_warning
from reelshop.modules.transcoding.schemas import (
    CompressionParams,
    CompressionResult,
    VideoProbe,
)

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2000
PROBE_TIMEOUT_SECONDS = 60.0
VERSION_CHECK_TIMEOUT_SECONDS = 10.0
THUMBNAIL_TIMEOUT_SECONDS = 60.0
THUMBNAIL_AT_SECONDS = 1.0
THUMBNAIL_WIDTH = 720
THUMBNAIL_JPEG_QUALITY = 3


class TranscodeError(Exception):
    """The transcoder could not process the source. Terminal for the job."""


class ProbeError(TranscodeError):
    """ffprobe failed or the source has no usable video stream."""


class SourceMissingError(TranscodeError):
    """The source file does not exist or is empty."""


class TranscoderUnavailableError(TranscodeError):
    """The ffmpeg/ffprobe binaries could not be executed."""


def parse_frame_rate(value: Union[str, int, float, None]) -> Optional[float]:
    """Parse an ffprobe frame rate such as ``"30000/1001"`` or ``"25"``.

    Returns None for anything that is not a positive finite rational.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        rate = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        numerator, sep, denominator = text.partition("/")
        try:
            num = float(numerator)
            den = float(denominator) if sep else 1.0
        except ValueError:
            return None
        if den == 0:
            return None
        rate = num / den

    if not math.isfinite(rate) or rate <= 0:
        return None
    return rate


# Smallest frame yuv420p can carry
MIN_EDGE = 2


def _even_floor(value: Fraction) -> int:
    return max(MIN_EDGE, math.floor(value) // 2 * 2)


def compute_target_dimensions(
    width: int,
    height: int,
    max_long_edge: int,
    max_short_edge: int,
) -> tuple[int, int]:
    """Fit ``width`` x ``height`` inside the long/short edge caps.

    Aspect ratio is preserved, the source is never upscaled and both
    dimensions are rounded down to even numbers for yuv420p. Edges shorter
    than MIN_EDGE cannot be encoded and are rejected.
    """
    if width < MIN_EDGE or height < MIN_EDGE:
        raise ValueError(f"Invalid source dimensions {width}x{height}")

    long_edge = max(width, height)
    short_edge = min(width, height)
    scale = min(
        Fraction(1),
        Fraction(max_long_edge, long_edge),
        Fraction(max_short_edge, short_edge),
    )
    return _even_floor(width * scale), _even_floor(height * scale)


def compute_target_fps(source_fps: Optional[float], max_fps: int) -> float:
    if source_fps is None:
        return float(max_fps)
    return min(source_fps, float(max_fps))


def _format_decimal(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _rotation(stream: dict) -> int:
    rotate = stream.get("tags", {}).get("rotate")
    if rotate is None:
        for side_data in stream.get("side_data_list", []) or []:
            if "rotation" in side_data:
                rotate = side_data["rotation"]
                break
    try:
        return int(float(rotate or 0)) % 360
    except (TypeError, ValueError):
        return 0


def probe_from_ffprobe(info: dict) -> VideoProbe:
    """Build a VideoProbe from ffprobe's JSON output.

    Width and height are reported in display orientation, so phone footage
    tagged with a 90 degree rotation comes back as portrait.
    """
    streams = info.get("streams") or []
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video_stream is None:
        raise ProbeError("No video stream found")

    try:
        width = int(video_stream.get("width") or 0)
        height = int(video_stream.get("height") or 0)
    except (TypeError, ValueError) as e:
        raise ProbeError(f"Invalid video dimensions: {e}") from e
    if width < MIN_EDGE or height < MIN_EDGE:
        raise ProbeError(f"Invalid video dimensions {width}x{height}")

    if _rotation(video_stream) in (90, 270):
        width, height = height, width

    fps = parse_frame_rate(video_stream.get("r_frame_rate")) or parse_frame_rate(
        video_stream.get("avg_frame_rate")
    )

    fmt = info.get("format") or {}
    try:
        duration = float(fmt.get("duration") or video_stream.get("duration") or 0)
    except (TypeError, ValueError):
        duration = 0.0
    try:
        size_bytes = int(fmt.get("size") or 0)
    except (TypeError, ValueError):
        size_bytes = 0

    return VideoProbe(
        width=width,
        height=height,
        fps=fps,
        duration=duration,
        video_codec=video_stream.get("codec_name"),
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
        size_bytes=size_bytes,
    )


def _remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log_warning(logger, "Could not remove partial transcode output", path=str(path), error=str(e))


class FFmpegTranscoder:
    """Runs ffprobe/ffmpeg as asyncio subprocesses.

    Callers own both paths; the source is never deleted here.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        timeout_seconds: Optional[float] = None,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout_seconds = timeout_seconds

    async def _run(
        self,
        cmd: list[str],
        timeout: Optional[float] = None,
    ) -> tuple[int, str, str]:
        """Run a command and return (returncode, stdout, stderr)."""
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise
        return (
            process.returncode,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )

    async def is_available(self) -> bool:
        """Check that ffmpeg can be executed. Never raises."""
        try:
            returncode, _, _ = await self._run(
                [self.ffmpeg_path, "-version"],
                timeout=VERSION_CHECK_TIMEOUT_SECONDS,
            )
        except (OSError, asyncio.TimeoutError):
            return False
        return returncode == 0

    async def probe(self, path: Union[str, Path]) -> VideoProbe:
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]
        try:
            returncode, stdout, stderr = await self._run(cmd, timeout=PROBE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as e:
            raise ProbeError(f"ffprobe timed out on {path}") from e
        except OSError as e:
            raise TranscoderUnavailableError(f"ffprobe could not be executed: {e}") from e

        if returncode != 0:
            raise ProbeError(f"ffprobe exited with {returncode}: {stderr[-STDERR_TAIL_CHARS:]}")

        try:
            info = json.loads(stdout or "{}")
        except json.JSONDecodeError as e:
            raise ProbeError(f"ffprobe returned invalid JSON: {e}") from e

        return probe_from_ffprobe(info)

    def build_command(
        self,
        source_path: Union[str, Path],
        target_path: Union[str, Path],
        probe: VideoProbe,
        params: CompressionParams,
    ) -> list[str]:
        """Build the ffmpeg argument list for one source."""
        width, height = compute_target_dimensions(
            probe.width, probe.height, params.max_long_edge, params.max_short_edge
        )
        fps = compute_target_fps(probe.fps, params.max_fps)

        cmd = [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-i", str(source_path),
            # Video: constant quality with a ceiling on peaks
            "-c:v", "libx264",
            "-preset", params.preset,
            "-crf", str(params.crf),
            "-profile:v", "high",
            "-level:v", "4.1",
            "-pix_fmt", "yuv420p",
            "-maxrate", params.max_bitrate,
            "-bufsize", params.buffer_size,
            "-vf", f"scale={width}:{height}",
            "-r", _format_decimal(fps),
            "-g", str(max(1, round(fps * 2))),
            "-keyint_min", str(max(1, round(fps))),
            "-sc_threshold", "0",
        ]

        if probe.has_audio:
            cmd.extend([
                "-c:a", "aac",
                "-b:a", params.audio_bitrate,
                "-ar", str(params.audio_sample_rate),
            ])
        else:
            cmd.append("-an")

        cmd.extend([
            "-movflags", "+faststart",
            "-f", "mp4",
            str(target_path),
        ])
        return cmd

    async def transcode(
        self,
        source_path: Union[str, Path],
        target_path: Union[str, Path],
        params: Optional[CompressionParams] = None,
    ) -> CompressionResult:
        """Transcode ``source_path`` into ``target_path``.

        Degenerate output (missing or empty file) and output that does not
        shrink enough fall back to the original instead of failing. Process
        and probe failures raise TranscodeError with the target removed.
        """
        params = params or CompressionParams()
        source = Path(source_path)
        target = Path(target_path)
        if source.resolve() == target.resolve():
            raise ValueError("target_path must differ from source_path")

        started = time.monotonic()
        try:
            original_size = source.stat().st_size
        except OSError as e:
            raise SourceMissingError(f"Source file not found: {source}") from e
        if original_size == 0:
            raise SourceMissingError(f"Source file is empty: {source}")

        if original_size < params.min_input_bytes:
            log_info(
                logger,
                "Source below compression threshold, keeping original",
                source=str(source),
                size_bytes=original_size,
            )
            return CompressionResult.original(str(source), original_size, time.monotonic() - started)

        probe = await self.probe(source)
        width, height = compute_target_dimensions(
            probe.width, probe.height, params.max_long_edge, params.max_short_edge
        )
        fps = compute_target_fps(probe.fps, params.max_fps)
        cmd = self.build_command(source, target, probe, params)

        log_info(
            logger,
            "Transcoding video",
            source=source.name,
            source_resolution=f"{probe.width}x{probe.height}",
            source_fps=probe.fps,
            target_resolution=f"{width}x{height}",
            target_fps=fps,
            duration_seconds=probe.duration,
            size_bytes=original_size,
        )

        try:
            returncode, _, stderr = await self._run(cmd, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            _remove_partial(target)
            raise TranscodeError(f"ffmpeg timed out after {self.timeout_seconds}s") from e
        except OSError as e:
            _remove_partial(target)
            raise TranscoderUnavailableError(f"ffmpeg could not be executed: {e}") from e
        except asyncio.CancelledError:
            _remove_partial(target)
            raise

        if returncode != 0:
            _remove_partial(target)
            raise TranscodeError(f"ffmpeg exited with {returncode}: {stderr[-STDERR_TAIL_CHARS:]}")

        elapsed = time.monotonic() - started
        compressed_size = target.stat().st_size if target.exists() else 0

        if compressed_size == 0:
            _remove_partial(target)
            log_warning(
                logger,
                "Transcoder produced no output, keeping original",
                source=source.name,
            )
            return CompressionResult.original(str(source), original_size, elapsed)

        reduction = (original_size - compressed_size) / original_size
        if reduction < params.min_size_reduction:
            _remove_partial(target)
            log_info(
                logger,
                "Compression not beneficial, keeping original",
                source=source.name,
                reduction=round(reduction, 3),
            )
            return CompressionResult.original(str(source), original_size, elapsed)

        result = CompressionResult(
            final_local_path=str(target),
            original_size_bytes=original_size,
            compressed_size_bytes=compressed_size,
            used_original=False,
            elapsed_seconds=elapsed,
            width=width,
            height=height,
            fps=fps,
        )
        log_info(
            logger,
            "Transcode finished",
            source=source.name,
            original_size=original_size,
            compressed_size=compressed_size,
            savings_percent=result.savings_percent,
            elapsed_seconds=round(elapsed, 1),
        )
        return result

    def build_thumbnail_command(
        self,
        video_path: Union[str, Path],
        target_path: Union[str, Path],
        at_seconds: float = THUMBNAIL_AT_SECONDS,
        width: int = THUMBNAIL_WIDTH,
    ) -> list[str]:
        """Build the ffmpeg argument list grabbing one JPEG frame."""
        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            # Input seek, keyframe accurate and cheap on long sources
            "-ss", _format_decimal(max(0.0, at_seconds)),
            "-i", str(video_path),
            "-frames:v", "1",
            "-vf", f"scale={width}:-2",
            "-q:v", str(THUMBNAIL_JPEG_QUALITY),
            str(target_path),
        ]

    async def generate_thumbnail(
        self,
        video_path: Union[str, Path],
        target_path: Union[str, Path],
        at_seconds: float = THUMBNAIL_AT_SECONDS,
        width: int = THUMBNAIL_WIDTH,
    ) -> str:
        """Write a single frame of ``video_path`` to ``target_path`` as JPEG.

        Clips shorter than ``at_seconds`` yield no frame at that offset, so
        the first frame is tried before giving up.

        Returns:
            The thumbnail path

        Raises:
            SourceMissingError: The video does not exist
            TranscodeError: No frame could be extracted
        """
        video = Path(video_path)
        target = Path(target_path)
        if not video.is_file():
            raise SourceMissingError(f"Video not found: {video}")

        offsets = [at_seconds, 0.0] if at_seconds > 0 else [0.0]
        stderr = ""
        for offset in offsets:
            cmd = self.build_thumbnail_command(video, target, offset, width)
            try:
                returncode, _, stderr = await self._run(cmd, timeout=THUMBNAIL_TIMEOUT_SECONDS)
            except asyncio.TimeoutError as e:
                _remove_partial(target)
                raise TranscodeError("ffmpeg timed out extracting thumbnail") from e
            except OSError as e:
                raise TranscoderUnavailableError(f"ffmpeg could not be executed: {e}") from e
            except asyncio.CancelledError:
                _remove_partial(target)
                raise

            if returncode == 0 and target.exists() and target.stat().st_size > 0:
                log_info(
                    logger,
                    "Thumbnail generated",
                    video=video.name,
                    thumbnail=target.name,
                    offset_seconds=offset,
                )
                return str(target)
            _remove_partial(target)

        raise TranscodeError(f"No thumbnail frame extracted: {stderr[-STDERR_TAIL_CHARS:]}")
