"""Tests for FFmpegTranscoder with the subprocess layer replaced.

The fake writes (or does not write) the output file the way ffmpeg would,
so the degenerate-output and failure policies can be exercised without the
binaries installed.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import pytest

from reelshop.modules.transcoding.ffmpeg import (
    FFmpegTranscoder,
    ProbeError,
    SourceMissingError,
    TranscodeError,
    TranscoderUnavailableError,
)
from reelshop.modules.transcoding.schemas import CompressionParams, VideoProbe


def ffprobe_json(width: int = 3000, height: int = 4000, fps: str = "60/1", audio: bool = True) -> str:
    streams = [{"codec_type": "video", "codec_name": "h264", "width": width, "height": height, "r_frame_rate": fps}]
    if audio:
        streams.append({"codec_type": "audio", "codec_name": "aac"})
    return json.dumps({"streams": streams, "format": {"duration": "15.0"}})


class FakeTranscoder(FFmpegTranscoder):
    """FFmpegTranscoder whose processes are simulated."""

    def __init__(
        self,
        output_bytes: Optional[int] = 1024,
        ffmpeg_returncode: int = 0,
        probe_output: Optional[str] = None,
        probe_returncode: int = 0,
        missing_binary: bool = False,
        hang: bool = False,
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self.output_bytes = output_bytes
        self.ffmpeg_returncode = ffmpeg_returncode
        self.probe_output = probe_output if probe_output is not None else ffprobe_json()
        self.probe_returncode = probe_returncode
        self.missing_binary = missing_binary
        self.hang = hang
        self.commands: list[list[str]] = []

    async def _run(self, cmd, timeout=None):
        self.commands.append(cmd)
        if self.missing_binary:
            raise FileNotFoundError(cmd[0])

        if cmd[0] == self.ffprobe_path:
            return self.probe_returncode, self.probe_output, ""
        if cmd[1] == "-version":
            return 0, "ffmpeg version 6.1", ""

        if self.hang:
            raise asyncio.TimeoutError()

        target = Path(cmd[-1])
        if self.output_bytes is not None:
            target.write_bytes(b"\0" * self.output_bytes)
        if self.ffmpeg_returncode != 0:
            return self.ffmpeg_returncode, "", "Invalid data found when processing input"
        return 0, "", ""

    @property
    def ffmpeg_runs(self) -> list[list[str]]:
        return [c for c in self.commands if c[0] == self.ffmpeg_path and c[1] != "-version"]


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "upload.mov"
    path.write_bytes(b"\1" * 200_000)
    return path


@pytest.fixture
def target(tmp_path: Path) -> Path:
    return tmp_path / "upload_opt.mp4"


class TestTranscode:

    @pytest.mark.asyncio
    async def test_successful_transcode_reports_sizes(self, source: Path, target: Path) -> None:
        transcoder = FakeTranscoder(output_bytes=50_000)

        result = await transcoder.transcode(source, target)

        assert result.used_original is False
        assert result.final_local_path == str(target)
        assert result.original_size_bytes == 200_000
        assert result.compressed_size_bytes == 50_000
        assert (result.width, result.height) == (1080, 1440)
        assert result.fps == 30.0
        assert source.exists()

    @pytest.mark.asyncio
    async def test_small_source_skips_ffmpeg(self, tmp_path: Path, target: Path) -> None:
        small = tmp_path / "tiny.mp4"
        small.write_bytes(b"\1" * 5000)
        transcoder = FakeTranscoder()

        result = await transcoder.transcode(small, target)

        assert result.used_original is True
        assert result.final_local_path == str(small)
        assert result.compressed_size_bytes == result.original_size_bytes == 5000
        assert transcoder.commands == []

    @pytest.mark.asyncio
    async def test_empty_output_falls_back_to_original(self, source: Path, target: Path) -> None:
        transcoder = FakeTranscoder(output_bytes=0)

        result = await transcoder.transcode(source, target)

        assert result.used_original is True
        assert result.final_local_path == str(source)
        assert result.compressed_size_bytes == result.original_size_bytes
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_missing_output_falls_back_to_original(self, source: Path, target: Path) -> None:
        transcoder = FakeTranscoder(output_bytes=None)

        result = await transcoder.transcode(source, target)

        assert result.used_original is True
        assert result.compressed_size_bytes == 200_000

    @pytest.mark.asyncio
    async def test_output_not_smaller_enough_discarded(self, source: Path, target: Path) -> None:
        transcoder = FakeTranscoder(output_bytes=190_000)
        params = CompressionParams(min_size_reduction=0.1)

        result = await transcoder.transcode(source, target, params)

        assert result.used_original is True
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_larger_output_kept_by_default(self, source: Path, target: Path) -> None:
        transcoder = FakeTranscoder(output_bytes=210_000)

        result = await transcoder.transcode(source, target)

        assert result.used_original is False
        assert result.compressed_size_bytes == 210_000

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_and_removes_partial_output(self, source: Path, target: Path) -> None:
        transcoder = FakeTranscoder(output_bytes=4096, ffmpeg_returncode=1)

        with pytest.raises(TranscodeError) as exc_info:
            await transcoder.transcode(source, target)

        assert "Invalid data" in str(exc_info.value)
        assert not target.exists()
        assert source.exists()

    @pytest.mark.asyncio
    async def test_timeout_raises_transcode_error(self, source: Path, target: Path) -> None:
        transcoder = FakeTranscoder(hang=True, timeout_seconds=5)

        with pytest.raises(TranscodeError):
            await transcoder.transcode(source, target)
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_missing_source_raises(self, tmp_path: Path, target: Path) -> None:
        with pytest.raises(SourceMissingError):
            await FakeTranscoder().transcode(tmp_path / "gone.mov", target)

    @pytest.mark.asyncio
    async def test_empty_source_raises(self, tmp_path: Path, target: Path) -> None:
        empty = tmp_path / "empty.mov"
        empty.touch()
        with pytest.raises(SourceMissingError):
            await FakeTranscoder().transcode(empty, target)

    @pytest.mark.asyncio
    async def test_probe_failure_is_hard_error(self, source: Path, target: Path) -> None:
        transcoder = FakeTranscoder(probe_returncode=1)

        with pytest.raises(ProbeError):
            await transcoder.transcode(source, target)
        assert transcoder.ffmpeg_runs == []

    @pytest.mark.asyncio
    async def test_invalid_probe_json_is_hard_error(self, source: Path, target: Path) -> None:
        with pytest.raises(ProbeError):
            await FakeTranscoder(probe_output="not json").transcode(source, target)

    @pytest.mark.asyncio
    async def test_missing_binary_raises_unavailable(self, source: Path, target: Path) -> None:
        with pytest.raises(TranscoderUnavailableError):
            await FakeTranscoder(missing_binary=True).transcode(source, target)

    @pytest.mark.asyncio
    async def test_same_source_and_target_rejected(self, source: Path) -> None:
        with pytest.raises(ValueError):
            await FakeTranscoder().transcode(source, source)


class TestAvailability:

    @pytest.mark.asyncio
    async def test_available_when_version_runs(self) -> None:
        assert await FakeTranscoder().is_available() is True

    @pytest.mark.asyncio
    async def test_unavailable_when_binary_missing(self) -> None:
        assert await FakeTranscoder(missing_binary=True).is_available() is False

    @pytest.mark.asyncio
    async def test_unavailable_for_nonexistent_path(self) -> None:
        transcoder = FFmpegTranscoder(ffmpeg_path="/nonexistent/bin/ffmpeg-missing")
        assert await transcoder.is_available() is False


class TestBuildCommand:

    def _command(self, probe: VideoProbe, params: Optional[CompressionParams] = None) -> list[str]:
        return FFmpegTranscoder().build_command("in.mov", "out.mp4", probe, params or CompressionParams())

    def test_constant_quality_with_bitrate_ceiling(self) -> None:
        cmd = self._command(VideoProbe(width=3000, height=4000, fps=60.0, duration=10.0, has_audio=True))

        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-crf") + 1] == "25"
        assert cmd[cmd.index("-maxrate") + 1] == "2000k"
        assert cmd[cmd.index("-bufsize") + 1] == "2400k"
        assert cmd[cmd.index("-movflags") + 1] == "+faststart"
        assert cmd[cmd.index("-pix_fmt") + 1] == "yuv420p"
        assert "-b:v" not in cmd

    def test_scale_and_fps_are_capped(self) -> None:
        cmd = self._command(VideoProbe(width=3000, height=4000, fps=60.0, duration=10.0))

        assert cmd[cmd.index("-vf") + 1] == "scale=1080:1440"
        assert cmd[cmd.index("-r") + 1] == "30"
        assert cmd[cmd.index("-g") + 1] == "60"

    def test_fractional_fps_preserved_below_cap(self) -> None:
        cmd = self._command(VideoProbe(width=1080, height=1920, fps=30000 / 1001, duration=10.0))

        assert cmd[cmd.index("-r") + 1] == "29.97"

    def test_audio_encoded_when_present(self) -> None:
        cmd = self._command(VideoProbe(width=720, height=1280, fps=30.0, duration=5.0, has_audio=True))

        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-b:a") + 1] == "96k"
        assert cmd[cmd.index("-ar") + 1] == "44100"
        assert "-an" not in cmd

    def test_audio_disabled_when_absent(self) -> None:
        cmd = self._command(VideoProbe(width=720, height=1280, fps=30.0, duration=5.0, has_audio=False))

        assert "-an" in cmd
        assert "-c:a" not in cmd

    def test_output_path_last(self) -> None:
        cmd = self._command(VideoProbe(width=720, height=1280, fps=30.0, duration=5.0))
        assert cmd[-1] == "out.mp4"
        assert cmd[cmd.index("-i") + 1] == "in.mov"


class ClipTranscoder(FFmpegTranscoder):
    """Seeking past ``duration`` yields no frame, as ffmpeg does."""

    def __init__(self, duration: float = 15.0, hang: bool = False):
        super().__init__()
        self.duration = duration
        self.hang = hang
        self.commands: list[list[str]] = []

    async def _run(self, cmd, timeout=None):
        self.commands.append(cmd)
        if self.hang:
            raise asyncio.TimeoutError()
        offset = float(cmd[cmd.index("-ss") + 1])
        if offset < self.duration:
            Path(cmd[-1]).write_bytes(b"\xff\xd8jpeg")
        return 0, "", ""


class TestThumbnail:

    @pytest.mark.asyncio
    async def test_frame_grabbed_at_one_second(self, source: Path, tmp_path: Path) -> None:
        transcoder = ClipTranscoder()
        thumb = tmp_path / "upload_thumb.jpg"

        result = await transcoder.generate_thumbnail(source, thumb)

        assert result == str(thumb)
        assert thumb.read_bytes() == b"\xff\xd8jpeg"
        cmd = transcoder.commands[0]
        assert cmd[cmd.index("-ss") + 1] == "1"
        assert cmd[cmd.index("-i") + 1] == str(source)
        assert cmd[cmd.index("-frames:v") + 1] == "1"
        assert cmd[cmd.index("-vf") + 1] == "scale=720:-2"
        assert cmd[-1] == str(thumb)

    @pytest.mark.asyncio
    async def test_short_clip_uses_first_frame(self, source: Path, tmp_path: Path) -> None:
        transcoder = ClipTranscoder(duration=0.5)
        thumb = tmp_path / "upload_thumb.jpg"

        await transcoder.generate_thumbnail(source, thumb)

        offsets = [c[c.index("-ss") + 1] for c in transcoder.commands]
        assert offsets == ["1", "0"]
        assert thumb.exists()

    @pytest.mark.asyncio
    async def test_no_frame_raises(self, source: Path, tmp_path: Path) -> None:
        thumb = tmp_path / "upload_thumb.jpg"

        with pytest.raises(TranscodeError):
            await ClipTranscoder(duration=0).generate_thumbnail(source, thumb)
        assert not thumb.exists()

    @pytest.mark.asyncio
    async def test_timeout_raises(self, source: Path, tmp_path: Path) -> None:
        with pytest.raises(TranscodeError):
            await ClipTranscoder(hang=True).generate_thumbnail(source, tmp_path / "t.jpg")

    @pytest.mark.asyncio
    async def test_missing_video_raises(self, tmp_path: Path) -> None:
        transcoder = ClipTranscoder()

        with pytest.raises(SourceMissingError):
            await transcoder.generate_thumbnail(tmp_path / "gone.mp4", tmp_path / "t.jpg")
        assert transcoder.commands == []

    @pytest.mark.asyncio
    async def test_missing_binary_raises_unavailable(self, source: Path, tmp_path: Path) -> None:
        transcoder = FFmpegTranscoder(ffmpeg_path="/nonexistent/bin/ffmpeg-missing")

        with pytest.raises(TranscoderUnavailableError):
            await transcoder.generate_thumbnail(source, tmp_path / "t.jpg")
