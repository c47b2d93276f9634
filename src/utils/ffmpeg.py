import json
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Optional

from src.core.config import ThumbnailOptions, TranscodePreset
from src.core.errors import ProbeError, ThumbnailError, TranscodeError

logger = logging.getLogger(__name__)


def _stderr_tail(raw: Optional[bytes], limit: int = 2000) -> str:
    text = (raw or b"").decode(errors="replace").strip()
    return text[-limit:]


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def _has_output(path: str) -> bool:
    return os.path.exists(path) and os.path.getsize(path) > 0


@dataclass
class MediaInfo:
    format: str
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None


def _to_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(data: dict) -> MediaInfo:
    """Builds MediaInfo from ffprobe's ``-show_format -show_streams`` JSON."""
    fmt = data.get("format") or {}
    if not fmt.get("format_name"):
        raise ProbeError("Not a recognizable media container")

    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    # Some containers only report duration on the stream
    duration = _to_float(fmt.get("duration"))
    if duration is None and video is not None:
        duration = _to_float(video.get("duration"))

    return MediaInfo(
        format=fmt["format_name"],
        duration=duration,
        width=_to_int(video.get("width")) if video else None,
        height=_to_int(video.get("height")) if video else None,
        video_codec=video.get("codec_name") if video else None,
        audio_codec=audio.get("codec_name") if audio else None,
    )


class MediaProber:
    def __init__(self, ffprobe_path: str = "ffprobe", timeout: int = 60):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def probe(self, video_path: str) -> MediaInfo:
        """
        Inspects a local media file with ffprobe.

        Args:
            video_path (str): Local path to the uploaded file

        Returns:
            MediaInfo: container name, duration and video dimensions

        Raises:
            ProbeError: If the file is unreadable or not a media container
        """
        if not video_path or not os.path.exists(video_path):
            raise ProbeError(f"Video file does not exist: {video_path}")

        command = [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            video_path,
        ]

        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            raise ProbeError(f"ffprobe could not read the file: {_stderr_tail(e.stderr)}") from e
        except subprocess.TimeoutExpired as e:
            raise ProbeError(f"ffprobe timed out after {self.timeout}s") from e
        except FileNotFoundError as e:
            raise ProbeError(f"ffprobe binary not found: {self.ffprobe_path}") from e

        try:
            data = json.loads(result.stdout or b"{}")
        except json.JSONDecodeError as e:
            raise ProbeError("ffprobe returned malformed output") from e

        return parse_probe_output(data)


class ThumbnailExtractor:
    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout: int = 60):
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout

    def extract(
        self,
        video_path: str,
        output_path: str,
        options: ThumbnailOptions,
        duration: Optional[float] = None,
    ) -> str:
        """
        Writes one JPEG frame taken at the first reachable timestamp.

        Timestamps at or beyond a known ``duration`` are skipped.

        Raises:
            ThumbnailError: If no timestamp yields a frame
        """
        last_error = "no timestamps configured"

        for timestamp in options.timestamps:
            if duration is not None and timestamp >= duration:
                last_error = f"video is shorter than {timestamp}s"
                continue

            command = [
                self.ffmpeg_path,
                "-y",
                "-ss", f"{max(0.0, timestamp):.3f}",
                "-i", video_path,
                "-frames:v", "1",
                "-vf", options.scale_filter(),
                "-q:v", "2",
                output_path,
            ]

            try:
                subprocess.run(
                    command,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    check=True,
                    timeout=self.timeout,
                )
            except subprocess.CalledProcessError as e:
                last_error = _stderr_tail(e.stderr) or f"ffmpeg exited with {e.returncode}"
                continue
            except subprocess.TimeoutExpired:
                last_error = f"ffmpeg timed out at {timestamp}s"
                continue
            except FileNotFoundError as e:
                raise ThumbnailError(f"ffmpeg binary not found: {self.ffmpeg_path}") from e

            if _has_output(output_path):
                return output_path
            last_error = f"no frame at {timestamp}s"

        _remove_quietly(output_path)
        raise ThumbnailError(f"Thumbnail extraction failed: {last_error}")


class Transcoder:
    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path

    def build_command(self, source_path: str, output_path: str, preset: TranscodePreset) -> list:
        return [
            self.ffmpeg_path,
            "-y",
            "-i", source_path,
            *preset.ffmpeg_args(),
            "-f", "mp4",
            output_path,
        ]

    def transcode(
        self,
        source_path: str,
        output_path: str,
        preset: TranscodePreset,
        timeout: Optional[int] = None,
    ) -> str:
        """
        Re-encodes ``source_path`` into an MP4 at ``output_path``.

        Blocks until ffmpeg exits. Partial output is removed on failure.

        Raises:
            TranscodeError: On nonzero exit, timeout or missing output
        """
        if not os.path.exists(source_path):
            raise TranscodeError(f"Source file does not exist: {source_path}")

        command = self.build_command(source_path, output_path, preset)

        try:
            subprocess.run(
                command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                check=True,
                timeout=timeout,
            )
        except subprocess.CalledProcessError as e:
            _remove_quietly(output_path)
            raise TranscodeError(f"FFmpeg failed to transcode: {_stderr_tail(e.stderr)}") from e
        except subprocess.TimeoutExpired as e:
            _remove_quietly(output_path)
            raise TranscodeError(f"FFmpeg timed out after {timeout}s") from e
        except FileNotFoundError as e:
            raise TranscodeError(f"ffmpeg binary not found: {self.ffmpeg_path}") from e

        if not _has_output(output_path):
            _remove_quietly(output_path)
            raise TranscodeError("Transcode produced no output")

        return output_path
