"""FFmpeg/ffprobe subprocess helpers."""

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable

from PIL import Image

from overlayforge.errors import EncoderFailure, SourceUnavailable
from overlayforge.models import ProbeResult

logger = logging.getLogger(__name__)


class FFmpegNotFoundError(RuntimeError):
    pass


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def _stream_duration(stream: dict, fps: float, fallback: float) -> float:
    """Video stream length, falling back to frame count and then the container."""
    if "duration" in stream:
        return float(stream["duration"])
    if "nb_frames" in stream and fps > 0:
        return int(stream["nb_frames"]) / fps
    return fallback


def probe(input_path: Path) -> ProbeResult:
    """Extract media metadata via ffprobe. The audio stream is optional."""
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    data = json.loads(result.stdout)

    video_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "video"), None
    )
    audio_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "audio"), None
    )

    if video_stream is None:
        raise ValueError(f"No video stream found in {input_path}")

    # Parse fps from r_frame_rate (e.g. "30/1")
    num, den = video_stream["r_frame_rate"].split("/")
    fps = int(num) / int(den) if int(den) else 0.0

    duration = float(data["format"]["duration"])
    return ProbeResult(
        duration=duration,
        width=int(video_stream["width"]),
        height=int(video_stream["height"]),
        fps=fps,
        codec_video=video_stream["codec_name"],
        audio_sample_rate=int(audio_stream["sample_rate"]) if audio_stream else None,
        codec_audio=audio_stream["codec_name"] if audio_stream else None,
        video_duration=_stream_duration(video_stream, fps, duration),
    )


def extract_frame(
    input_path: Path,
    t: float,
    width: int,
    height: int,
    timeout: float | None = None,
) -> Image.Image:
    """Decode the frame shown at ``t`` seconds as an RGB image.

    Blocks until ffmpeg has finished decoding. A failed, short or timed-out
    decode raises SourceUnavailable.
    """
    cmd = [
        "ffmpeg",
        "-v", "error",
        "-ss", f"{t:.6f}",
        "-i", str(input_path),
        "-frames:v", "1",
        "-f", "rawvideo",
        "-pix_fmt", "rgb24",
        "-s", f"{width}x{height}",
        "-",
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise SourceUnavailable(
            f"Seeking {input_path.name} to {t:.3f}s timed out after {timeout}s"
        ) from e

    expected = width * height * 3
    if result.returncode != 0 or len(result.stdout) < expected:
        stderr = (result.stderr or b"").decode(errors="replace").strip()
        raise SourceUnavailable(
            f"No frame at {t:.3f}s in {input_path.name}" + (f": {stderr[-300:]}" if stderr else "")
        )
    return Image.frombytes("RGB", (width, height), result.stdout[:expected])


class CaptureSink:
    """Encodes raw RGB frames piped on ffmpeg's stdin into a video-only file."""

    def __init__(self, output_path: Path, width: int, height: int, frame_rate: int):
        self.output_path = output_path
        self.width = width
        self.height = height
        self.frame_rate = frame_rate
        self.frames_written = 0
        self._process: subprocess.Popen | None = None

    def open(self) -> "CaptureSink":
        cmd = [
            "ffmpeg", "-y",
            "-v", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{self.width}x{self.height}",
            "-r", str(self.frame_rate),
            "-i", "-",
            "-an",
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            str(self.output_path),
        ]
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise FFmpegNotFoundError("ffmpeg not found on PATH") from e
        logger.debug("Capture sink opened: %dx%d @ %d fps -> %s",
                     self.width, self.height, self.frame_rate, self.output_path)
        return self

    def push(self, frame: Image.Image) -> None:
        if self._process is None or self._process.stdin is None:
            raise EncoderFailure("Capture sink is not open")
        if frame.size != (self.width, self.height):
            raise EncoderFailure(
                f"Frame size {frame.size} does not match sink size {(self.width, self.height)}"
            )
        try:
            self._process.stdin.write(frame.convert("RGB").tobytes())
        except BrokenPipeError as e:
            raise EncoderFailure(f"Capture encoder exited early: {self._stderr_tail()}") from e
        self.frames_written += 1

    def stop(self) -> Path:
        """Flush the stream and wait for the encoder; returns the captured file."""
        if self._process is None:
            raise EncoderFailure("Capture sink is not open")
        process = self._process
        self._process = None
        if process.stdin:
            process.stdin.close()
        stderr = process.stderr.read() if process.stderr else b""
        rc = process.wait()
        if rc != 0:
            raise EncoderFailure(
                f"Capture encoder failed (rc={rc}): {stderr.decode(errors='replace')[-500:]}"
            )
        return self.output_path

    def close(self) -> None:
        """Kill the encoder if it is still running. Safe to call repeatedly."""
        process = self._process
        self._process = None
        if process is None:
            return
        if process.stdin and not process.stdin.closed:
            try:
                process.stdin.close()
            except BrokenPipeError:
                pass
        if process.poll() is None:
            process.kill()
        process.wait()

    def _stderr_tail(self) -> str:
        if self._process is None or self._process.stderr is None:
            return ""
        return self._process.stderr.read().decode(errors="replace")[-500:]

    def __enter__(self) -> "CaptureSink":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()


def parse_progress_seconds(line: str) -> float | None:
    """Parse an ``out_time_us``/``out_time_ms`` line from ``-progress`` output.

    Both keys carry microseconds (ffmpeg's ``out_time_ms`` is misnamed).
    """
    key, _, value = line.strip().partition("=")
    if key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        return int(value) / 1_000_000
    except ValueError:
        return None


def mux_audio(
    video_path: Path,
    audio_source: Path,
    output_path: Path,
    duration: float | None = None,
    on_progress: Callable[[float], None] | None = None,
) -> Path:
    """Combine the captured video track with the original file's audio track.

    The video stream is copied as-is; audio is re-encoded to AAC. A source
    without audio produces a video-only output (the audio map is optional).
    """
    cmd = [
        "ffmpeg", "-y",
        "-v", "error",
        "-i", str(video_path),
        "-i", str(audio_source),
        "-map", "0:v:0",
        "-map", "1:a:0?",
        "-c:v", "copy",
        "-c:a", "aac",
        "-shortest",
        "-movflags", "+faststart",
        "-progress", "pipe:1",
        "-nostats",
        str(output_path),
    ]
    process = subprocess.Popen(
        cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
    )
    assert process.stdout is not None
    for line in process.stdout:
        seconds = parse_progress_seconds(line)
        if seconds is not None and on_progress and duration:
            on_progress(min(seconds / duration, 1.0))
    stderr = process.stderr.read() if process.stderr else ""
    rc = process.wait()
    if rc != 0:
        raise subprocess.CalledProcessError(rc, cmd, stderr=stderr)
    if on_progress:
        on_progress(1.0)
    return output_path
