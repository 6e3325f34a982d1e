"""Media sources: seekable videos, still images and asset ingestion."""

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from overlayforge import ffutil
from overlayforge.errors import SourceUnavailable
from overlayforge.models import ProbeResult

logger = logging.getLogger(__name__)


def media_kind(path: Path) -> str:
    """Return "video" or "image" from the MIME type guessed for ``path``."""
    mime, _ = mimetypes.guess_type(path.name)
    if mime is None:
        raise ValueError(f"Cannot determine media type of {path.name}")
    kind = mime.split("/", 1)[0]
    if kind not in ("video", "image"):
        raise ValueError(f"Unsupported media type {mime} for {path.name}")
    return kind


class VideoSource:
    """A video file that hands out the frame shown at a given time.

    ``seek_to`` blocks until the frame is decoded. The last decoded frame is
    kept so repeated reads of the same time are free and identical.
    """

    def __init__(self, path: Path, probe: ProbeResult, seek_timeout: float | None = None,
                 loop: bool = False):
        self.path = path
        self.probe = probe
        self.seek_timeout = seek_timeout
        self.loop = loop
        self._current: tuple[float, Image.Image] | None = None

    @classmethod
    def open(cls, path: Path, seek_timeout: float | None = None, loop: bool = False) -> "VideoSource":
        return cls(path, ffutil.probe(path), seek_timeout=seek_timeout, loop=loop)

    @property
    def width(self) -> int:
        return self.probe.width

    @property
    def height(self) -> int:
        return self.probe.height

    @property
    def duration(self) -> float:
        return self.probe.duration

    @property
    def video_duration(self) -> float:
        return self.probe.video_duration or self.probe.duration

    @property
    def last_frame_time(self) -> float:
        """Time of the last decodable frame; later seeks hold on it."""
        step = 1 / self.probe.fps if self.probe.fps > 0 else 0.0
        return max(0.0, min(self.video_duration, self.duration) - step)

    @property
    def current_time(self) -> float | None:
        return self._current[0] if self._current else None

    def seek_to(self, t: float) -> Image.Image:
        if self.loop and self.video_duration > 0 and t >= self.video_duration:
            t = t % self.video_duration
        if t < 0 or t > self.duration:
            raise SourceUnavailable(f"{t:.3f}s is outside {self.path.name} (0-{self.duration:.3f}s)")
        t = min(t, self.last_frame_time)
        if self._current is not None and self._current[0] == t:
            return self._current[1]
        frame = ffutil.extract_frame(
            self.path, t, self.width, self.height, timeout=self.seek_timeout
        )
        self._current = (t, frame)
        return frame

    def frame_at(self, t: float) -> Image.Image:
        return self.seek_to(t)

    def release(self) -> None:
        self._current = None


def load_image(path: Path) -> Image.Image:
    """Decode a still image into memory as RGBA."""
    try:
        with Image.open(path) as img:
            return img.convert("RGBA")
    except OSError as e:
        raise SourceUnavailable(f"Could not decode image {path.name}: {e}") from e


@dataclass(frozen=True)
class SecondaryVideo:
    """Secondary pane backed by a seekable video."""

    source: VideoSource


@dataclass(frozen=True)
class SecondaryImage:
    """Secondary pane backed by a decoded still image."""

    image: Image.Image


SecondaryAsset = SecondaryVideo | SecondaryImage | None


def load_secondary(path: Path | None, seek_timeout: float | None = None) -> SecondaryAsset:
    if path is None:
        return None
    if media_kind(path) == "image":
        return SecondaryImage(load_image(path))
    # The secondary pane loops when it is shorter than the primary.
    return SecondaryVideo(VideoSource.open(path, seek_timeout=seek_timeout, loop=True))


def load_logo(path: Path | None) -> Image.Image | None:
    if path is None:
        return None
    if media_kind(path) != "image":
        raise ValueError(f"Logo must be an image, got {path.name}")
    return load_image(path)
