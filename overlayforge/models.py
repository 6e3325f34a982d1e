"""Shared data types used across OverlayForge."""

import math
from dataclasses import dataclass

POSITION_PRESETS: dict[str, tuple[float, float]] = {
    "top-left": (25.0, 15.0),
    "top-center": (50.0, 15.0),
    "top-right": (75.0, 15.0),
    "mid-left": (25.0, 50.0),
    "mid-center": (50.0, 50.0),
    "mid-right": (75.0, 50.0),
    "bottom-left": (25.0, 85.0),
    "bottom-center": (50.0, 85.0),
    "bottom-right": (75.0, 85.0),
    "split-center": (50.0, 50.0),
}

_NORMALIZED_FIELDS = ("x", "y", "width")


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def format_time(seconds: float) -> str:
    """Format seconds as HH:MM:SS (fractions are truncated)."""
    if math.isnan(seconds) or seconds < 0:
        return "00:00:00"
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


def parse_time(value: str) -> float:
    """Parse HH:MM:SS into seconds. Malformed input yields 0."""
    parts = value.split(":")
    if len(parts) != 3:
        return 0.0
    try:
        h, m, s = (float(p) for p in parts)
    except ValueError:
        return 0.0
    return h * 3600 + m * 60 + s


@dataclass(frozen=True)
class Caption:
    """A committed, timed caption overlay."""

    id: str
    text: str
    start: float
    end: float
    x: float = 50.0
    y: float = 50.0
    width: float = 60.0
    font_size: float = 24.0
    font_family: str = "SF Pro Display Bold"
    bg_color: str = "#ffffff"
    text_color: str = "#000000"

    def contains(self, t: float) -> bool:
        return self.start <= t <= self.end


@dataclass
class Draft:
    """The caption currently being authored.

    ``x``, ``y`` and ``width`` are clamped into [0, 100] on every
    assignment, including the ones made by ``__init__``.
    """

    text: str = ""
    start: float = 0.0
    end: float = 3.0
    x: float = 50.0
    y: float = 50.0
    width: float = 60.0
    font_size: float = 24.0
    font_family: str = "SF Pro Display Bold"
    bg_color: str = "#ffffff"
    text_color: str = "#000000"

    def __setattr__(self, name, value):
        if name in _NORMALIZED_FIELDS:
            value = clamp_percent(value)
        super().__setattr__(name, value)

    def set_start(self, t: float) -> bool:
        """Move the start time; rejected when it would reach or pass ``end``."""
        if t < 0 or t >= self.end:
            return False
        self.start = t
        return True

    def set_end(self, t: float) -> bool:
        """Move the end time; rejected when it would reach or precede ``start``."""
        if t <= self.start:
            return False
        self.end = t
        return True

    def apply_preset(self, name: str) -> None:
        if name not in POSITION_PRESETS:
            raise ValueError(f"Unknown position preset: {name!r}")
        self.x, self.y = POSITION_PRESETS[name]

    def to_caption(self, caption_id: str) -> Caption:
        return Caption(
            id=caption_id,
            text=self.text,
            start=self.start,
            end=self.end,
            x=self.x,
            y=self.y,
            width=self.width,
            font_size=self.font_size,
            font_family=self.font_family,
            bg_color=self.bg_color,
            text_color=self.text_color,
        )


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    width: int
    height: int
    fps: float
    codec_video: str
    audio_sample_rate: int | None = None
    codec_audio: str | None = None
    # Length of the video stream itself; the container can run longer when
    # the audio track outlasts the last frame.
    video_duration: float | None = None

    @property
    def has_audio(self) -> bool:
        return self.codec_audio is not None
