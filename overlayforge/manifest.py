"""JSON manifest schema: the contract between CLI/API and engine."""

import json
import time
from dataclasses import dataclass, field, fields
from pathlib import Path

from overlayforge.models import Draft, parse_time
from overlayforge.timeline import TimelineStore

TEMPLATES = ("standard", "split")
LOGO_POSITIONS = ("top-left", "top-right", "bottom-left", "bottom-right")


@dataclass
class OutputConfig:
    """How the output frame is laid out and encoded."""

    template: str = "standard"
    secondary_zoom: float = 100.0
    secondary_muted: bool = True
    logo_position: str = "top-left"
    logo_size: float = 100.0
    frame_rate: int = 30
    seek_timeout: float = 10.0
    split_width: int = 400
    split_height: int = 600

    def __post_init__(self) -> None:
        if self.template not in TEMPLATES:
            raise ValueError(f"Unknown template {self.template!r}; expected one of {TEMPLATES}")
        if self.logo_position not in LOGO_POSITIONS:
            raise ValueError(
                f"Unknown logo position {self.logo_position!r}; expected one of {LOGO_POSITIONS}"
            )
        if self.secondary_zoom < 100:
            raise ValueError("secondary_zoom must be at least 100")
        if self.frame_rate <= 0:
            raise ValueError("frame_rate must be positive")

    def output_size(self, primary_width: int, primary_height: int) -> tuple[int, int]:
        if self.template == "split":
            return self.split_width, self.split_height
        return primary_width, primary_height


@dataclass
class SidecarConfig:
    """Optional subtitle file written next to the rendered video."""

    enabled: bool = False
    output_format: str = "srt"


@dataclass
class Manifest:
    """Top-level render manifest."""

    primary: Path
    output: Path
    secondary: Path | None = None
    logo: Path | None = None
    version: str = "1"
    captions: list[Draft] = field(default_factory=list)
    config: OutputConfig = field(default_factory=OutputConfig)
    sidecar: SidecarConfig = field(default_factory=SidecarConfig)

    def build_timeline(self, duration: float | None = None) -> TimelineStore:
        """Commit every manifest caption into a fresh timeline store."""
        store = TimelineStore(duration=duration)
        for draft in self.captions:
            store.commit(draft)
        return store


def default_output_name(suffix: str = ".mp4") -> str:
    return f"captioned-video-{int(time.time() * 1000)}{suffix}"


def _seconds(value) -> float:
    if isinstance(value, str):
        return parse_time(value) if ":" in value else float(value)
    return float(value)


_CAPTION_KEYS = {
    "fontSize": "font_size",
    "fontFamily": "font_family",
    "bgColor": "bg_color",
    "textColor": "text_color",
}


def draft_from_dict(data: dict) -> Draft:
    """Build a Draft from a JSON object (snake_case or camelCase keys)."""
    allowed = {f.name for f in fields(Draft)}
    kwargs = {}
    for key, value in data.items():
        key = _CAPTION_KEYS.get(key, key)
        if key not in allowed:
            raise ValueError(f"Unknown caption field {key!r}")
        if key in ("start", "end"):
            value = _seconds(value)
        kwargs[key] = value
    return Draft(**kwargs)


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())

    if "primary" not in data or "output" not in data:
        raise ValueError("Manifest must contain 'primary' and 'output' fields")

    config = OutputConfig(**data["config"]) if "config" in data else OutputConfig()
    sidecar = SidecarConfig(**data["sidecar"]) if "sidecar" in data else SidecarConfig()

    return Manifest(
        version=data.get("version", "1"),
        primary=Path(data["primary"]),
        output=Path(data["output"]),
        secondary=Path(data["secondary"]) if data.get("secondary") else None,
        logo=Path(data["logo"]) if data.get("logo") else None,
        captions=[draft_from_dict(c) for c in data.get("captions", [])],
        config=config,
        sidecar=sidecar,
    )
