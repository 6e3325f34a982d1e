"""Subtitle sidecar writer for a committed caption timeline."""

from pathlib import Path

from overlayforge.manifest import SidecarConfig
from overlayforge.models import Caption


def _format_cue_time(seconds: float, decimal_sep: str) -> str:
    total_ms = round(seconds * 1000)
    h, rem = divmod(total_ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms = divmod(rem, 1000)
    return f"{h:02d}:{m:02d}:{s:02d}{decimal_sep}{ms:03d}"


def render_srt(captions: list[Caption]) -> str:
    lines: list[str] = []
    for i, cap in enumerate(captions, 1):
        lines.append(str(i))
        lines.append(f"{_format_cue_time(cap.start, ',')} --> {_format_cue_time(cap.end, ',')}")
        lines.append(cap.text)
        lines.append("")
    return "\n".join(lines)


def render_vtt(captions: list[Caption]) -> str:
    lines: list[str] = ["WEBVTT", ""]
    for cap in captions:
        lines.append(f"{_format_cue_time(cap.start, '.')} --> {_format_cue_time(cap.end, '.')}")
        lines.append(cap.text)
        lines.append("")
    return "\n".join(lines)


def write_sidecar(captions: list[Caption], output_path: Path, config: SidecarConfig) -> Path:
    """Write the timeline next to ``output_path`` as .srt or .vtt."""
    if config.output_format == "vtt":
        subtitle_path = output_path.with_suffix(".vtt")
        subtitle_path.write_text(render_vtt(captions), encoding="utf-8")
    else:
        subtitle_path = output_path.with_suffix(".srt")
        subtitle_path.write_text(render_srt(captions), encoding="utf-8")
    return subtitle_path
