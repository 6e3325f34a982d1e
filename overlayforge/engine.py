"""Export pipeline: renders every output frame, then muxes the original audio."""

import logging
import subprocess
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Protocol

from PIL import Image

from overlayforge import ffutil
from overlayforge.editors.captions import write_sidecar
from overlayforge.errors import EncoderFailure, NoSource
from overlayforge.ffutil import CaptureSink
from overlayforge.manifest import Manifest, OutputConfig, default_output_name
from overlayforge.media import (
    SecondaryAsset,
    SecondaryVideo,
    VideoSource,
    load_logo,
    load_secondary,
)
from overlayforge.render.compositor import Compositor
from overlayforge.timeline import TimelineStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]

STAGE_RENDERING = "Rendering frames"
STAGE_MUXING = "Muxing original audio"


class ExportState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RENDERING = "rendering"
    MUXING = "muxing"
    DONE = "done"
    FAILED = "failed"


ACTIVE_STATES = (ExportState.PREPARING, ExportState.RENDERING, ExportState.MUXING)


class Encoder(Protocol):
    def mux(
        self,
        video_path: Path,
        audio_source: Path,
        output_path: Path,
        duration: float,
        on_progress: Callable[[float], None] | None = None,
    ) -> Path: ...


class FFmpegEncoder:
    """Muxes with ffmpeg: video copied from the capture, audio from the original."""

    def mux(self, video_path, audio_source, output_path, duration, on_progress=None) -> Path:
        try:
            return ffutil.mux_audio(
                video_path, audio_source, output_path, duration=duration, on_progress=on_progress
            )
        except subprocess.CalledProcessError as e:
            stderr = e.stderr if isinstance(e.stderr, str) else (e.stderr or b"").decode(errors="replace")
            raise EncoderFailure(f"ffmpeg mux failed: {stderr[-500:]}" if stderr else str(e)) from e


@dataclass
class RenderContext:
    """Everything one export holds on to; released on every exit path."""

    primary: VideoSource
    secondary: SecondaryAsset
    logo: Image.Image | None
    compositor: Compositor
    sink: CaptureSink

    def release(self) -> None:
        self.sink.close()
        self.compositor.release()
        self.primary.release()
        if isinstance(self.secondary, SecondaryVideo):
            self.secondary.source.release()


@dataclass
class ExportResult:
    output_path: Path
    width: int = 0
    height: int = 0
    duration: float = 0.0
    frames_rendered: int = 0
    caption_path: Path | None = None


class ExportPipeline:
    """Drives the compositor over the whole primary video.

    One pipeline runs one export at a time. States move
    IDLE -> PREPARING -> RENDERING -> MUXING -> DONE, or to FAILED from any
    active state. Progress is reported per phase as a percentage.
    """

    def __init__(
        self,
        timeline: TimelineStore,
        config: OutputConfig | None = None,
        encoder: Encoder | None = None,
        sink_factory: Callable[[Path, int, int, int], CaptureSink] = CaptureSink,
        on_progress: ProgressCallback | None = None,
    ):
        self.timeline = timeline
        self.config = config or OutputConfig()
        self.encoder = encoder or FFmpegEncoder()
        self.sink_factory = sink_factory
        self.on_progress = on_progress
        self.state = ExportState.IDLE
        self._stage: str | None = None
        self._last_percent = 0.0

    @property
    def is_exporting(self) -> bool:
        return self.state in ACTIVE_STATES

    def _set_state(self, state: ExportState) -> None:
        logger.debug("Export state %s -> %s", self.state.value, state.value)
        self.state = state

    def _progress(self, stage: str, percent: float) -> None:
        if stage != self._stage:
            self._stage = stage
            self._last_percent = 0.0
        percent = max(self._last_percent, min(100.0, percent))
        self._last_percent = percent
        if self.on_progress:
            self.on_progress(stage, percent)

    def run(
        self,
        primary: VideoSource | None,
        output_path: Path,
        secondary: SecondaryAsset = None,
        logo: Image.Image | None = None,
    ) -> ExportResult:
        """Render and mux the whole video into ``output_path``.

        Raises:
            NoSource: no primary video; nothing has changed.
            SourceUnavailable: a seek failed or timed out mid-render.
            EncoderFailure: capture or mux failed.
        """
        if primary is None:
            raise NoSource()
        if self.is_exporting:
            raise RuntimeError("An export is already running")

        self._set_state(ExportState.PREPARING)
        self._stage = None
        ctx: RenderContext | None = None
        work_dir = tempfile.TemporaryDirectory(prefix="overlayforge_")
        try:
            ctx = self._prepare(primary, secondary, logo, Path(work_dir.name))

            self._set_state(ExportState.RENDERING)
            frames = self._render(ctx)
            captured = ctx.sink.stop()

            self._set_state(ExportState.MUXING)
            self._progress(STAGE_MUXING, 0.0)
            self.encoder.mux(
                captured,
                primary.path,
                output_path,
                primary.duration,
                on_progress=lambda frac: self._progress(STAGE_MUXING, frac * 100),
            )
            self._progress(STAGE_MUXING, 100.0)
            self._set_state(ExportState.DONE)
        except Exception:
            if self.state is ExportState.MUXING:
                output_path.unlink(missing_ok=True)
            self._set_state(ExportState.FAILED)
            raise
        finally:
            if ctx is not None:
                ctx.release()
            work_dir.cleanup()

        width, height = ctx.compositor.size
        logger.info("Exported %d frames (%dx%d) to %s", frames, width, height, output_path)
        return ExportResult(
            output_path=output_path,
            width=width,
            height=height,
            duration=primary.duration,
            frames_rendered=frames,
        )

    def _prepare(self, primary, secondary, logo, work_dir: Path) -> RenderContext:
        size = self.config.output_size(primary.width, primary.height)
        compositor = Compositor(size, self.config)
        sink = self.sink_factory(work_dir / "capture.mp4", size[0], size[1], self.config.frame_rate)
        ctx = RenderContext(
            primary=primary,
            secondary=secondary if self.config.template == "split" else None,
            logo=logo,
            compositor=compositor,
            sink=sink,
        )
        try:
            sink.open()
        except Exception:
            ctx.release()
            raise
        return ctx

    def _render(self, ctx: RenderContext) -> int:
        """Composite frames t = i / fps for every t < duration; returns the count."""
        duration = ctx.primary.duration
        fps = self.config.frame_rate
        index = 0
        while (t := index / fps) < duration:
            ctx.primary.seek_to(t)
            match ctx.secondary:
                case SecondaryVideo(source=source):
                    source.seek_to(t)
            frame = ctx.compositor.render_frame(
                t, ctx.primary, ctx.secondary, ctx.logo, self.timeline
            )
            ctx.sink.push(frame)
            self._progress(STAGE_RENDERING, t / duration * 100)
            index += 1
        self._progress(STAGE_RENDERING, 100.0)
        return index


def resolve_output_path(output: Path) -> Path:
    """Use ``output`` as-is unless it names a directory."""
    if output.is_dir():
        return output / default_output_name()
    return output


def process(
    manifest: Manifest,
    on_progress: ProgressCallback | None = None,
) -> ExportResult:
    """Execute a full export described by a manifest.

    Args:
        manifest: Validated render manifest.
        on_progress: Optional callback(stage_name, percent_complete).
    """
    ffutil.check_ffmpeg()

    config = manifest.config
    primary = VideoSource.open(manifest.primary, seek_timeout=config.seek_timeout)
    logger.info(
        "Primary %s: %dx%d, %.2fs", manifest.primary.name, primary.width, primary.height, primary.duration
    )
    timeline = manifest.build_timeline(duration=primary.duration)
    secondary = (
        load_secondary(manifest.secondary, seek_timeout=config.seek_timeout)
        if config.template == "split"
        else None
    )
    logo = load_logo(manifest.logo)

    output_path = resolve_output_path(manifest.output)
    pipeline = ExportPipeline(timeline, config, on_progress=on_progress)
    result = pipeline.run(primary, output_path, secondary=secondary, logo=logo)

    if manifest.sidecar.enabled:
        result.caption_path = write_sidecar(list(timeline.captions), output_path, manifest.sidecar)
    return result
