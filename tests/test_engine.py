"""Tests for the export pipeline."""

from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from conftest import FakeEncoder, FakeVideoSource
from overlayforge.engine import (
    STAGE_MUXING,
    STAGE_RENDERING,
    ExportPipeline,
    ExportResult,
    ExportState,
    process,
)
from overlayforge.errors import EncoderFailure, NoSource, SourceUnavailable, ValidationError
from overlayforge.manifest import Manifest, OutputConfig, SidecarConfig
from overlayforge.media import SecondaryImage, SecondaryVideo
from overlayforge.models import Draft
from overlayforge.render.compositor import Compositor
from overlayforge.timeline import TimelineStore


def _timeline() -> TimelineStore:
    store = TimelineStore(duration=10)
    store.commit(Draft(text="hello", start=0, end=3))
    return store


class TestExportResult:
    def test_defaults(self):
        r = ExportResult(output_path=Path("out.mp4"))
        assert r.caption_path is None
        assert r.frames_rendered == 0
        assert r.duration == 0.0


class TestFrameLoop:
    def test_ten_seconds_at_30fps_renders_300_frames(self, tmp_path, sink_factory, encoder):
        primary = FakeVideoSource(duration=10.0)
        progress: list[tuple[str, float]] = []
        pipeline = ExportPipeline(
            _timeline(),
            OutputConfig(frame_rate=30),
            encoder=encoder,
            sink_factory=sink_factory,
            on_progress=lambda stage, pct: progress.append((stage, pct)),
        )

        with patch.object(
            Compositor, "render_frame", autospec=True, side_effect=Compositor.render_frame
        ) as spy:
            result = pipeline.run(primary, tmp_path / "out.mp4")

        expected = [i / 30 for i in range(300)]
        assert spy.call_count == 300
        assert [c.args[1] for c in spy.call_args_list] == expected
        assert primary.seeks == expected
        assert sink_factory.sinks[0].frames == 300
        assert result.frames_rendered == 300
        assert pipeline.state is ExportState.DONE

        rendering = [pct for stage, pct in progress if stage == STAGE_RENDERING]
        assert rendering == sorted(rendering)
        assert rendering[0] == 0.0
        assert rendering[-1] == 100.0

        muxing = [pct for stage, pct in progress if stage == STAGE_MUXING]
        assert muxing[0] == 0.0
        assert muxing == sorted(muxing)
        assert muxing[-1] == 100.0

    def test_output_size_follows_template(self, tmp_path, sink_factory, encoder):
        primary = FakeVideoSource(duration=0.1, width=64, height=36)
        ExportPipeline(TimelineStore(), OutputConfig(), encoder=encoder,
                       sink_factory=sink_factory).run(primary, tmp_path / "a.mp4")
        ExportPipeline(TimelineStore(), OutputConfig(template="split"), encoder=encoder,
                       sink_factory=sink_factory).run(primary, tmp_path / "b.mp4")
        assert (sink_factory.sinks[0].width, sink_factory.sinks[0].height) == (64, 36)
        assert (sink_factory.sinks[1].width, sink_factory.sinks[1].height) == (400, 600)

    def test_split_seeks_secondary_video(self, tmp_path, sink_factory, encoder):
        primary = FakeVideoSource(duration=0.2)
        secondary = FakeVideoSource(duration=5.0, width=32, height=32)
        pipeline = ExportPipeline(
            TimelineStore(), OutputConfig(template="split", frame_rate=10),
            encoder=encoder, sink_factory=sink_factory,
        )
        pipeline.run(primary, tmp_path / "out.mp4", secondary=SecondaryVideo(secondary))
        assert secondary.seeks == [0.0, 0.1]

    def test_standard_template_ignores_secondary(self, tmp_path, sink_factory, encoder):
        primary = FakeVideoSource(duration=0.2)
        secondary = FakeVideoSource(duration=5.0)
        pipeline = ExportPipeline(
            TimelineStore(), OutputConfig(frame_rate=10), encoder=encoder, sink_factory=sink_factory
        )
        pipeline.run(primary, tmp_path / "out.mp4", secondary=SecondaryVideo(secondary))
        assert secondary.seeks == []


class TestMuxing:
    def test_muxes_capture_with_original_audio(self, tmp_path, sink_factory, encoder):
        primary = FakeVideoSource(duration=0.1, path=tmp_path / "primary.mp4")
        out = tmp_path / "out.mp4"
        logo = Image.new("RGBA", (4, 4), (255, 255, 255, 255))
        ExportPipeline(_timeline(), encoder=encoder, sink_factory=sink_factory).run(
            primary, out, secondary=SecondaryImage(Image.new("RGB", (4, 4))), logo=logo
        )
        call = encoder.calls[0]
        assert call["audio_source"] == primary.path
        assert call["output_path"] == out
        assert call["captured"] == b"captured"
        assert call["duration"] == 0.1

    def test_capture_removed_after_export(self, tmp_path, sink_factory, encoder):
        ExportPipeline(_timeline(), encoder=encoder, sink_factory=sink_factory).run(
            FakeVideoSource(duration=0.1), tmp_path / "out.mp4"
        )
        assert not sink_factory.sinks[0].output_path.exists()


class TestFailures:
    def test_no_source_leaves_state_idle(self, tmp_path, sink_factory, encoder):
        pipeline = ExportPipeline(_timeline(), encoder=encoder, sink_factory=sink_factory)
        with pytest.raises(NoSource):
            pipeline.run(None, tmp_path / "out.mp4")
        assert pipeline.state is ExportState.IDLE
        assert sink_factory.sinks == []

    def test_seek_failure_aborts_and_cleans_up(self, tmp_path, sink_factory, encoder):
        primary = FakeVideoSource(duration=2.0, fail_at=1.0)
        pipeline = ExportPipeline(_timeline(), encoder=encoder, sink_factory=sink_factory)
        with pytest.raises(SourceUnavailable):
            pipeline.run(primary, tmp_path / "out.mp4")
        sink = sink_factory.sinks[0]
        assert pipeline.state is ExportState.FAILED
        assert sink.frames == 30
        assert sink.closed
        assert not sink.stopped
        assert primary.released
        assert encoder.calls == []
        assert not (tmp_path / "out.mp4").exists()

    def test_encoder_failure_removes_partial_output(self, tmp_path, sink_factory):
        encoder = FakeEncoder(fail_with=EncoderFailure("mux exploded"))
        out = tmp_path / "out.mp4"
        pipeline = ExportPipeline(_timeline(), encoder=encoder, sink_factory=sink_factory)
        with pytest.raises(EncoderFailure, match="mux exploded"):
            pipeline.run(FakeVideoSource(duration=0.1), out)
        assert pipeline.state is ExportState.FAILED
        assert not out.exists()
        assert sink_factory.sinks[0].closed

    def test_pipeline_can_run_again_after_failure(self, tmp_path, sink_factory, encoder):
        pipeline = ExportPipeline(_timeline(), encoder=encoder, sink_factory=sink_factory)
        with pytest.raises(SourceUnavailable):
            pipeline.run(FakeVideoSource(duration=1.0, fail_at=0.0), tmp_path / "a.mp4")
        result = pipeline.run(FakeVideoSource(duration=0.1), tmp_path / "b.mp4")
        assert pipeline.state is ExportState.DONE
        assert result.frames_rendered == 3


class TestProcess:
    def _run(self, manifest, sink_factory, encoder, primary):
        def make_pipeline(timeline, config, on_progress=None):
            return ExportPipeline(
                timeline, config, encoder=encoder, sink_factory=sink_factory, on_progress=on_progress
            )

        with patch("overlayforge.engine.ffutil.check_ffmpeg"), \
             patch("overlayforge.engine.VideoSource.open", return_value=primary), \
             patch("overlayforge.engine.ExportPipeline", side_effect=make_pipeline):
            return process(manifest)

    def test_output_directory_gets_default_name(self, tmp_path, sink_factory, encoder):
        manifest = Manifest(primary=Path("primary.mp4"), output=tmp_path)
        result = self._run(manifest, sink_factory, encoder, FakeVideoSource(duration=0.1))
        assert result.output_path.parent == tmp_path
        assert result.output_path.name.startswith("captioned-video-")
        assert result.output_path.suffix == ".mp4"
        assert result.frames_rendered == 3
        assert result.caption_path is None

    def test_writes_subtitle_sidecar(self, tmp_path, sink_factory, encoder):
        manifest = Manifest(
            primary=Path("primary.mp4"),
            output=tmp_path / "out.mp4",
            captions=[Draft(text="hi", start=0, end=0.05)],
            sidecar=SidecarConfig(enabled=True, output_format="vtt"),
        )
        result = self._run(manifest, sink_factory, encoder, FakeVideoSource(duration=0.1))
        assert result.caption_path == tmp_path / "out.vtt"
        assert result.caption_path.read_text().startswith("WEBVTT\n")

    def test_invalid_manifest_caption_raises_before_render(self, tmp_path, sink_factory, encoder):
        manifest = Manifest(
            primary=Path("primary.mp4"),
            output=tmp_path / "out.mp4",
            captions=[Draft(text="  ", start=0, end=1)],
        )
        with pytest.raises(ValidationError):
            self._run(manifest, sink_factory, encoder, FakeVideoSource(duration=1.0))
        assert sink_factory.sinks == []
