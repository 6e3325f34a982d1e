"""Tests for the command-line entry point."""

import argparse
from pathlib import Path
from unittest.mock import patch

import pytest

from overlayforge.cli import _parse_caption_arg, main
from overlayforge.engine import ExportResult
from overlayforge.errors import SourceUnavailable


def _run_main(*args):
    with patch("sys.argv", ["overlayforge", *args]):
        main()


class TestParseCaptionArg:
    def test_span_and_text(self):
        assert _parse_caption_arg("1.5-4:Hello: world") == {"text": "Hello: world", "start": 1.5, "end": 4.0}

    def test_malformed(self):
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_caption_arg("soon:Hello")


class TestRender:
    @patch("overlayforge.cli.process")
    def test_builds_manifest_from_flags(self, mock_process, tmp_path, capsys):
        out = tmp_path / "out.mp4"
        mock_process.return_value = ExportResult(output_path=out, width=640, height=360,
                                                 duration=2.0, frames_rendered=60)
        _run_main("render", "in.mp4", "-o", str(out), "--caption", "0-1:Hi",
                  "--template", "split", "--zoom", "150", "--subtitles", "vtt")

        manifest = mock_process.call_args[0][0]
        assert manifest.primary == Path("in.mp4")
        assert manifest.output == out
        assert manifest.config.template == "split"
        assert manifest.config.secondary_zoom == 150.0
        assert manifest.sidecar.enabled
        assert manifest.sidecar.output_format == "vtt"
        assert [d.text for d in manifest.captions] == ["Hi"]
        assert f"Done! Output: {out}" in capsys.readouterr().out

    @patch("overlayforge.cli.process")
    def test_manifest_file(self, mock_process, sample_manifest_path, tmp_path):
        mock_process.return_value = ExportResult(output_path=tmp_path / "out.mp4")
        _run_main("render", "--manifest", str(sample_manifest_path))
        assert mock_process.call_args[0][0].config.template == "split"

    def test_requires_video_or_manifest(self, capsys):
        with pytest.raises(SystemExit) as exc:
            _run_main("render")
        assert exc.value.code == 1
        assert "provide either a VIDEO argument or --manifest" in capsys.readouterr().err

    @patch("overlayforge.cli.process", side_effect=ValueError("Logo must be an image, got logo.mp4"))
    def test_bad_asset_reports_error(self, mock_process, capsys):
        with pytest.raises(SystemExit) as exc:
            _run_main("render", "in.mp4", "--logo", "logo.mp4")
        assert exc.value.code == 1
        assert "Error: Logo must be an image, got logo.mp4" in capsys.readouterr().err

    @patch("overlayforge.cli.process", side_effect=SourceUnavailable("No frame at 2.000s in in.mp4"))
    def test_export_failure_reports_message(self, mock_process, capsys):
        with pytest.raises(SystemExit) as exc:
            _run_main("render", "in.mp4")
        assert exc.value.code == 1
        assert "Error: No frame at 2.000s in in.mp4" in capsys.readouterr().err
