"""Thin CLI entry point: builds a Manifest and calls the engine."""

import argparse
import json
import logging
import subprocess
import sys
from pathlib import Path

from overlayforge.engine import process
from overlayforge.errors import OverlayForgeError
from overlayforge.ffutil import FFmpegNotFoundError
from overlayforge.manifest import (
    LOGO_POSITIONS,
    TEMPLATES,
    Manifest,
    OutputConfig,
    SidecarConfig,
    draft_from_dict,
    load_manifest,
)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_caption_arg(value: str) -> dict:
    """Parse ``START-END:TEXT`` with times in seconds."""
    span, _, text = value.partition(":")
    start, _, end = span.partition("-")
    try:
        return {"text": text, "start": float(start), "end": float(end)}
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected START-END:TEXT, got {value!r}") from None


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="overlayforge",
        description="OverlayForge: render timed captions, a secondary pane and a logo onto a video.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    render = sub.add_parser("render", help="Render an overlaid video")
    render.add_argument("video", nargs="?", type=Path, help="Primary video file")
    render.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    render.add_argument("--output", "-o", type=Path, help="Output file or directory")
    render.add_argument("--secondary", type=Path, help="Secondary video or image (split template)")
    render.add_argument("--logo", type=Path, help="Logo image")
    render.add_argument("--captions", type=Path, help="JSON file with a list of caption objects")
    render.add_argument(
        "--caption", action="append", default=[], type=_parse_caption_arg,
        help="Inline caption as START-END:TEXT (seconds), repeatable",
    )
    render.add_argument("--template", choices=TEMPLATES, default="standard", help="Output layout")
    render.add_argument("--zoom", type=float, default=100.0, help="Secondary pane zoom (percent, >= 100)")
    render.add_argument("--logo-position", choices=LOGO_POSITIONS, default="top-left")
    render.add_argument("--logo-size", type=float, default=100.0, help="Logo width in preview pixels")
    render.add_argument("--fps", type=int, default=30, help="Output frame rate")
    render.add_argument("--subtitles", choices=["srt", "vtt"], help="Also write a subtitle sidecar")

    serve = sub.add_parser("serve", help="Launch the editing API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()
    _setup_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from overlayforge.web import create_app
        app = create_app()
        print(f"OverlayForge API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False)
        return

    try:
        if args.manifest:
            m = load_manifest(args.manifest)
        elif args.video:
            caption_dicts = list(args.caption)
            if args.captions:
                caption_dicts = json.loads(args.captions.read_text()) + caption_dicts
            m = Manifest(
                primary=args.video,
                output=args.output or args.video.with_stem(args.video.stem + "_captioned").with_suffix(".mp4"),
                secondary=args.secondary,
                logo=args.logo,
                captions=[draft_from_dict(c) for c in caption_dicts],
                config=OutputConfig(
                    template=args.template,
                    secondary_zoom=args.zoom,
                    logo_position=args.logo_position,
                    logo_size=args.logo_size,
                    frame_rate=args.fps,
                ),
                sidecar=SidecarConfig(
                    enabled=args.subtitles is not None,
                    output_format=args.subtitles or "srt",
                ),
            )
        else:
            print("Error: provide either a VIDEO argument or --manifest.", file=sys.stderr)
            sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    def on_progress(stage: str, percent: float) -> None:
        print(f"\r  [{percent:5.1f}%] {stage}", end="", flush=True)

    try:
        result = process(m, on_progress=on_progress)
    except OverlayForgeError as e:
        print(f"\nError: {e.message}", file=sys.stderr)
        sys.exit(1)
    except FFmpegNotFoundError as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    except subprocess.CalledProcessError as e:
        print(f"\nError: ffmpeg failed: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)

    print()
    print(f"Done! Output: {result.output_path}")
    print(f"  {result.width}x{result.height}, {result.frames_rendered} frames, {result.duration:.1f}s")
    if result.caption_path:
        print(f"  Subtitles: {result.caption_path}")
