#!/usr/bin/env python3
"""Generate synthetic assets for OverlayForge pipeline testing.

Produces, in the target directory:
  primary.mp4    10 s, 640x360 test pattern with a 440 Hz tone
  secondary.mp4  4 s, 320x240 moving test source, no audio
  logo.png       120x60 semi-transparent badge
"""

import subprocess
import sys
from pathlib import Path

from PIL import Image, ImageDraw


def generate_primary(output: Path) -> None:
    cmd = [
        "ffmpeg", "-y",
        "-f", "lavfi", "-i", "testsrc2=s=640x360:r=30:d=10",
        "-f", "lavfi", "-i", "sine=f=440:d=10",
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-shortest",
        str(output),
    ]
    subprocess.run(cmd, check=True)


def generate_secondary(output: Path) -> None:
    cmd = [
        "ffmpeg", "-y",
        "-f", "lavfi", "-i", "testsrc=s=320x240:r=30:d=4",
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        str(output),
    ]
    subprocess.run(cmd, check=True)


def generate_logo(output: Path) -> None:
    img = Image.new("RGBA", (120, 60), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.rounded_rectangle([0, 0, 119, 59], radius=12, fill=(0, 149, 246, 200))
    draw.text((30, 22), "LOGO", fill=(255, 255, 255, 255))
    img.save(output)


if __name__ == "__main__":
    out_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/media")
    out_dir.mkdir(parents=True, exist_ok=True)
    generate_primary(out_dir / "primary.mp4")
    generate_secondary(out_dir / "secondary.mp4")
    generate_logo(out_dir / "logo.png")
    print(f"Generated test assets in {out_dir}")
