"""Frame compositor: draws one output frame for a given timestamp."""

import functools
import logging
from typing import Protocol

from PIL import Image, ImageDraw, ImageFont

from overlayforge.manifest import OutputConfig
from overlayforge.media import SecondaryAsset, SecondaryImage, SecondaryVideo
from overlayforge.models import Caption
from overlayforge.render.text import wrap
from overlayforge.timeline import TimelineStore

logger = logging.getLogger(__name__)

BACKGROUND_COLOR = "#0f0f0f"
SECONDARY_BACKGROUND_COLOR = "#1a1a1a"
# 50% white over the secondary background
PLACEHOLDER_COLOR = "#8d8d8d"
PLACEHOLDER_TEXT = "No bottom media selected"
PLACEHOLDER_FONT_SIZE = 16

# Output frames are larger than the editing preview; caption and logo sizes
# are authored against the preview.
CAPTION_SCALE = 1.8
CAPTION_PADDING = 20
LINE_HEIGHT = 1.2
CORNER_RADIUS = round(8 * CAPTION_SCALE)
LOGO_MARGIN = 10 * CAPTION_SCALE


class FrameSource(Protocol):
    def frame_at(self, t: float) -> Image.Image: ...


@functools.lru_cache(maxsize=64)
def load_font(family: str, size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Resolve a font by family/file name, falling back to Pillow's default."""
    try:
        return ImageFont.truetype(family, size)
    except OSError:
        logger.debug("Font %r not found, using default font", family)
        return ImageFont.load_default(size=size)


class Compositor:
    """Owns the raster surface frames are drawn on.

    ``render_frame`` redraws the whole surface and returns it; callers that
    keep a frame past the next call must copy it.
    """

    def __init__(self, size: tuple[int, int], config: OutputConfig):
        self.size = size
        self.config = config
        self.surface: Image.Image | None = Image.new("RGB", size, BACKGROUND_COLOR)
        self._draw: ImageDraw.ImageDraw | None = ImageDraw.Draw(self.surface)

    def render_frame(
        self,
        timestamp: float,
        primary: FrameSource,
        secondary: SecondaryAsset,
        logo: Image.Image | None,
        timeline: TimelineStore,
    ) -> Image.Image:
        """Composite the frame shown at ``timestamp``.

        Raises:
            SourceUnavailable: the primary (or secondary video) has no frame
                at ``timestamp``.
        """
        if self.surface is None or self._draw is None:
            raise RuntimeError("Compositor surface has been released")
        w, h = self.size
        self._draw.rectangle([0, 0, w, h], fill=BACKGROUND_COLOR)

        frame = primary.frame_at(timestamp)
        if self.config.template == "split":
            half = h // 2
            self.surface.paste(frame.convert("RGB").resize((w, half)), (0, 0))
            self._draw_secondary(timestamp, secondary, (0, half, w, h))
        else:
            self.surface.paste(frame.convert("RGB").resize((w, h)), (0, 0))

        for caption in timeline.active_at(timestamp):
            self._draw_caption(caption)

        if logo is not None:
            self._draw_logo(logo)
        return self.surface

    def _draw_secondary(self, timestamp: float, secondary: SecondaryAsset, box: tuple[int, int, int, int]) -> None:
        self._draw.rectangle(box, fill=SECONDARY_BACKGROUND_COLOR)
        match secondary:
            case SecondaryVideo(source=source):
                self._paste_zoomed(source.frame_at(timestamp), box)
            case SecondaryImage(image=image):
                self._paste_zoomed(image, box)
            case None:
                font = load_font("SF Pro Display", PLACEHOLDER_FONT_SIZE)
                w, h = self.size
                self._draw_centered_text((w / 2, h * 0.75), PLACEHOLDER_TEXT, font, PLACEHOLDER_COLOR)

    def _paste_zoomed(self, source: Image.Image, box: tuple[int, int, int, int]) -> None:
        """Center-crop ``source`` by the zoom factor and scale it into ``box``."""
        scale = self.config.secondary_zoom / 100
        sw = source.width / scale
        sh = source.height / scale
        sx = (source.width - sw) / 2
        sy = (source.height - sh) / 2
        dest = (box[2] - box[0], box[3] - box[1])
        cropped = source.resize(dest, box=(sx, sy, sx + sw, sy + sh))
        mask = cropped if cropped.mode == "RGBA" else None
        self.surface.paste(cropped, (box[0], box[1]), mask)

    def _draw_caption(self, caption: Caption) -> None:
        w, h = self.size
        font_px = caption.font_size * CAPTION_SCALE
        font = load_font(caption.font_family, max(1, round(font_px)))

        box_w = caption.width / 100 * w
        cx = caption.x / 100 * w
        cy = caption.y / 100 * h

        lines = wrap(
            caption.text,
            box_w - CAPTION_PADDING,
            lambda s: self._draw.textlength(s, font=font),
        )
        line_h = font_px * LINE_HEIGHT
        block_h = len(lines) * line_h
        top = cy - block_h / 2

        self._draw.rounded_rectangle(
            [
                round(cx - box_w / 2),
                round(top - CAPTION_PADDING / 2),
                round(cx + box_w / 2),
                round(top + block_h + CAPTION_PADDING / 2),
            ],
            radius=CORNER_RADIUS,
            fill=caption.bg_color,
        )
        for i, line in enumerate(lines):
            self._draw_centered_text((cx, top + (i + 0.5) * line_h), line, font, caption.text_color)

    def _draw_centered_text(self, center: tuple[float, float], text: str, font, fill: str) -> None:
        if not text:
            return
        left, top, right, bottom = self._draw.textbbox((0, 0), text, font=font)
        x = center[0] - (left + right) / 2
        y = center[1] - (top + bottom) / 2
        self._draw.text((x, y), text, font=font, fill=fill)

    def _draw_logo(self, logo: Image.Image) -> None:
        w, h = self.size
        logo_w = max(1, round(self.config.logo_size * CAPTION_SCALE))
        logo_h = max(1, round(logo.height / logo.width * logo_w))
        margin = round(LOGO_MARGIN)

        position = self.config.logo_position
        x = margin if "left" in position else w - logo_w - margin
        y = margin if "top" in position else h - logo_h - margin

        resized = logo.resize((logo_w, logo_h))
        mask = resized if resized.mode == "RGBA" else None
        self.surface.paste(resized, (x, y), mask)

    def release(self) -> None:
        self._draw = None
        self.surface = None
