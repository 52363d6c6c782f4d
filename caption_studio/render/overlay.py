"""Caption overlay rasterization with Pillow.

WHY: The renderer composites the same few caption images onto thousands
of frames. Drawing each CaptionFrame once into an RGBA array and
alpha-blending it per frame keeps rendering cheap.

HOW: rasterize() lays a CaptionFrame out for a given frame size and
returns an Overlay (RGBA pixels plus the top-left position). Sizes are
defined for a 1080-pixel-high composition and scaled to the real frame
height. composite() alpha-blends an Overlay into an RGB frame.

RULES:
- Bottom box: 70 % black rounded box, 32 px white text, line height 1.4,
  at most 80 % of the padded width, 60 px above the bottom edge
- Top bar: full-width 85 % black bar flush with the top, 28 px white text
- Karaoke: centred 75 % black rounded box, 36 px words with a drop shadow;
  the highlighted word is gold (#FFD700) and bold, the others white
- Text wraps greedily at word boundaries; a single over-long word is
  never split
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from caption_studio.config import (
    CAPTION_BOLD_FONT_PATH,
    CAPTION_FONT_PATH,
    REFERENCE_FRAME_HEIGHT,
)
from caption_studio.core.selector import CaptionFrame, CaptionLayout

logger = logging.getLogger(__name__)

RGBA = Tuple[int, int, int, int]

WHITE: RGBA = (255, 255, 255, 255)
GOLD: RGBA = (255, 215, 0, 255)
SHADOW: RGBA = (0, 0, 0, 204)

_REGULAR_FONT_CANDIDATES = [
    "NotoSans-Regular.ttf",
    "/usr/share/fonts/truetype/noto/NotoSans-Regular.ttf",
    "/usr/share/fonts/noto/NotoSans-Regular.ttf",
    "DejaVuSans.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "Arial.ttf",
]

_BOLD_FONT_CANDIDATES = [
    "NotoSans-Bold.ttf",
    "/usr/share/fonts/truetype/noto/NotoSans-Bold.ttf",
    "/usr/share/fonts/noto/NotoSans-Bold.ttf",
    "DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "Arial Bold.ttf",
]


@dataclass(frozen=True)
class BoxStyle:
    """Geometry of one caption layout at the 1080p reference size."""

    font_size: int
    pad_x: int
    pad_y: int
    radius: int
    background: RGBA
    line_height: float
    container_pad_x: int = 0
    max_width_ratio: float = 1.0
    bottom_margin: int = 0


BOTTOM_BOX_STYLE = BoxStyle(
    font_size=32, pad_x=30, pad_y=15, radius=10,
    background=(0, 0, 0, 178), line_height=1.4,
    container_pad_x=40, max_width_ratio=0.8, bottom_margin=60,
)

TOP_BAR_STYLE = BoxStyle(
    font_size=28, pad_x=40, pad_y=20, radius=0,
    background=(0, 0, 0, 217), line_height=1.2,
)

KARAOKE_STYLE = BoxStyle(
    font_size=36, pad_x=40, pad_y=20, radius=15,
    background=(0, 0, 0, 191), line_height=1.3,
    container_pad_x=40, max_width_ratio=0.9,
)


@dataclass
class Overlay:
    """A rasterized caption: RGBA pixels placed at (x, y) in the frame."""

    pixels: np.ndarray
    x: int
    y: int

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]


# ---------------------------------------------------------------------------
# Fonts
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=64)
def load_font(size: int, bold: bool = False) -> Tuple[ImageFont.FreeTypeFont, bool]:
    """Return (font, is_bold_face) for the first usable candidate.

    When no bold face is found the regular face is returned with
    is_bold_face False, and callers fake bold with a same-colour stroke.
    """
    override = CAPTION_BOLD_FONT_PATH if bold else CAPTION_FONT_PATH
    candidates = ([override] if override else []) + (
        _BOLD_FONT_CANDIDATES if bold else _REGULAR_FONT_CANDIDATES
    )
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size), bold
        except OSError:
            continue
    if bold:
        font, _ = load_font(size, bold=False)
        return font, False
    logger.warning("No TrueType font found; using Pillow's default font")
    return ImageFont.load_default(size=size), False


def _scaled(value: float, scale: float) -> int:
    return max(1, int(round(value * scale))) if value else 0


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


def wrap_words(
    widths: Sequence[float],
    space_width: float,
    max_width: float,
) -> List[List[int]]:
    """Greedily group word indices into lines no wider than max_width.

    A word wider than max_width gets a line of its own.
    """
    lines: List[List[int]] = []
    current: List[int] = []
    current_width = 0.0
    for i, width in enumerate(widths):
        if current and current_width + space_width + width > max_width:
            lines.append(current)
            current, current_width = [], 0.0
        current_width = width if not current else current_width + space_width + width
        current.append(i)
    if current:
        lines.append(current)
    return lines


def _line_width(indices: Sequence[int], widths: Sequence[float], space_width: float) -> float:
    if not indices:
        return 0.0
    return sum(widths[i] for i in indices) + space_width * (len(indices) - 1)


@dataclass
class _Token:
    text: str
    font: ImageFont.FreeTypeFont
    fill: RGBA
    stroke: int = 0


def _draw_box(
    tokens: List[_Token],
    style: BoxStyle,
    scale: float,
    max_text_width: float,
    min_box_width: int = 0,
    shadow: bool = False,
) -> Image.Image:
    """Draw wrapped tokens centred on a (rounded) background box."""
    measure = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    widths = [measure.textlength(t.text, font=t.font) + 2 * t.stroke for t in tokens]
    base_font, _ = load_font(_scaled(style.font_size, scale))
    space_width = measure.textlength(" ", font=base_font)

    lines = wrap_words(widths, space_width, max(1.0, max_text_width))
    line_widths = [_line_width(line, widths, space_width) for line in lines]

    pad_x = _scaled(style.pad_x, scale)
    pad_y = _scaled(style.pad_y, scale)
    line_h = int(round(_scaled(style.font_size, scale) * style.line_height))
    box_w = max(min_box_width, int(np.ceil(max(line_widths or [0]))) + 2 * pad_x)
    box_h = line_h * max(1, len(lines)) + 2 * pad_y

    image = Image.new("RGBA", (box_w, box_h), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    radius = _scaled(style.radius, scale)
    if radius:
        draw.rounded_rectangle((0, 0, box_w - 1, box_h - 1), radius=radius, fill=style.background)
    else:
        draw.rectangle((0, 0, box_w - 1, box_h - 1), fill=style.background)

    shadow_offset = _scaled(2, scale)
    for row, (line, line_width) in enumerate(zip(lines, line_widths)):
        x = (box_w - line_width) / 2
        cy = pad_y + (row + 0.5) * line_h
        for i in line:
            token = tokens[i]
            pos = (x + token.stroke, cy)
            if shadow:
                draw.text(
                    (pos[0] + shadow_offset, pos[1] + shadow_offset),
                    token.text, font=token.font, fill=SHADOW, anchor="lm",
                    stroke_width=token.stroke, stroke_fill=SHADOW,
                )
            draw.text(
                pos, token.text, font=token.font, fill=token.fill, anchor="lm",
                stroke_width=token.stroke, stroke_fill=token.fill,
            )
            x += widths[i] + space_width
    return image


def _max_text_width(style: BoxStyle, width: int, scale: float) -> float:
    container = width - 2 * _scaled(style.container_pad_x, scale)
    return container * style.max_width_ratio - 2 * _scaled(style.pad_x, scale)


def _plain_tokens(text: str, style: BoxStyle, scale: float) -> List[_Token]:
    font, _ = load_font(_scaled(style.font_size, scale))
    return [_Token(word, font, WHITE) for word in text.split()]


def _karaoke_tokens(words: Sequence[str], highlighted: Optional[int], scale: float) -> List[_Token]:
    size = _scaled(KARAOKE_STYLE.font_size, scale)
    regular, _ = load_font(size)
    bold, is_bold_face = load_font(size, bold=True)
    tokens = []
    for i, word in enumerate(words):
        if i == highlighted:
            stroke = 0 if is_bold_face else max(1, int(round(scale)))
            tokens.append(_Token(word, bold, GOLD, stroke))
        else:
            tokens.append(_Token(word, regular, WHITE))
    return tokens


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def rasterize(frame: CaptionFrame, width: int, height: int) -> Overlay:
    """Draw a CaptionFrame for a width x height video frame."""
    scale = height / REFERENCE_FRAME_HEIGHT

    if frame.layout is CaptionLayout.TOP_BAR:
        style = TOP_BAR_STYLE
        image = _draw_box(
            _plain_tokens(frame.text, style, scale), style, scale,
            max_text_width=width - 2 * _scaled(style.pad_x, scale),
            min_box_width=width,
        )
        return Overlay(np.asarray(image), 0, 0)

    if frame.layout is CaptionLayout.KARAOKE:
        style = KARAOKE_STYLE
        image = _draw_box(
            _karaoke_tokens(frame.words, frame.highlighted, scale), style, scale,
            max_text_width=_max_text_width(style, width, scale),
            shadow=True,
        )
        return Overlay(
            np.asarray(image),
            (width - image.width) // 2,
            (height - image.height) // 2,
        )

    style = BOTTOM_BOX_STYLE
    image = _draw_box(
        _plain_tokens(frame.text, style, scale), style, scale,
        max_text_width=_max_text_width(style, width, scale),
    )
    return Overlay(
        np.asarray(image),
        (width - image.width) // 2,
        height - _scaled(style.bottom_margin, scale) - image.height,
    )


def composite(rgb_frame: np.ndarray, overlay: Overlay) -> np.ndarray:
    """Alpha-blend overlay onto a copy of rgb_frame; parts off-frame are cropped."""
    out = np.array(rgb_frame, copy=True)
    h, w = overlay.pixels.shape[:2]
    H, W = out.shape[:2]
    x, y = overlay.x, overlay.y
    x1, y1 = max(0, x), max(0, y)
    x2, y2 = min(W, x + w), min(H, y + h)
    if x1 >= x2 or y1 >= y2:
        return out
    overlay_crop = overlay.pixels[y1 - y:y2 - y, x1 - x:x2 - x]
    base_crop = out[y1:y2, x1:x2]
    alpha = overlay_crop[..., 3:4].astype(np.float32) / 255.0
    blended = base_crop.astype(np.float32) * (1 - alpha) + overlay_crop[..., :3].astype(np.float32) * alpha
    out[y1:y2, x1:x2] = np.clip(np.rint(blended), 0, 255).astype(np.uint8)
    return out
