"""Element renderer: overlay elements -> typed filter nodes.

Each element kind maps to draw nodes (text, boxes, lines) or, for images
and logos, a PendingOverlay that the ffmpeg renderer resolves once the
media has been downloaded. Elements are never rotated.
"""

import asyncio
import logging
import math
import re

from adrender.config import Settings, get_settings
from adrender.exceptions import FontResolutionError
from adrender.render.colors import with_opacity
from adrender.render.coordinates import clamp_box, element_box
from adrender.render.elements import (
    AudioPlaceholderElement,
    CtaElement,
    Element,
    ImageElement,
    ShapeElement,
    ShapeKind,
    TextAlign,
    TextElement,
    TextStyle,
    VideoPlaceholderElement,
)
from adrender.render.filters import (
    DrawBox,
    DrawLine,
    DrawText,
    FilterNode,
    PendingOverlay,
    PixelBox,
    TextAnchor,
)
from adrender.render.fonts import FontResolver

logger = logging.getLogger(__name__)

# Font sizes are authored against a 1080px wide canvas
REFERENCE_CANVAS_WIDTH = 1080
LINE_HEIGHT_FACTOR = 1.2
TEXT_PADDING = 5
PLACEHOLDER_LABEL_SIZE = 16

_ANCHORS = {
    TextAlign.LEFT: TextAnchor.LEFT,
    TextAlign.CENTER: TextAnchor.CENTER,
    TextAlign.RIGHT: TextAnchor.RIGHT,
}


def scaled_font_size(raw_size: str | int | float | None, canvas_width: int) -> int:
    """Scale an authored CSS font size to the canvas width."""
    match = re.search(r"\d+(?:\.\d+)?", str(raw_size or ""))
    base = float(match.group()) if match else 48.0
    return max(1, round(base * canvas_width / REFERENCE_CANVAS_WIDTH))


def average_char_width(font_family: str, font_size: int) -> float:
    family = font_family.lower()
    if "mono" in family or "courier" in family:
        return font_size * 0.6
    if "condensed" in family or "narrow" in family:
        return font_size * 0.45
    if "extended" in family or "expanded" in family:
        return font_size * 0.7
    return font_size * 0.5


def wrap_text(text: str, max_width: float, font_size: int, font_family: str) -> list[str]:
    """Greedy word wrap using an average glyph width estimate.

    Text within 120% of the estimated line capacity stays on one line;
    otherwise lines are filled up to 90% of the width.
    """
    char_width = average_char_width(font_family, font_size)
    max_chars = math.floor(max_width / char_width) if char_width > 0 else 0
    if len(text) <= max_chars * 1.2:
        return [text]

    lines: list[str] = []
    current = ""
    for word in text.split(" "):
        candidate = f"{current} {word}" if current else word
        if len(candidate) * char_width <= max_width * 0.9:
            current = candidate
        elif current:
            lines.append(current)
            current = word
        else:
            # Single word wider than the box keeps its own line
            lines.append(word)
    if current:
        lines.append(current)
    return lines or [text]


def _shadow_offsets(box_shadow: str | None) -> tuple[int, int] | None:
    """Parse the x/y offsets of a CSS box-shadow with at least four parts."""
    if not box_shadow:
        return None
    parts = box_shadow.split()
    if len(parts) < 4:
        return None

    def offset(part: str) -> int:
        match = re.match(r"-?\d+", part)
        return int(match.group()) if match and int(match.group()) != 0 else 3

    return offset(parts[0]), offset(parts[1])


class ElementRenderer:
    """Convert overlay elements into filter nodes for one canvas size."""

    def __init__(self, font_resolver: FontResolver, settings: Settings | None = None):
        self.fonts = font_resolver
        self.settings = settings or get_settings()

    async def render(
        self,
        element: Element,
        canvas_width: int,
        canvas_height: int,
        format: str,
    ) -> list[FilterNode]:
        if element.rotation:
            logger.debug(f"[ELEMENT] Rotation {element.rotation} on {element.id} is not applied")

        box = element_box(element.geometry, format, canvas_width, canvas_height)
        if isinstance(element, TextElement):
            return await self._render_text(element, box, canvas_width)
        if isinstance(element, CtaElement):
            return await self._render_cta(element, box, canvas_width, canvas_height)
        if isinstance(element, ShapeElement):
            return self._render_shape(element, box)
        if isinstance(element, ImageElement):
            return await self._render_image(element, box)
        if isinstance(element, VideoPlaceholderElement):
            return self._render_video_placeholder(element, box)
        if isinstance(element, AudioPlaceholderElement):
            return self._render_audio_placeholder(element, box)
        raise TypeError(f"Unsupported element {type(element).__name__}")

    async def render_scene(
        self,
        elements: list[Element],
        canvas_width: int,
        canvas_height: int,
        format: str,
    ) -> list[FilterNode]:
        """Render all elements of a scene, painted in ascending zIndex.

        Fonts are resolved concurrently; a failing element is skipped.
        """
        ordered = sorted(elements, key=lambda e: e.z_index)
        try:
            await self.fonts.preload(
                (e.style.font_family, e.style.font_weight, e.text)
                for e in ordered
                if isinstance(e, (TextElement, CtaElement))
            )
        except Exception as e:
            # Each element resolves its own font again below
            logger.warning(f"[ELEMENT] Font preload failed: {e}")
        results = await asyncio.gather(
            *(self.render(e, canvas_width, canvas_height, format) for e in ordered),
            return_exceptions=True,
        )
        nodes: list[FilterNode] = []
        for element, result in zip(ordered, results):
            if isinstance(result, BaseException):
                logger.warning(f"[ELEMENT] Skipping {element.id}: {result}")
                continue
            nodes.extend(result)
        return nodes

    # =========================================================================
    # Text
    # =========================================================================

    async def _font_path(self, style: TextStyle, text: str) -> str:
        path = await self.fonts.resolve_for_ffmpeg(style.font_family, style.font_weight, text, style.italic)
        if path:
            return path
        logger.warning(
            f"[ELEMENT] No font for {style.font_family} {style.font_weight}, "
            f"using {self.settings.caller_fallback_font_family}"
        )
        for family in (self.settings.caller_fallback_font_family, self.settings.default_font_family):
            path = await self.fonts.resolve_for_ffmpeg(family, 400, text)
            if path:
                return path
        raise FontResolutionError(f"No usable font for '{style.font_family}'")

    async def _text_lines(
        self,
        text: str,
        style: TextStyle,
        box: PixelBox,
        canvas_width: int,
        opacity: float,
    ) -> list[FilterNode]:
        font_path = await self._font_path(style, text)
        font_size = scaled_font_size(style.font_size, canvas_width)
        lines = wrap_text(text, box.width, font_size, style.font_family)
        line_height = font_size * LINE_HEIGHT_FACTOR
        _, center_y = box.center
        top = center_y - line_height * len(lines) / 2 + (line_height - font_size) / 2

        anchor = _ANCHORS[style.text_align]
        if anchor is TextAnchor.LEFT:
            x = box.x + TEXT_PADDING
        elif anchor is TextAnchor.RIGHT:
            x = box.x + box.width - TEXT_PADDING
        else:
            x = box.center[0]

        color = with_opacity(style.color, opacity)
        char_width = average_char_width(style.font_family, font_size)
        return [
            DrawText(
                text=line,
                font_path=font_path,
                font_size=font_size,
                color=color,
                x=x,
                y=round(top + i * line_height),
                anchor=anchor,
                italic=style.italic,
                underline=style.underline,
                strikethrough=style.strikethrough,
                estimated_width=len(line) * char_width,
            )
            for i, line in enumerate(lines)
        ]

    async def _render_text(self, element: TextElement, box: PixelBox, canvas_width: int) -> list[FilterNode]:
        return await self._text_lines(element.text, element.style, box, canvas_width, element.opacity)

    # =========================================================================
    # Call to action
    # =========================================================================

    async def _render_cta(
        self,
        element: CtaElement,
        box: PixelBox,
        canvas_width: int,
        canvas_height: int,
    ) -> list[FilterNode]:
        nodes: list[FilterNode] = []

        offsets = _shadow_offsets(element.box_shadow)
        if offsets:
            shadow = clamp_box(
                PixelBox(box.x + offsets[0], box.y + offsets[1], box.width, box.height),
                canvas_width,
                canvas_height,
            )
            nodes.append(DrawBox(shadow.x, shadow.y, shadow.width, shadow.height, "black@0.3"))

        if element.border_width > 0:
            bw = element.border_width
            border = clamp_box(
                PixelBox(box.x - bw, box.y - bw, box.width + bw * 2, box.height + bw * 2),
                canvas_width,
                canvas_height,
            )
            nodes.append(
                DrawBox(
                    border.x,
                    border.y,
                    border.width,
                    border.height,
                    with_opacity(element.border_color, element.opacity),
                )
            )

        nodes.append(
            DrawBox(box.x, box.y, box.width, box.height, with_opacity(element.background_color, element.opacity))
        )
        nodes.extend(await self._text_lines(element.text, element.style, box, canvas_width, element.opacity))
        return nodes

    # =========================================================================
    # Shapes
    # =========================================================================

    def _render_shape(self, element: ShapeElement, box: PixelBox) -> list[FilterNode]:
        color = with_opacity(element.color, element.opacity)

        if element.shape is ShapeKind.CIRCLE:
            # Bounding square of the circle
            side = min(box.width, box.height)
            return [
                DrawBox(
                    box.x + (box.width - side) // 2,
                    box.y + (box.height - side) // 2,
                    side,
                    side,
                    color,
                )
            ]

        if element.shape is ShapeKind.TRIANGLE:
            # Unfilled outline
            thickness = max(1, max(box.width, box.height) // 10)
            top = (box.x + box.width / 2, box.y)
            right = (box.x + box.width, box.y + box.height)
            left = (box.x, box.y + box.height)
            return [
                DrawLine(*top, *right, color=color, thickness=thickness),
                DrawLine(*right, *left, color=color, thickness=thickness),
                DrawLine(*left, *top, color=color, thickness=thickness),
            ]

        return [DrawBox(box.x, box.y, box.width, box.height, color)]

    # =========================================================================
    # Images and logos
    # =========================================================================

    async def _render_image(self, element: ImageElement, box: PixelBox) -> list[FilterNode]:
        if element.media_url:
            urls = tuple(u for u in (element.url, element.asset_url, element.content_url) if u)
            return [
                PendingOverlay(
                    element_id=element.id,
                    box=box,
                    opacity=element.opacity,
                    keep_proportions=element.keep_proportions,
                    urls=urls,
                )
            ]

        nodes: list[FilterNode] = [
            DrawBox(box.x, box.y, box.width, box.height, with_opacity("lightgray", element.opacity))
        ]
        font_path = await self.fonts.resolve_for_ffmpeg(self.settings.caller_fallback_font_family, 400)
        if font_path is None:
            font_path = await self.fonts.resolve_for_ffmpeg(self.settings.default_font_family, 400)
        if font_path:
            cx, cy = box.center
            nodes.append(
                DrawText(
                    text=element.label,
                    font_path=font_path,
                    font_size=PLACEHOLDER_LABEL_SIZE,
                    color="black",
                    x=cx,
                    y=round(cy - PLACEHOLDER_LABEL_SIZE / 2),
                    anchor=TextAnchor.CENTER,
                )
            )
        return nodes

    # =========================================================================
    # Media placeholders
    # =========================================================================

    def _render_video_placeholder(self, element: VideoPlaceholderElement, box: PixelBox) -> list[FilterNode]:
        """Black box with a white play triangle."""
        nodes: list[FilterNode] = [
            DrawBox(box.x, box.y, box.width, box.height, with_opacity("black", element.opacity))
        ]
        size = 0.3 * min(box.width, box.height)
        if size < 1:
            return nodes
        cx, cy = box.center
        tip = (cx + 0.5 * size, cy)
        upper = (cx - 0.25 * size, cy - 0.4 * size)
        lower = (cx - 0.25 * size, cy + 0.4 * size)
        thickness = max(1, round(size / 10))
        white = with_opacity("white", element.opacity)
        nodes += [
            DrawLine(*tip, *upper, color=white, thickness=thickness),
            DrawLine(*upper, *lower, color=white, thickness=thickness),
            DrawLine(*lower, *tip, color=white, thickness=thickness),
        ]
        return nodes

    def _render_audio_placeholder(self, element: AudioPlaceholderElement, box: PixelBox) -> list[FilterNode]:
        """Light gray box with five waveform bars."""
        nodes: list[FilterNode] = [
            DrawBox(box.x, box.y, box.width, box.height, with_opacity("lightgray", element.opacity))
        ]
        _, cy = box.center
        start_x = box.x + box.width * 0.15
        spacing = box.width * 0.7 / 4
        blue = with_opacity("blue", element.opacity)
        for i in range(5):
            bar_height = max(2.0, abs(math.sin((i + 1) * 1.5)) * 0.3 * box.height)
            x = start_x + i * spacing
            nodes.append(DrawLine(x, cy - bar_height / 2, x, cy + bar_height / 2, color=blue, thickness=2))
        return nodes
