"""Coordinate transformer.

Elements are authored in percent coordinates against the vertical 9:16
canvas. Other formats get fixed heuristic adjustments that depend only on
the element's own values, so every call is pure.
"""

import logging

from adrender.constants.formats import BASELINE_FORMAT
from adrender.render.elements import Geometry
from adrender.render.filters import PixelBox

logger = logging.getLogger(__name__)


def _landscape(g: Geometry) -> Geometry:
    """16:9: compress vertical placement, slightly narrower, taller boxes."""
    if g.x <= 20:
        x = g.x
    elif g.x >= 70:
        x = max(60.0, g.x - 10)
    else:
        x = g.x - 5

    if g.y <= 20:
        y = g.y + 5
    elif g.y >= 70:
        y = max(50.0, g.y - 20)
    else:
        y = g.y - 10

    return Geometry(x=x, y=y, width=max(20.0, g.width * 0.8), height=g.height * 1.1)


def _square(g: Geometry) -> Geometry:
    y = max(60.0, g.y - 10) if g.y >= 70 else g.y
    return Geometry(x=g.x, y=y, width=g.width * 0.9, height=g.height * 0.95)


def _portrait(g: Geometry) -> Geometry:
    return Geometry(x=g.x, y=g.y * 0.95, width=g.width * 0.95, height=g.height * 0.98)


_ADJUSTMENTS = {
    "16:9": _landscape,
    "1:1": _square,
    "4:5": _portrait,
}


def transform(geometry: Geometry, target_format: str) -> Geometry:
    """Map baseline-format percent geometry to ``target_format`` percent geometry."""
    if target_format == BASELINE_FORMAT:
        return geometry
    adjust = _ADJUSTMENTS.get(target_format)
    if adjust is None:
        logger.warning(f"[COORD] Unknown format '{target_format}', leaving coordinates unchanged")
        return geometry
    return adjust(geometry)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def to_pixels(geometry: Geometry, canvas_width: int, canvas_height: int) -> PixelBox:
    """Convert percent geometry to a pixel box clamped to the canvas."""
    x = round(_clamp(geometry.x, 0, 100) / 100 * canvas_width)
    y = round(_clamp(geometry.y, 0, 100) / 100 * canvas_height)
    width = round(_clamp(geometry.width, 0, 100) / 100 * canvas_width)
    height = round(_clamp(geometry.height, 0, 100) / 100 * canvas_height)
    return PixelBox(
        x=x,
        y=y,
        width=min(width, canvas_width - x),
        height=min(height, canvas_height - y),
    )


def clamp_box(box: PixelBox, canvas_width: int, canvas_height: int) -> PixelBox:
    """Clip a pixel box (e.g. an expanded border or shadow) to the canvas."""
    x1 = int(_clamp(box.x, 0, canvas_width))
    y1 = int(_clamp(box.y, 0, canvas_height))
    x2 = int(_clamp(box.x + box.width, 0, canvas_width))
    y2 = int(_clamp(box.y + box.height, 0, canvas_height))
    return PixelBox(x1, y1, x2 - x1, y2 - y1)


def element_box(geometry: Geometry, target_format: str, canvas_width: int, canvas_height: int) -> PixelBox:
    return to_pixels(transform(geometry, target_format), canvas_width, canvas_height)
