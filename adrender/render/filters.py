"""Typed filter-graph nodes for ffmpeg.

Element rendering produces lists of these nodes. They are only turned into
ffmpeg's textual filter syntax by :func:`serialize_chain` and
:func:`build_overlay_graph`, right before a subprocess is spawned, so no
caller ever concatenates or escapes filter strings by hand.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence, Union

from adrender.render.colors import normalize_color

# Maximum number of stamps used to draw one diagonal line
MAX_LINE_STAMPS = 256

OptionValue = Union[str, int, float]


# =============================================================================
# Escaping
# =============================================================================


def _escape(value: str, specials: str) -> str:
    return "".join(f"\\{ch}" if ch in specials else ch for ch in value)


def escape_option_value(value: str) -> str:
    """First level: escaping inside one filter option value."""
    return _escape(value, "\\':")


def escape_filtergraph(value: str) -> str:
    """Second level: escaping inside the whole filtergraph description."""
    return _escape(value, "\\'[],;")


def format_number(value: float) -> str:
    if isinstance(value, bool):
        return str(int(value))
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def format_value(value: OptionValue) -> str:
    if isinstance(value, (int, float)):
        return format_number(value)
    return escape_filtergraph(escape_option_value(value))


# =============================================================================
# Raw filter
# =============================================================================


@dataclass(frozen=True)
class Filter:
    """One ffmpeg filter invocation: name plus ordered options.

    Options with a ``None`` key are positional.
    """

    name: str
    options: tuple[tuple[str | None, OptionValue], ...] = ()

    def serialize(self) -> str:
        if not self.options:
            return self.name
        args = ":".join(
            format_value(value) if key is None else f"{key}={format_value(value)}"
            for key, value in self.options
        )
        return f"{self.name}={args}"


# =============================================================================
# Normalization nodes
# =============================================================================


@dataclass(frozen=True)
class ScaleToFit:
    """Letterbox the input into width x height on a black background."""

    width: int
    height: int
    flags: str | None = None

    def filters(self) -> list[Filter]:
        scale_opts: list[tuple[str | None, OptionValue]] = [
            (None, self.width),
            (None, self.height),
            ("force_original_aspect_ratio", "decrease"),
        ]
        if self.flags:
            scale_opts.append(("flags", self.flags))
        return [
            Filter("scale", tuple(scale_opts)),
            Filter(
                "pad",
                (
                    (None, self.width),
                    (None, self.height),
                    (None, "(ow-iw)/2"),
                    (None, "(oh-ih)/2"),
                    ("color", "black"),
                ),
            ),
        ]


@dataclass(frozen=True)
class PixelFormat:
    pix_fmt: str = "yuv420p"

    def filters(self) -> list[Filter]:
        return [Filter("format", (("pix_fmts", self.pix_fmt),))]


@dataclass(frozen=True)
class FrameRate:
    fps: int

    def filters(self) -> list[Filter]:
        return [Filter("fps", (("fps", self.fps),))]


@dataclass(frozen=True)
class SquarePixels:
    def filters(self) -> list[Filter]:
        return [Filter("setsar", ((None, 1),))]


# =============================================================================
# Draw nodes
# =============================================================================


class TextAnchor(str, Enum):
    """Which point of the line ``DrawText.x`` refers to."""

    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


@dataclass(frozen=True)
class PixelBox:
    x: int
    y: int
    width: int
    height: int

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2


@dataclass(frozen=True)
class DrawBox:
    x: int
    y: int
    width: int
    height: int
    color: str
    thickness: int | None = None  # None fills the box

    def filters(self) -> list[Filter]:
        if self.width <= 0 or self.height <= 0:
            return []
        return [
            Filter(
                "drawbox",
                (
                    ("x", self.x),
                    ("y", self.y),
                    ("w", self.width),
                    ("h", self.height),
                    ("color", normalize_color(self.color)),
                    ("t", "fill" if self.thickness is None else self.thickness),
                ),
            )
        ]


@dataclass(frozen=True)
class DrawLine:
    """A thick straight segment.

    ffmpeg has no line primitive: horizontal and vertical segments become a
    single box, diagonal ones are stamped with square boxes along the path.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    color: str
    thickness: int = 1

    def filters(self) -> list[Filter]:
        t = max(1, int(self.thickness))
        half = t / 2
        if round(self.x1) == round(self.x2) or round(self.y1) == round(self.y2):
            left, right = sorted((self.x1, self.x2))
            top, bottom = sorted((self.y1, self.y2))
            return DrawBox(
                x=round(left - half),
                y=round(top - half),
                width=max(t, round(right - left + t)),
                height=max(t, round(bottom - top + t)),
                color=self.color,
            ).filters()

        length = math.hypot(self.x2 - self.x1, self.y2 - self.y1)
        steps = min(MAX_LINE_STAMPS, max(1, math.ceil(length / max(1.0, half))))
        stamps: list[Filter] = []
        for i in range(steps + 1):
            px = self.x1 + (self.x2 - self.x1) * i / steps
            py = self.y1 + (self.y2 - self.y1) * i / steps
            stamps.extend(
                DrawBox(round(px - half), round(py - half), t, t, self.color).filters()
            )
        return stamps


@dataclass(frozen=True)
class DrawText:
    """One line of text.

    ``y`` is the top of the line. Italic is realized by font selection;
    underline and strikethrough are drawn as thin bars spanning
    ``estimated_width``.
    """

    text: str
    font_path: str
    font_size: int
    color: str
    x: float
    y: float
    anchor: TextAnchor = TextAnchor.CENTER
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False
    estimated_width: float = 0.0

    def _x_expr(self) -> str:
        x = format_number(self.x)
        if self.anchor is TextAnchor.CENTER:
            return f"{x}-text_w/2"
        if self.anchor is TextAnchor.RIGHT:
            return f"{x}-text_w"
        return x

    def _decorations(self) -> list[Filter]:
        if not (self.underline or self.strikethrough) or self.estimated_width <= 0:
            return []
        width = round(self.estimated_width)
        if self.anchor is TextAnchor.CENTER:
            left = round(self.x - width / 2)
        elif self.anchor is TextAnchor.RIGHT:
            left = round(self.x - width)
        else:
            left = round(self.x)
        bar = max(1, round(self.font_size / 15))
        result: list[Filter] = []
        if self.underline:
            result.extend(DrawBox(left, round(self.y + self.font_size * 0.95), width, bar, self.color).filters())
        if self.strikethrough:
            result.extend(DrawBox(left, round(self.y + self.font_size * 0.55), width, bar, self.color).filters())
        return result

    def filters(self) -> list[Filter]:
        drawtext = Filter(
            "drawtext",
            (
                ("fontfile", self.font_path),
                ("text", self.text),
                ("expansion", "none"),
                ("fontsize", self.font_size),
                ("fontcolor", normalize_color(self.color)),
                ("x", self._x_expr()),
                ("y", format_number(self.y)),
            ),
        )
        return [drawtext, *self._decorations()]


# =============================================================================
# Image overlays
# =============================================================================


@dataclass(frozen=True)
class PendingOverlay:
    """An image/logo element whose media still has to be fetched.

    Produced by the element renderer, resolved by the ffmpeg renderer into
    either an :class:`ImageOverlay` or a placeholder :class:`DrawBox`.
    """

    element_id: str
    box: PixelBox
    opacity: float = 1.0
    keep_proportions: bool = True
    urls: tuple[str, ...] = field(default_factory=tuple)  # priority order

    @property
    def media_url(self) -> str | None:
        return next((u for u in self.urls if u), None)


@dataclass(frozen=True)
class ImageOverlay:
    """A decoded image input composited at a pixel box."""

    image_path: str
    box: PixelBox
    opacity: float = 1.0


DrawNode = Union[DrawBox, DrawLine, DrawText]
FilterNode = Union[DrawBox, DrawLine, DrawText, PendingOverlay, ImageOverlay]
ChainNode = Union[ScaleToFit, PixelFormat, FrameRate, SquarePixels, DrawBox, DrawLine, DrawText]


def serialize_chain(nodes: Sequence[ChainNode]) -> str:
    """Serialize a linear chain of nodes to ``a=..,b=..`` syntax."""
    return ",".join(f.serialize() for node in nodes for f in node.filters())


def build_overlay_graph(
    base: Sequence[ChainNode],
    fragments: Sequence[FilterNode],
    tail: Sequence[ChainNode] = (),
    output_label: str = "vout",
) -> tuple[str, list[str]]:
    """Build a ``-filter_complex`` graph painting fragments in order.

    Input 0 is the scene media; every :class:`ImageOverlay` becomes an extra
    input starting at index 1, composited at its position in the fragment
    list so paint order is preserved.

    Returns:
        (filter_complex string, image paths in input order)
    """
    statements: list[str] = []
    image_inputs: list[str] = []
    current = "0:v"
    pending: list[ChainNode] = list(base)
    label_idx = 0

    def flush(target: str) -> None:
        nonlocal current
        chain = serialize_chain(pending) or "null"
        statements.append(f"[{current}]{chain}[{target}]")
        pending.clear()
        current = target

    for node in fragments:
        if isinstance(node, PendingOverlay):
            raise ValueError(f"Unresolved overlay for element {node.element_id}")
        if isinstance(node, ImageOverlay):
            if pending:
                flush(f"v{label_idx}")
                label_idx += 1
            input_idx = len(image_inputs) + 1
            image_inputs.append(node.image_path)
            ov_label = f"ov{input_idx}"
            ov_chain = [
                Filter("scale", ((None, max(1, node.box.width)), (None, max(1, node.box.height)))),
                Filter("format", (("pix_fmts", "rgba"),)),
            ]
            if node.opacity < 1:
                ov_chain.append(Filter("colorchannelmixer", (("aa", max(0.0, node.opacity)),)))
            statements.append(f"[{input_idx}:v]{','.join(f.serialize() for f in ov_chain)}[{ov_label}]")
            target = f"v{label_idx}"
            label_idx += 1
            statements.append(f"[{current}][{ov_label}]overlay=x={node.box.x}:y={node.box.y}[{target}]")
            current = target
        else:
            pending.append(node)

    pending.extend(tail)
    flush(output_label)
    return ";".join(statements), image_inputs
