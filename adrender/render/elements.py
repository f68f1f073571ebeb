"""Scene and element data model for the rendering core.

Request payloads (adrender.schemas.render) are converted into these
dataclasses once, at the edge of the pipeline. Each element kind is its own
dataclass carrying only the fields relevant to it; ``Element`` is the union
of all kinds.

Rotation is carried on every element for compatibility with the authoring
UI but render output is always unrotated.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from adrender.constants.formats import (
    BASELINE_FORMAT,
    DEFAULT_QUALITY,
    MIN_SCENE_DURATION,
    QUALITY_PRESETS,
    VIDEO_DIMENSIONS,
)
from adrender.schemas.render import ElementSpec, SceneSpec

logger = logging.getLogger(__name__)


class ShapeKind(str, Enum):
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    TRIANGLE = "triangle"


class CtaKind(str, Enum):
    BUTTON = "button"
    TAG = "tag"
    BANNER = "banner"


class TextAlign(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


@dataclass(frozen=True)
class Geometry:
    """Element box in percent of the canvas (0-100)."""

    x: float = 0.0
    y: float = 0.0
    width: float = 20.0
    height: float = 20.0


@dataclass
class TextStyle:
    color: str = "white"
    font_family: str = "Roboto"
    font_weight: str = "400"
    font_size: str = "48px"  # raw CSS value, scaled at render time
    text_align: TextAlign = TextAlign.CENTER
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False


# =============================================================================
# Element kinds
# =============================================================================


@dataclass(kw_only=True)
class _ElementBase:
    id: str
    geometry: Geometry
    opacity: float = 1.0
    z_index: int = 0
    rotation: float = 0.0  # never applied


@dataclass(kw_only=True)
class TextElement(_ElementBase):
    text: str = "Text Element"
    style: TextStyle = field(default_factory=TextStyle)


@dataclass(kw_only=True)
class ShapeElement(_ElementBase):
    shape: ShapeKind = ShapeKind.RECTANGLE
    color: str = "#3B82F6"


@dataclass(kw_only=True)
class CtaElement(_ElementBase):
    text: str = "Shop Now"
    cta_kind: CtaKind = CtaKind.BUTTON
    background_color: str = "#10B981"
    border_width: int = 0
    border_color: str = "#000000"
    box_shadow: str | None = None
    style: TextStyle = field(
        default_factory=lambda: TextStyle(font_weight="700", font_size="36px")
    )


@dataclass(kw_only=True)
class ImageElement(_ElementBase):
    """Logo or image overlay.

    The media URL is looked up in priority order: direct element URL,
    associated asset URL, then the URL found in the content payload.
    """

    is_logo: bool = False
    url: str | None = None
    asset_url: str | None = None
    content_url: str | None = None
    keep_proportions: bool = True

    @property
    def media_url(self) -> str | None:
        return self.url or self.asset_url or self.content_url

    @property
    def label(self) -> str:
        return "Logo" if self.is_logo else "Image"


@dataclass(kw_only=True)
class VideoPlaceholderElement(_ElementBase):
    pass


@dataclass(kw_only=True)
class AudioPlaceholderElement(_ElementBase):
    pass


Element = Union[
    TextElement,
    ShapeElement,
    CtaElement,
    ImageElement,
    VideoPlaceholderElement,
    AudioPlaceholderElement,
]


# =============================================================================
# Scenes, frame lists and render targets
# =============================================================================


@dataclass
class Scene:
    index: int
    order: int
    duration: float
    background_url: str | None = None
    video_url: str | None = None
    animate: bool = False
    animation_status: str | None = None
    background_color: str | None = None
    elements: list[Element] = field(default_factory=list)

    @property
    def use_animated_version(self) -> bool:
        """True only if a clip exists, the user opted in and animation is not disabled."""
        return bool(self.video_url) and self.animate is True and self.animation_status != "none"


@dataclass
class ProcessedScene:
    """A scene whose background media is available on local disk."""

    index: int
    local_path: str
    is_video: bool
    duration: float
    elements: list[Element] = field(default_factory=list)


@dataclass(frozen=True)
class FrameListEntry:
    file_path: str
    duration: float

    def __post_init__(self) -> None:
        if self.duration < MIN_SCENE_DURATION:
            object.__setattr__(self, "duration", MIN_SCENE_DURATION)


@dataclass(frozen=True)
class FontFile:
    path: str
    family: str
    weight: int


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int


@dataclass(frozen=True)
class RenderTarget:
    format: str
    quality: str
    width: int
    height: int
    bitrate: str
    fps: int

    @property
    def dimensions(self) -> Dimensions:
        return Dimensions(self.width, self.height)

    @classmethod
    def create(cls, format: str, quality: str = DEFAULT_QUALITY) -> "RenderTarget":
        if format not in VIDEO_DIMENSIONS:
            logger.warning(f"[RENDER] Unknown format '{format}', defaulting to {BASELINE_FORMAT}")
            format = BASELINE_FORMAT
        if quality not in QUALITY_PRESETS:
            logger.warning(f"[RENDER] Unknown quality '{quality}', defaulting to {DEFAULT_QUALITY}")
            quality = DEFAULT_QUALITY
        width, height = VIDEO_DIMENSIONS[format]
        preset = QUALITY_PRESETS[quality]
        return cls(format, quality, width, height, preset["bitrate"], preset["fps"])


def total_duration(frame_list: list[FrameListEntry]) -> float:
    return sum(entry.duration for entry in frame_list)


# =============================================================================
# Payload parsing
# =============================================================================


def parse_content(content: str | dict[str, Any] | None) -> dict[str, Any]:
    """Parse an element content payload.

    Content is either a JSON object string, an already-decoded object, or
    plain text.
    """
    if content is None:
        return {}
    if isinstance(content, dict):
        return content
    stripped = content.strip()
    if stripped.startswith("{"):
        try:
            decoded = json.loads(stripped)
            if isinstance(decoded, dict):
                return decoded
        except json.JSONDecodeError:
            logger.debug("Content looks like JSON but does not parse; using it as text")
    return {"text": content}


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _parse_text_style(style: dict[str, Any], payload: dict[str, Any], element_style: dict[str, Any], defaults: TextStyle) -> TextStyle:
    decoration = str(style.get("textDecoration") or "none")
    align = str(style.get("textAlign") or defaults.text_align.value).lower()
    font_size = _first(style.get("fontSize"), defaults.font_size)
    return TextStyle(
        color=str(_first(style.get("color"), defaults.color)),
        font_family=str(
            _first(
                style.get("fontFamily"),
                payload.get("fontFamily"),
                element_style.get("fontFamily"),
                defaults.font_family,
            )
        ),
        font_weight=str(
            _first(
                style.get("fontWeight"),
                payload.get("fontWeight"),
                element_style.get("fontWeight"),
                defaults.font_weight,
            )
        ),
        font_size=str(font_size),
        text_align=TextAlign(align) if align in TextAlign._value2member_map_ else TextAlign.CENTER,
        italic=str(style.get("fontStyle") or "").lower() == "italic",
        underline="underline" in decoration,
        strikethrough="line-through" in decoration,
    )


def _parse_px(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(float(str(value).strip().removesuffix("px")))
    except ValueError:
        return default


def parse_element(spec: ElementSpec) -> Element | None:
    """Convert an authored element into its typed variant.

    Returns None (with a warning) for unknown element types.
    """
    payload = parse_content(spec.content)
    element_style = spec.style or {}
    style = payload.get("style") if isinstance(payload.get("style"), dict) else element_style

    geometry = Geometry(
        x=spec.x,
        y=spec.y,
        width=spec.width if spec.width is not None else 20.0,
        height=spec.height if spec.height is not None else 20.0,
    )
    base = {
        "id": spec.id or f"element-{id(spec)}",
        "geometry": geometry,
        "opacity": spec.opacity,
        "z_index": spec.z_index,
        "rotation": spec.rotation,
    }
    kind = spec.type.lower()
    text = payload.get("text")

    if kind == "text":
        return TextElement(
            **base,
            text=str(text) if text else "Text Element",
            style=_parse_text_style(style, payload, element_style, TextStyle()),
        )
    if kind == "shape":
        shape = str(payload.get("shapeType") or style.get("shapeType") or "rectangle").lower()
        return ShapeElement(
            **base,
            shape=ShapeKind(shape) if shape in ShapeKind._value2member_map_ else ShapeKind.RECTANGLE,
            color=str(_first(style.get("backgroundColor"), "#3B82F6")),
        )
    if kind == "cta":
        cta = str(payload.get("ctaType") or "button").lower()
        return CtaElement(
            **base,
            text=str(text) if text else "Shop Now",
            cta_kind=CtaKind(cta) if cta in CtaKind._value2member_map_ else CtaKind.BANNER,
            background_color=str(_first(style.get("backgroundColor"), "#10B981")),
            border_width=_parse_px(style.get("borderWidth")),
            border_color=str(_first(style.get("borderColor"), "#000000")),
            box_shadow=str(style["boxShadow"]) if style.get("boxShadow") not in (None, "", "none") else None,
            style=_parse_text_style(
                style, payload, element_style, TextStyle(font_weight="700", font_size="36px")
            ),
        )
    if kind in ("image", "logo"):
        return ImageElement(
            **base,
            is_logo=kind == "logo",
            url=spec.url,
            asset_url=spec.asset_url,
            content_url=_first(payload.get("url"), payload.get("src")),
            keep_proportions=(
                spec.keep_proportions
                if spec.keep_proportions is not None
                else payload.get("keepProportions") is not False
            ),
        )
    if kind == "video":
        return VideoPlaceholderElement(**base)
    if kind == "audio":
        return AudioPlaceholderElement(**base)

    logger.warning(f"[ELEMENT] Unknown element type '{spec.type}' ({spec.id}), skipping")
    return None


def parse_scene(spec: SceneSpec, index: int) -> Scene:
    elements = [e for e in (parse_element(s) for s in spec.elements) if e is not None]
    # Stable sort keeps authoring order for equal zIndex
    elements.sort(key=lambda e: e.z_index)
    return Scene(
        index=index,
        order=spec.order,
        duration=max(MIN_SCENE_DURATION, spec.duration),
        background_url=spec.background_url,
        video_url=spec.video_url,
        animate=spec.animate,
        animation_status=spec.animation_status,
        background_color=spec.background_color,
        elements=elements,
    )
