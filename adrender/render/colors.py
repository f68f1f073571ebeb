"""Color normalization for ffmpeg filter colors.

Every color is normalized to ``0xRRGGBB`` (uppercase) with an ``@alpha``
suffix when alpha is below 1. The output form is itself accepted as input,
so normalization is idempotent.
"""

import logging
import re

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "0xFFFFFF"

NAMED_COLORS: dict[str, str] = {
    "white": "FFFFFF",
    "black": "000000",
    "red": "FF0000",
    "green": "008000",
    "blue": "0000FF",
    "yellow": "FFFF00",
    "cyan": "00FFFF",
    "magenta": "FF00FF",
    "gray": "808080",
    "grey": "808080",
    "lightgray": "D3D3D3",
    "lightgrey": "D3D3D3",
    "darkgray": "A9A9A9",
    "darkgrey": "A9A9A9",
    "darkred": "8B0000",
    "orange": "FFA500",
    "purple": "800080",
    "violet": "EE82EE",
    "brown": "A52A2A",
    "pink": "FFC0CB",
    "lime": "00FF00",
    "olive": "808000",
    "teal": "008080",
    "navy": "000080",
    "maroon": "800000",
}

_HEX_RE = re.compile(r"^(?:#|0x)?([0-9a-f]{3}|[0-9a-f]{6})$", re.IGNORECASE)
_RGB_RE = re.compile(
    r"^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*([0-9]*\.?[0-9]+)\s*)?\)$",
    re.IGNORECASE,
)


def _format_alpha(alpha: float) -> str:
    return f"{alpha:.3f}".rstrip("0").rstrip(".") or "0"


def _compose(hex6: str, alpha: float) -> str:
    alpha = round(max(0.0, min(1.0, alpha)), 3)
    color = f"0x{hex6.upper()}"
    if alpha < 1:
        return f"{color}@{_format_alpha(alpha)}"
    return color


def _parse_alpha(raw: str) -> float | None:
    try:
        return float(raw)
    except ValueError:
        return None


def normalize_color(value: str | None) -> str:
    """Normalize a CSS-ish color to ffmpeg's ``0xRRGGBB[@alpha]`` form.

    Accepts 3/6 digit hex (with ``#``, ``0x`` or no prefix), ``rgb()``,
    ``rgba()``, ``transparent``, named colors and an optional ``@alpha``
    suffix. Anything else becomes white with a warning.
    """
    if value is None:
        return DEFAULT_COLOR
    raw = str(value).strip()
    if not raw:
        return DEFAULT_COLOR

    alpha = 1.0
    if "@" in raw:
        base, _, alpha_raw = raw.rpartition("@")
        parsed = _parse_alpha(alpha_raw)
        if parsed is None:
            logger.warning(f"[COLOR] Unrecognized color '{value}', using white")
            return DEFAULT_COLOR
        raw, alpha = base.strip(), parsed

    lowered = raw.lower()
    if lowered == "transparent":
        return _compose("000000", 0.0)

    if lowered in NAMED_COLORS:
        return _compose(NAMED_COLORS[lowered], alpha)

    match = _HEX_RE.match(raw)
    if match:
        digits = match.group(1)
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        return _compose(digits, alpha)

    match = _RGB_RE.match(raw)
    if match:
        r, g, b = (min(255, int(match.group(i))) for i in (1, 2, 3))
        if match.group(4) is not None:
            alpha *= float(match.group(4))
        return _compose(f"{r:02X}{g:02X}{b:02X}", alpha)

    logger.warning(f"[COLOR] Unrecognized color '{value}', using white")
    return DEFAULT_COLOR


def with_opacity(color: str, opacity: float) -> str:
    """Normalize ``color`` and multiply its alpha by ``opacity``.

    Always emits an explicit alpha so the filter output is unambiguous.
    """
    normalized = normalize_color(color)
    base, _, alpha_raw = normalized.partition("@")
    alpha = float(alpha_raw) if alpha_raw else 1.0
    alpha = max(0.0, min(1.0, alpha * opacity))
    return f"{base}@{_format_alpha(alpha)}"


def to_rgb(color: str | None) -> tuple[int, int, int]:
    """Normalize ``color`` and return its (r, g, b) components for Pillow."""
    hex6 = normalize_color(color).partition("@")[0][2:]
    return int(hex6[0:2], 16), int(hex6[2:4], 16), int(hex6[4:6], 16)
