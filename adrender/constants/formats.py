"""Render target tables: aspect-ratio formats and quality tiers.

Dimensions are multiples of 64 so that upstream generators can produce
backgrounds at the exact render size.
"""

from typing import TypedDict


class QualitySpec(TypedDict):
    bitrate: str
    fps: int


BASELINE_FORMAT = "9:16"

VIDEO_DIMENSIONS: dict[str, tuple[int, int]] = {
    "9:16": (1088, 1920),
    "16:9": (1920, 1088),
    "1:1": (1536, 1536),
    "4:5": (1216, 1536),
}

QUALITY_PRESETS: dict[str, QualitySpec] = {
    "high": {"bitrate": "12M", "fps": 30},
    "medium": {"bitrate": "6M", "fps": 30},
    "low": {"bitrate": "3M", "fps": 24},
}

DEFAULT_QUALITY = "high"

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp", ".bmp"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".mov", ".avi", ".webm", ".mkv", ".m4v"})

MIN_SCENE_DURATION = 0.1
MAX_SCENE_DURATION = 60.0
DEFAULT_SCENE_DURATION = 3.0
