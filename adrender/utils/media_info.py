"""Media file information utilities using FFprobe and Pillow."""

import json
import os
import subprocess
from dataclasses import dataclass

from PIL import Image

from adrender.config import get_settings


@dataclass
class MediaInfo:
    """Media file information."""

    duration: float | None = None  # seconds
    size_bytes: int | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    has_video: bool = False
    has_audio: bool = False


def _run_ffprobe(file_path: str, *args: str) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def _parse_rate(rate: str | None) -> float | None:
    if not rate or "/" not in rate:
        return None
    num, den = rate.split("/", 1)
    try:
        return round(int(num) / int(den), 3) if int(den) > 0 else None
    except ValueError:
        return None


def get_media_info(file_path: str) -> MediaInfo:
    """
    Get container and first video stream information.

    Raises:
        RuntimeError: If ffprobe fails
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams")
    info = MediaInfo()

    format_info = data.get("format", {})
    if "duration" in format_info:
        info.duration = float(format_info["duration"])
    if "size" in format_info:
        info.size_bytes = int(format_info["size"])
    elif os.path.exists(file_path):
        info.size_bytes = os.path.getsize(file_path)

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")
        if codec_type == "video" and not info.has_video:
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.video_codec = stream.get("codec_name")
            info.fps = _parse_rate(stream.get("r_frame_rate"))
            if info.duration is None and "duration" in stream:
                info.duration = float(stream["duration"])
        elif codec_type == "audio":
            info.has_audio = True

    return info


def get_image_size(file_path: str) -> tuple[int, int]:
    """Return (width, height) of an image file.

    Raises:
        OSError: If the file is not a readable image
    """
    with Image.open(file_path) as img:
        return img.size
