"""Asset processor: bring every scene's background media onto local disk.

A scene never fails here. Clip downloads fall back to the still image,
image downloads fall back to a generated placeholder frame, and any other
error produces an error placeholder.
"""

import asyncio
import logging
from pathlib import Path
from urllib.parse import urlparse

from PIL import Image, ImageDraw, ImageFont

from adrender.constants.formats import DEFAULT_SCENE_DURATION, IMAGE_EXTENSIONS, VIDEO_EXTENSIONS
from adrender.exceptions import AssetDownloadError
from adrender.render.colors import to_rgb
from adrender.render.elements import Dimensions, ProcessedScene, Scene
from adrender.services.download_service import AssetDownloader

logger = logging.getLogger(__name__)


def _url_suffix(url: str) -> str:
    if url.startswith("data:"):
        mime = url[5:].split(";", 1)[0].split(",", 1)[0]
        return {"video/mp4": ".mp4", "video/quicktime": ".mov", "image/png": ".png", "image/webp": ".webp"}.get(mime, ".jpg")
    return Path(urlparse(url).path).suffix.lower()


def create_placeholder_frame(path: Path, dimensions: Dimensions, label: str, color: str = "black") -> Path:
    """Write a solid color JPEG with a centered label."""
    img = Image.new("RGB", (dimensions.width, dimensions.height), color=to_rgb(color))
    draw = ImageDraw.Draw(img)
    font = ImageFont.load_default(size=max(24, dimensions.width // 15))
    left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
    draw.text(
        ((dimensions.width - (right - left)) / 2 - left, (dimensions.height - (bottom - top)) / 2 - top),
        label,
        font=font,
        fill=(255, 255, 255),
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path, "JPEG", quality=92)
    return path


class AssetProcessor:
    def __init__(self, downloader: AssetDownloader):
        self.downloader = downloader

    async def process(
        self,
        scenes: list[Scene],
        work_dir: str | Path,
        dimensions: Dimensions,
    ) -> list[ProcessedScene]:
        """Download all scene backgrounds concurrently, preserving scene order."""
        work_dir = Path(work_dir)
        results = await asyncio.gather(*(self._process_scene(s, work_dir, dimensions) for s in scenes))
        processed = sorted(results, key=lambda p: p.index)

        if not processed:
            logger.warning("[ASSET] No scenes to process, using a fallback frame")
            path = await asyncio.to_thread(
                create_placeholder_frame, work_dir / "fallback-scene.jpg", dimensions, "No Scenes"
            )
            processed = [ProcessedScene(0, str(path), False, DEFAULT_SCENE_DURATION, [])]
        return processed

    async def _process_scene(self, scene: Scene, work_dir: Path, dimensions: Dimensions) -> ProcessedScene:
        try:
            return await self._fetch_background(scene, work_dir, dimensions)
        except Exception as e:
            logger.error(f"[ASSET] Scene {scene.index + 1} failed: {e}")
            path = await asyncio.to_thread(
                create_placeholder_frame,
                work_dir / f"scene-{scene.index + 1:03d}-error.jpg",
                dimensions,
                f"Scene {scene.index + 1} Error",
                "darkred",
            )
            return ProcessedScene(scene.index, str(path), False, scene.duration, scene.elements)

    async def _fetch_background(self, scene: Scene, work_dir: Path, dimensions: Dimensions) -> ProcessedScene:
        number = f"{scene.index + 1:03d}"

        if scene.use_animated_version:
            dest = work_dir / f"scene-{number}-original.mp4"
            try:
                await self.downloader.download(scene.video_url, dest)
                logger.info(f"[ASSET] Scene {scene.index + 1}: using clip")
                return ProcessedScene(scene.index, str(dest), True, scene.duration, scene.elements)
            except AssetDownloadError as e:
                logger.warning(f"[ASSET] Scene {scene.index + 1}: clip unavailable, using image ({e})")

        if scene.background_url:
            suffix = _url_suffix(scene.background_url)
            is_video = suffix in VIDEO_EXTENSIONS
            if not is_video and suffix not in IMAGE_EXTENSIONS:
                suffix = ".jpg"
            dest = work_dir / f"scene-{number}-original{suffix}"
            try:
                await self.downloader.download(scene.background_url, dest)
                return ProcessedScene(scene.index, str(dest), is_video, scene.duration, scene.elements)
            except AssetDownloadError as e:
                logger.warning(f"[ASSET] Scene {scene.index + 1}: background unavailable ({e})")

        path = await asyncio.to_thread(
            create_placeholder_frame,
            work_dir / f"scene-{number}-base.jpg",
            dimensions,
            f"Scene {scene.index + 1}",
            scene.background_color or "black",
        )
        return ProcessedScene(scene.index, str(path), False, scene.duration, scene.elements)
