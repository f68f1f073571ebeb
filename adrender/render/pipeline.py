"""Render orchestrator.

Turns a render request into one MP4:

1. create an isolated job directory
2. download scene backgrounds (AssetProcessor)
3. render each scene's elements and burn them into the scene media
4. concatenate the scenes (FFmpegRenderer.render_final)
5. verify the output and clean up intermediates

Only FatalJobError leaves ``RenderPipeline.render``; every per-scene or
per-element failure degrades to a placeholder, default font or unfiltered
media instead.
"""

import asyncio
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional
from uuid import uuid4

from adrender.config import Settings, get_settings
from adrender.exceptions import FatalJobError, FilterApplicationError
from adrender.render.asset_processor import AssetProcessor
from adrender.render.element_renderer import ElementRenderer
from adrender.render.elements import (
    FrameListEntry,
    ProcessedScene,
    RenderTarget,
    parse_scene,
    total_duration,
)
from adrender.render.ffmpeg_renderer import FFmpegRenderer
from adrender.render.fonts import FontResolver
from adrender.schemas.render import RenderRequest
from adrender.services.download_service import AssetDownloader

logger = logging.getLogger(__name__)


# ============================================================================
# Enums and dataclasses
# ============================================================================


class RenderStatus(Enum):
    """Render job status."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPOSITING = "compositing"
    ENCODING = "encoding"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RenderProgress:
    """Progress information for a render job."""

    job_id: str
    status: RenderStatus
    percent: float = 0.0
    current_step: Optional[str] = None
    elapsed_ms: int = 0
    error_message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "percent": self.percent,
            "current_step": self.current_step,
            "elapsed_ms": self.elapsed_ms,
            "error_message": self.error_message,
        }


@dataclass
class RenderResult:
    output_path: str
    duration: float
    target: RenderTarget
    frame_list: list[FrameListEntry] = field(default_factory=list)


# ============================================================================
# Pipeline
# ============================================================================


class RenderPipeline:
    """One render job.

    The font resolver and downloader are passed in so their caches can be
    shared across jobs; the working directory belongs to this job alone.
    """

    def __init__(
        self,
        font_resolver: FontResolver,
        downloader: AssetDownloader,
        settings: Settings | None = None,
        job_id: Optional[str] = None,
    ):
        self.settings = settings or get_settings()
        self.job_id = job_id or uuid4().hex[:12]
        self.fonts = font_resolver
        self.downloader = downloader
        self.element_renderer = ElementRenderer(font_resolver, self.settings)
        self.asset_processor = AssetProcessor(downloader)
        self.ffmpeg = FFmpegRenderer(downloader, self.settings)
        self.work_dir: Path | None = None

        self._progress_callback: Optional[Callable[[RenderProgress], None]] = None
        self._started_at = time.monotonic()

    def set_progress_callback(self, callback: Callable[[RenderProgress], None]) -> None:
        """Set callback for progress updates."""
        self._progress_callback = callback

    def _update_progress(
        self,
        status: RenderStatus,
        percent: float,
        step: str,
        error_message: Optional[str] = None,
    ) -> None:
        logger.info(f"[RENDER] {self.job_id} {percent:.0f}% {step}")
        if self._progress_callback:
            self._progress_callback(
                RenderProgress(
                    job_id=self.job_id,
                    status=status,
                    percent=percent,
                    current_step=step,
                    elapsed_ms=int((time.monotonic() - self._started_at) * 1000),
                    error_message=error_message,
                )
            )

    def _create_work_dir(self) -> Path:
        name = f"render-{int(time.time() * 1000)}-{self.job_id}"
        for root in (Path(self.settings.render_root), Path.home() / "renders"):
            try:
                work_dir = root.resolve() / name
                work_dir.mkdir(parents=True, exist_ok=False)
                return work_dir
            except OSError as e:
                logger.warning(f"[RENDER] Cannot use {root} for renders: {e}")
        raise FatalJobError("No writable render directory")

    # ========================================================================
    # Entry point
    # ========================================================================

    async def render(self, request: RenderRequest) -> RenderResult:
        """Render the request to an MP4 inside the job directory.

        Raises:
            FatalJobError: when no output could be produced
        """
        self._started_at = time.monotonic()
        self._update_progress(RenderStatus.PENDING, 0, "Preparing render")

        target = RenderTarget.create(request.format, request.quality)
        ordered = sorted(request.scenes, key=lambda s: s.order)
        scenes = [parse_scene(spec, i) for i, spec in enumerate(ordered)]
        self.work_dir = self._create_work_dir()
        logger.info(
            f"[RENDER] Job {self.job_id} project={request.project_id}: {len(scenes)} scene(s), "
            f"{target.format} {target.width}x{target.height}, quality={target.quality}"
        )

        output_path: Path | None = None
        try:
            self._update_progress(RenderStatus.DOWNLOADING, 10, "Downloading scene assets")
            processed = await self.asset_processor.process(scenes, self.work_dir, target.dimensions)

            self._update_progress(RenderStatus.COMPOSITING, 30, "Rendering scene elements")
            frame_list = await self._compose_scenes(processed, target)
            if not frame_list:
                raise FatalJobError("No frames could be prepared")

            total = total_duration(frame_list)
            output_path = self.work_dir / f"output-{total:.1f}s.mp4"
            incomplete_path = self.work_dir / f"output-{total:.1f}s-incomplete.mp4"

            self._update_progress(RenderStatus.ENCODING, 80, "Encoding final video")
            await self.ffmpeg.render_final(frame_list, str(incomplete_path), target)
            os.replace(incomplete_path, output_path)
        except FatalJobError as e:
            self._cleanup_failed(output_path)
            self._update_progress(RenderStatus.FAILED, 100, "Render failed", e.message)
            raise
        except Exception as e:
            logger.exception(f"[RENDER] Job {self.job_id} failed")
            self._cleanup_failed(output_path)
            self._update_progress(RenderStatus.FAILED, 100, "Render failed", str(e))
            raise FatalJobError(f"Video rendering failed: {e}", cause=e) from e

        if not self.settings.keep_intermediates:
            self._cleanup_intermediates(output_path)
        self._update_progress(RenderStatus.COMPLETED, 100, "Render complete")
        return RenderResult(str(output_path), total, target, frame_list)

    # ========================================================================
    # Scene composition
    # ========================================================================

    async def _compose_scenes(
        self,
        processed: list[ProcessedScene],
        target: RenderTarget,
    ) -> list[FrameListEntry]:
        # Element rendering runs concurrently; ffmpeg calls are serialized by the renderer
        entries = await asyncio.gather(*(self._compose_scene(scene, target) for scene in processed))
        return list(entries)

    async def _compose_scene(self, scene: ProcessedScene, target: RenderTarget) -> FrameListEntry:
        assert self.work_dir is not None
        number = f"{scene.index + 1:03d}"
        fragments = await self.element_renderer.render_scene(
            scene.elements, target.width, target.height, target.format
        )

        if not scene.is_video and not fragments:
            return FrameListEntry(scene.local_path, scene.duration)

        suffix = ".mp4" if scene.is_video else ".jpg"
        output_path = str(self.work_dir / f"scene-{number}{suffix}")
        try:
            if scene.is_video:
                await self.ffmpeg.apply_filters_to_video(
                    scene.local_path, output_path, fragments, target, scene.duration, self.work_dir
                )
            else:
                await self.ffmpeg.apply_filters_to_image(
                    scene.local_path, output_path, fragments, target, self.work_dir
                )
        except FilterApplicationError as e:
            logger.warning(f"[RENDER] Scene {scene.index + 1}: filters failed, using unfiltered media ({e.message})")
            output_path = str(self.work_dir / f"scene-{number}{Path(scene.local_path).suffix}")
            await asyncio.to_thread(shutil.copyfile, scene.local_path, output_path)

        return FrameListEntry(output_path, scene.duration)

    # ========================================================================
    # Cleanup
    # ========================================================================

    def _cleanup_failed(self, output_path: Path | None) -> None:
        """Remove partially written outputs after a failure."""
        if self.work_dir is None or not self.work_dir.exists():
            return
        candidates = set(self.work_dir.glob("output-*.mp4")) | set(self.work_dir.glob("*-incomplete.mp4"))
        if output_path is not None:
            candidates.add(output_path)
        for path in candidates:
            try:
                path.unlink(missing_ok=True)
                logger.info(f"[RENDER] Removed partial output {path.name}")
            except OSError as e:
                logger.warning(f"[RENDER] Could not remove {path}: {e}")

    def _cleanup_intermediates(self, output_path: Path) -> None:
        """Delete everything in the job directory except the final output."""
        if self.work_dir is None:
            return
        for path in self.work_dir.iterdir():
            if path == output_path:
                continue
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    path.unlink()
            except OSError as e:
                logger.warning(f"[RENDER] Could not remove intermediate {path}: {e}")
