"""FFmpeg process renderer.

Applies element filter nodes to individual scene media, resolves pending
image overlays, and concatenates the scene files into the final video
using one of three strategies:

- duration-control: concat demuxer manifest + one filter chain
- complex-filter: every scene as its own input, joined with ``concat``
- mixed-content-fallback: normalize every scene to a clip first, then
  run duration-control over the normalized clips

Homogeneous frame lists try them in that order. Mixed lists (images and
clips together) start with the mixed-content fallback, since the concat
demuxer cannot splice still images and clips reliably.
"""

import asyncio
import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Sequence

from adrender.config import Settings, get_settings
from adrender.constants.formats import IMAGE_EXTENSIONS, VIDEO_EXTENSIONS
from adrender.exceptions import (
    AssetDownloadError,
    EncodeStrategyError,
    FatalJobError,
    FilterApplicationError,
    VerificationError,
)
from adrender.render.elements import FrameListEntry, RenderTarget, total_duration
from adrender.render.filters import (
    DrawBox,
    DrawNode,
    Filter,
    FilterNode,
    FrameRate,
    ImageOverlay,
    PendingOverlay,
    PixelBox,
    PixelFormat,
    ScaleToFit,
    SquarePixels,
    build_overlay_graph,
    format_number,
    serialize_chain,
)
from adrender.services.download_service import AssetDownloader
from adrender.utils.media_info import MediaInfo, get_image_size, get_media_info

logger = logging.getLogger(__name__)

# Placeholder colors for overlays that could not be resolved
OVERLAY_DOWNLOAD_FAILED_COLOR = "red@0.7"
OVERLAY_PROCESSING_FAILED_COLOR = "red@0.3"
OVERLAY_MISSING_URL_COLOR = "gray@0.5"

COLOR_FLAGS = ["-color_primaries", "bt709", "-color_trc", "bt709", "-colorspace", "bt709"]


class RenderStrategy(str, Enum):
    DURATION_CONTROL = "duration-control"
    COMPLEX_FILTER = "complex-filter"
    MIXED_CONTENT = "mixed-content-fallback"


def media_kind(path: str) -> str:
    suffix = Path(path).suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return "image"
    if suffix in VIDEO_EXTENSIONS:
        return "video"
    return "unknown"


def is_mixed_content(frame_list: Sequence[FrameListEntry]) -> bool:
    kinds = {media_kind(entry.file_path) for entry in frame_list}
    return "image" in kinds and "video" in kinds


def select_strategies(frame_list: Sequence[FrameListEntry]) -> list[RenderStrategy]:
    """Ordered strategies to try for a frame list."""
    if is_mixed_content(frame_list):
        return [RenderStrategy.MIXED_CONTENT, RenderStrategy.COMPLEX_FILTER]
    return [
        RenderStrategy.DURATION_CONTROL,
        RenderStrategy.COMPLEX_FILTER,
        RenderStrategy.MIXED_CONTENT,
    ]


def _escape_concat_path(path: str) -> str:
    return path.replace("'", "'\\''")


def build_frame_list_manifest(frame_list: Sequence[FrameListEntry]) -> str:
    """Concat demuxer manifest; clips get an outpoint so they never overrun."""
    lines: list[str] = []
    for entry in frame_list:
        lines.append(f"file '{_escape_concat_path(str(Path(entry.file_path).resolve()))}'")
        if media_kind(entry.file_path) == "video":
            lines.append(f"outpoint {entry.duration:.3f}")
        lines.append(f"duration {entry.duration:.3f}")
    return "\n".join(lines) + "\n"


def _scale_bitrate(bitrate: str, factor: float) -> str:
    match = re.fullmatch(r"(\d+(?:\.\d+)?)([kKmM]?)", bitrate)
    if not match:
        return bitrate
    return f"{format_number(float(match.group(1)) * factor)}{match.group(2)}"


def fit_contained(box: PixelBox, image_width: int, image_height: int) -> PixelBox:
    """Largest box with the image's aspect ratio centered inside ``box``."""
    if image_width <= 0 or image_height <= 0 or box.width <= 0 or box.height <= 0:
        return box
    scale = min(box.width / image_width, box.height / image_height)
    width = max(1, round(image_width * scale))
    height = max(1, round(image_height * scale))
    return PixelBox(box.x + (box.width - width) // 2, box.y + (box.height - height) // 2, width, height)


class FFmpegRenderer:
    """Runs ffmpeg for one render job.

    Encodes are serialized through a per-instance lock; use one instance
    per job so separate jobs can encode in parallel.
    """

    def __init__(self, downloader: AssetDownloader, settings: Settings | None = None):
        self.downloader = downloader
        self.settings = settings or get_settings()
        self.ffmpeg_path = self.settings.ffmpeg_path
        self._encode_lock = asyncio.Lock()

    # =========================================================================
    # Subprocess
    # =========================================================================

    async def _run(self, cmd: list[str], description: str) -> None:
        logger.debug(f"[FFMPEG] {description}: {' '.join(cmd)}")
        async with self._encode_lock:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                _, stderr = await asyncio.wait_for(
                    proc.communicate(), timeout=self.settings.render_ffmpeg_timeout_seconds
                )
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                raise RuntimeError(f"{description} timed out")

        if proc.returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="replace")
            logger.error(f"[FFMPEG] {description} failed: {stderr_text[-2000:]}")
            raise RuntimeError(f"{description} failed (exit {proc.returncode}): {stderr_text[-500:]}")

    def encode_options(self, target: RenderTarget) -> list[str]:
        """H.264 output options shared by every video encode."""
        return [
            "-r", str(target.fps),
            "-fps_mode", "cfr",
            "-pix_fmt", "yuv420p",
            "-c:v", "libx264",
            "-profile:v", "high",
            "-preset", "medium",
            "-b:v", target.bitrate,
            "-maxrate", _scale_bitrate(target.bitrate, 1.33),
            "-bufsize", _scale_bitrate(target.bitrate, 2),
            "-g", str(target.fps),
            "-keyint_min", str(target.fps),
            "-sc_threshold", "0",
            *COLOR_FLAGS,
            "-movflags", "+faststart",
            "-max_muxing_queue_size", str(self.settings.render_ffmpeg_max_muxing_queue),
            "-threads", str(self.settings.render_ffmpeg_threads),
        ]

    # =========================================================================
    # Image overlay resolution
    # =========================================================================

    async def resolve_overlays(
        self,
        fragments: Sequence[FilterNode],
        work_dir: str | Path,
        prefix: str = "overlay",
    ) -> list[FilterNode]:
        """Replace every PendingOverlay with an ImageOverlay or placeholder box."""
        work_dir = Path(work_dir)
        pending = [(i, f) for i, f in enumerate(fragments) if isinstance(f, PendingOverlay)]
        if not pending:
            return list(fragments)

        resolved = await asyncio.gather(
            *(self._resolve_overlay(f, work_dir / f"{prefix}-{i}") for i, f in pending)
        )
        result = list(fragments)
        for (i, _), node in zip(pending, resolved):
            result[i] = node
        return result

    async def _resolve_overlay(self, overlay: PendingOverlay, dest_stem: Path) -> ImageOverlay | DrawBox:
        box = overlay.box

        def placeholder(color: str) -> DrawBox:
            return DrawBox(box.x, box.y, box.width, box.height, color)

        url = overlay.media_url
        if not url:
            logger.warning(f"[OVERLAY] No media URL for element {overlay.element_id}")
            return placeholder(OVERLAY_MISSING_URL_COLOR)

        suffix = Path(url.split("?", 1)[0]).suffix.lower()
        dest = dest_stem.with_suffix(suffix if suffix in IMAGE_EXTENSIONS else ".png")
        try:
            path = await self.downloader.download(url, dest)
        except AssetDownloadError as e:
            logger.warning(f"[OVERLAY] Download failed for element {overlay.element_id}: {e}")
            return placeholder(OVERLAY_DOWNLOAD_FAILED_COLOR)

        try:
            width, height = await asyncio.to_thread(get_image_size, str(path))
        except OSError as e:
            logger.warning(f"[OVERLAY] Unreadable image for element {overlay.element_id}: {e}")
            return placeholder(OVERLAY_PROCESSING_FAILED_COLOR)

        if overlay.keep_proportions:
            box = fit_contained(box, width, height)
        return ImageOverlay(image_path=str(path), box=box, opacity=overlay.opacity)

    # =========================================================================
    # Per-scene filter application
    # =========================================================================

    def build_image_filter_command(
        self,
        input_path: str,
        output_path: str,
        fragments: Sequence[FilterNode],
        target: RenderTarget,
    ) -> list[str]:
        graph, images = build_overlay_graph([ScaleToFit(target.width, target.height)], fragments)
        cmd = [self.ffmpeg_path, "-y", "-i", input_path]
        for image in images:
            cmd += ["-i", image]
        cmd += [
            "-filter_complex", graph,
            "-map", "[vout]",
            "-frames:v", "1",
            "-q:v", "2",
            output_path,
        ]
        return cmd

    def build_video_filter_command(
        self,
        input_path: str,
        output_path: str,
        fragments: Sequence[FilterNode],
        target: RenderTarget,
        duration: float,
    ) -> list[str]:
        graph, images = build_overlay_graph(
            [ScaleToFit(target.width, target.height)],
            fragments,
            tail=[FrameRate(target.fps), PixelFormat()],
        )
        # Looping the input and cutting the output conforms the clip to its scene duration
        cmd = [self.ffmpeg_path, "-y", "-stream_loop", "-1", "-i", input_path]
        for image in images:
            cmd += ["-i", image]
        cmd += [
            "-filter_complex", graph,
            "-map", "[vout]",
            "-an",
            "-t", format_number(duration),
            *self.encode_options(target),
            output_path,
        ]
        return cmd

    async def apply_filters_to_image(
        self,
        input_path: str,
        output_path: str,
        fragments: Sequence[FilterNode],
        target: RenderTarget,
        work_dir: str | Path,
    ) -> str:
        """Burn fragments into a still image.

        Raises:
            FilterApplicationError: if ffmpeg fails
        """
        resolved = await self.resolve_overlays(fragments, work_dir, Path(output_path).stem + "-overlay")
        cmd = self.build_image_filter_command(input_path, output_path, resolved, target)
        try:
            await self._run(cmd, f"Image filters for {Path(input_path).name}")
        except (RuntimeError, OSError) as e:
            raise FilterApplicationError(str(e), cause=e) from e
        return output_path

    async def apply_filters_to_video(
        self,
        input_path: str,
        output_path: str,
        fragments: Sequence[FilterNode],
        target: RenderTarget,
        duration: float,
        work_dir: str | Path,
    ) -> str:
        """Burn fragments into a clip and conform it to ``duration``.

        Raises:
            FilterApplicationError: if ffmpeg fails
        """
        resolved = await self.resolve_overlays(fragments, work_dir, Path(output_path).stem + "-overlay")
        cmd = self.build_video_filter_command(input_path, output_path, resolved, target, duration)
        try:
            await self._run(cmd, f"Video filters for {Path(input_path).name}")
        except (RuntimeError, OSError) as e:
            raise FilterApplicationError(str(e), cause=e) from e
        return output_path

    # =========================================================================
    # Final render strategies
    # =========================================================================

    def build_duration_control_command(
        self,
        manifest_path: str,
        output_path: str,
        target: RenderTarget,
        fragments: Sequence[DrawNode] = (),
    ) -> list[str]:
        chain = serialize_chain(
            [ScaleToFit(target.width, target.height), *fragments, PixelFormat()]
        )
        return [
            self.ffmpeg_path,
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", manifest_path,
            "-vf", chain,
            "-an",
            *self.encode_options(target),
            output_path,
        ]

    def build_complex_filter_command(
        self,
        frame_list: Sequence[FrameListEntry],
        output_path: str,
        target: RenderTarget,
        fragments: Sequence[DrawNode] = (),
    ) -> list[str]:
        cmd = [self.ffmpeg_path, "-y"]
        statements = []
        for i, entry in enumerate(frame_list):
            duration = format_number(entry.duration)
            if media_kind(entry.file_path) == "video":
                cmd += ["-t", duration, "-i", entry.file_path]
            else:
                cmd += ["-loop", "1", "-t", duration, "-i", entry.file_path]
            chain = serialize_chain(
                [
                    FrameRate(target.fps),
                    ScaleToFit(target.width, target.height, flags="lanczos"),
                    PixelFormat(),
                    SquarePixels(),
                ]
            )
            statements.append(f"[{i}:v]{chain}[v{i}]")

        inputs = "".join(f"[v{i}]" for i in range(len(frame_list)))
        concat = Filter("concat", (("n", len(frame_list)), ("v", 1), ("a", 0))).serialize()
        statements.append(f"{inputs}{concat}[joined]")
        statements.append(f"[joined]{serialize_chain(fragments) or 'null'}[vout]")

        cmd += [
            "-filter_complex", ";".join(statements),
            "-map", "[vout]",
            "-an",
            *self.encode_options(target),
            output_path,
        ]
        return cmd

    def build_normalize_command(
        self,
        input_path: str,
        output_path: str,
        duration: float,
        target: RenderTarget,
    ) -> list[str]:
        """Re-encode an image (looped) or clip (looped/trimmed) to an exact-length clip."""
        loop = ["-loop", "1"] if media_kind(input_path) == "image" else ["-stream_loop", "-1"]
        chain = serialize_chain(
            [ScaleToFit(target.width, target.height), FrameRate(target.fps), PixelFormat(), SquarePixels()]
        )
        return [
            self.ffmpeg_path,
            "-y",
            *loop,
            "-i", input_path,
            "-t", format_number(duration),
            "-vf", chain,
            "-an",
            *self.encode_options(target),
            output_path,
        ]

    def write_frame_list(self, frame_list: Sequence[FrameListEntry], manifest_path: str | Path) -> str:
        Path(manifest_path).write_text(build_frame_list_manifest(frame_list), encoding="utf-8")
        return str(manifest_path)

    async def _render_with_duration_control(
        self,
        frame_list: Sequence[FrameListEntry],
        output_path: str,
        target: RenderTarget,
        fragments: Sequence[DrawNode],
        manifest_name: str = "framelist.txt",
    ) -> None:
        manifest = self.write_frame_list(frame_list, Path(output_path).parent / manifest_name)
        cmd = self.build_duration_control_command(manifest, output_path, target, fragments)
        await self._run(cmd, "Duration-control render")

    async def _render_with_complex_filter(
        self,
        frame_list: Sequence[FrameListEntry],
        output_path: str,
        target: RenderTarget,
        fragments: Sequence[DrawNode],
    ) -> None:
        cmd = self.build_complex_filter_command(frame_list, output_path, target, fragments)
        await self._run(cmd, "Complex-filter render")

    async def _render_mixed_content(
        self,
        frame_list: Sequence[FrameListEntry],
        output_path: str,
        target: RenderTarget,
        fragments: Sequence[DrawNode],
    ) -> None:
        work_dir = Path(output_path).parent
        normalized: list[FrameListEntry] = []
        try:
            for i, entry in enumerate(frame_list):
                name = "temp-video" if media_kind(entry.file_path) == "image" else "trimmed-video"
                clip = str(work_dir / f"{name}-{i}.mp4")
                cmd = self.build_normalize_command(entry.file_path, clip, entry.duration, target)
                await self._run(cmd, f"Normalize scene {i + 1}")
                normalized.append(FrameListEntry(clip, entry.duration))

            await self._render_with_duration_control(
                normalized, output_path, target, fragments, manifest_name="fallback-framelist.txt"
            )
        finally:
            for entry in normalized:
                Path(entry.file_path).unlink(missing_ok=True)

    async def render_final(
        self,
        frame_list: Sequence[FrameListEntry],
        output_path: str,
        target: RenderTarget,
        fragments: Sequence[DrawNode] = (),
    ) -> str:
        """Concatenate the frame list into ``output_path``.

        ``fragments`` are draw nodes applied over the whole output.

        Raises:
            FatalJobError: if the frame list is empty or every strategy failed
        """
        if not frame_list:
            raise FatalJobError("No frames to render")

        runners = {
            RenderStrategy.DURATION_CONTROL: self._render_with_duration_control,
            RenderStrategy.COMPLEX_FILTER: self._render_with_complex_filter,
            RenderStrategy.MIXED_CONTENT: self._render_mixed_content,
        }
        expected = total_duration(list(frame_list))
        failures: list[EncodeStrategyError] = []

        for strategy in select_strategies(frame_list):
            logger.info(f"[RENDER] Trying {strategy.value} for {len(frame_list)} scene(s), {expected:.1f}s")
            try:
                await runners[strategy](frame_list, output_path, target, fragments)
            except (RuntimeError, OSError) as e:
                failure = EncodeStrategyError(strategy.value, str(e), cause=e)
                logger.warning(f"[RENDER] {failure.message}")
                failures.append(failure)
                Path(output_path).unlink(missing_ok=True)
                continue

            logger.info(f"[RENDER] {strategy.value} succeeded: {output_path}")
            await self.verify_output(output_path, expected, target)
            return output_path

        reasons = "; ".join(f.message for f in failures)
        raise FatalJobError(f"All render strategies failed: {reasons}")

    # =========================================================================
    # Verification
    # =========================================================================

    def check_media(self, info: MediaInfo, expected_duration: float, target: RenderTarget) -> None:
        """Raise VerificationError describing every mismatch."""
        problems = []
        if not info.has_video:
            problems.append("no video stream")
        if info.duration is None:
            problems.append("unknown duration")
        elif abs(info.duration - expected_duration) > self.settings.verify_duration_tolerance_seconds:
            problems.append(f"duration {info.duration:.2f}s, expected {expected_duration:.2f}s")
        if info.width is not None and (info.width, info.height) != (target.width, target.height):
            problems.append(f"resolution {info.width}x{info.height}, expected {target.width}x{target.height}")
        if info.video_codec and info.video_codec != "h264":
            problems.append(f"codec {info.video_codec}")
        if problems:
            raise VerificationError(", ".join(problems))

    async def verify_output(
        self,
        output_path: str,
        expected_duration: float,
        target: RenderTarget,
    ) -> MediaInfo | None:
        """Probe the rendered file and log a warning on mismatches. Never raises."""
        try:
            info = await asyncio.to_thread(get_media_info, output_path)
        except (RuntimeError, OSError) as e:
            logger.warning(f"[VERIFY] Could not probe {output_path}: {e}")
            return None

        logger.info(
            f"[VERIFY] {os.path.basename(output_path)}: duration={info.duration}s "
            f"size={info.size_bytes} codec={info.video_codec} "
            f"resolution={info.width}x{info.height} fps={info.fps}"
        )
        try:
            self.check_media(info, expected_duration, target)
        except VerificationError as e:
            logger.warning(f"[VERIFY] Output looks inconsistent: {e.message}")
        return info
