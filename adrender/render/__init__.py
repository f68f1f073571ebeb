from adrender.render.element_renderer import ElementRenderer
from adrender.render.ffmpeg_renderer import FFmpegRenderer, RenderStrategy, select_strategies
from adrender.render.fonts import FontCache, FontResolver
from adrender.render.pipeline import RenderPipeline, RenderProgress, RenderResult, RenderStatus

__all__ = [
    "ElementRenderer",
    "FFmpegRenderer",
    "FontCache",
    "FontResolver",
    "RenderPipeline",
    "RenderProgress",
    "RenderResult",
    "RenderStatus",
    "RenderStrategy",
    "select_strategies",
]
