"""Shared render collaborators for the API process.

The font cache and presigned URL cache live as long as the process and are
shared by every render job; each request gets its own pipeline.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from adrender.config import get_settings
from adrender.render.fonts import FontCache, FontResolver
from adrender.render.pipeline import RenderPipeline
from adrender.services.download_service import AssetDownloader
from adrender.services.storage_service import ObjectStorageService


@lru_cache
def get_font_cache() -> FontCache:
    return FontCache()


@lru_cache
def get_storage_service() -> ObjectStorageService:
    return ObjectStorageService(settings=get_settings())


def get_render_pipeline() -> RenderPipeline:
    settings = get_settings()
    fonts = FontResolver(get_font_cache(), settings=settings)
    downloader = AssetDownloader(get_storage_service(), settings=settings)
    return RenderPipeline(fonts, downloader, settings=settings)


Pipeline = Annotated[RenderPipeline, Depends(get_render_pipeline)]
