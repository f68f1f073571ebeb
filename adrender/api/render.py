"""Render API endpoint - synchronous rendering."""

import logging

from fastapi import APIRouter, HTTPException, status

from adrender.api.deps import Pipeline
from adrender.exceptions import FatalJobError
from adrender.schemas.render import RenderRequest, RenderResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/video/render", response_model=RenderResponse, response_model_by_alias=True)
async def render_video(render_request: RenderRequest, pipeline: Pipeline) -> RenderResponse:
    """
    Render the request's scenes into one MP4.

    Returns the local path of the rendered file; uploading it is up to the caller.
    """
    if not render_request.scenes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required data: scenes",
        )

    logger.info(
        f"Rendering video for project {render_request.project_id} "
        f"with {len(render_request.scenes)} scenes"
    )
    try:
        result = await pipeline.render(render_request)
    except FatalJobError as e:
        logger.error(f"Render failed for project {render_request.project_id}: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.to_dict(),
        )

    return RenderResponse(
        output_path=result.output_path,
        duration=round(result.duration, 3),
        format=result.target.format,
        quality=result.target.quality,
    )
