"""Request and response models for the render endpoint.

Accepts snake_case input. camelCase aliases are accepted because the
authoring UI sends camelCase payloads.
"""

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from adrender.constants.formats import (
    DEFAULT_SCENE_DURATION,
    MAX_SCENE_DURATION,
    MIN_SCENE_DURATION,
)


class ElementSpec(BaseModel):
    """One overlay element as authored, in percentage coordinates."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    type: str
    x: float = 0.0
    y: float = 0.0
    width: float | None = None
    height: float | None = None
    rotation: float = Field(default=0.0, description="Accepted for compatibility, never applied")
    opacity: float = 1.0
    z_index: int = Field(default=0, alias="zIndex")
    content: str | dict[str, Any] | None = None
    style: dict[str, Any] | None = None
    url: str | None = None
    asset_url: str | None = Field(default=None, alias="assetUrl")
    keep_proportions: bool | None = Field(default=None, alias="keepProportions")

    @field_validator("opacity")
    @classmethod
    def clamp_opacity(cls, v: float) -> float:
        return max(0.0, min(1.0, v))


class SceneSpec(BaseModel):
    """One scene of the render request."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    order: int = 0
    duration: float = DEFAULT_SCENE_DURATION
    background_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("background_url", "backgroundUrl", "imageUrl"),
    )
    video_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("video_url", "videoUrl", "clipUrl"),
    )
    animate: bool = False
    animation_status: str | None = Field(default=None, alias="animationStatus")
    background_color: str | None = Field(default=None, alias="backgroundColor")
    elements: list[ElementSpec] = Field(default_factory=list)

    @field_validator("duration", mode="before")
    @classmethod
    def clamp_duration(cls, v: Any) -> float:
        if v is None:
            return DEFAULT_SCENE_DURATION
        return max(MIN_SCENE_DURATION, min(MAX_SCENE_DURATION, float(v)))


class RenderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    scenes: list[SceneSpec]
    format: str = "9:16"  # 9:16, 16:9, 1:1, 4:5
    quality: Literal["high", "medium", "low"] = "high"
    project_id: str = Field(alias="projectId")


class RenderResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    output_path: str = Field(serialization_alias="outputPath")
    duration: float
    format: str
    quality: str
