"""
Payload schemas for each queue.

Producers write camelCase keys; both spellings are accepted. A payload that
fails validation is a non-retryable error.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RenderInput(_Payload):
    """Input of a render task."""

    clip_url: str = Field(alias="clipUrl", min_length=1)


class CaptionBox(_Payload):
    text: str = ""
    position: Literal["top", "center", "bottom"] = "bottom"
    size: Literal["small", "medium", "large"] = "medium"


class EditSettings(_Payload):
    """Settings of a clip edit task."""

    fit_mode: Literal["contain", "cover"] = Field(default="contain", alias="fitMode")
    padding_top: int = Field(default=0, alias="paddingTop", ge=0)
    padding_bottom: int = Field(default=0, alias="paddingBottom", ge=0)
    padding_color: str = Field(default="#000000", alias="paddingColor")
    watermark_text: str = Field(default="", alias="watermarkText")
    watermark_position: Literal["top-left", "top-right", "bottom-left", "bottom-right"] = Field(
        default="bottom-right", alias="watermarkPosition"
    )
    caption_box: CaptionBox | None = Field(default=None, alias="captionBox")


class EditInput(_Payload):
    """Input of an edit task. The source URL falls back to the parent job's result."""

    source_url: str | None = Field(default=None, alias="sourceUrl")
    settings: EditSettings = Field(default_factory=EditSettings)


class Scene(_Payload):
    text: str = ""
    visual_description: str | None = Field(default=None, alias="visualDescription")
    visual: str | None = None

    @property
    def search_query(self) -> str:
        return (
            self.visual_description
            or self.visual
            or self.text[:50]
            or "abstract dark background"
        )


class AiShortConfig(_Payload):
    """Payload of an AI short generation job."""

    script: str = Field(min_length=1)
    topic: str = "AI Generated Video"
    style: str | None = None
    duration: int = Field(default=60, gt=0)
    voice: str = "Rachel"
    scenes: list[Scene] = Field(default_factory=list)
    hashtags: list[str] = Field(default_factory=list)
    output_mode: Literal["single", "multi"] = Field(default="single", alias="outputMode")
    clip_count: int = Field(default=1, alias="clipCount", ge=1)

    @field_validator("script", mode="before")
    @classmethod
    def _flatten_script(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("fullScript")
        return value

    @property
    def is_multi_clip(self) -> bool:
        return self.output_mode == "multi" and self.clip_count > 1

    @property
    def num_clips(self) -> int:
        return min(self.clip_count, 5) if self.is_multi_clip else 1


class DiscoverConfig(_Payload):
    """Payload of a content discovery job."""

    platform: str = "twitch"
    keywords: str = ""
    recency_days: int = Field(default=7, alias="recencyDays", gt=0)
    max_results: int = Field(default=25, alias="maxResults", gt=0)
