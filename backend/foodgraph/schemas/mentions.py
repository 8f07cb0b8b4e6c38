"""Mention batch input schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from foodgraph.config import Settings, get_settings


class MentionInput(BaseModel):
    """One LLM-extracted fact about a restaurant and optionally a dish."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    restaurant: str = Field(min_length=1)
    restaurant_surface: str | None = None
    food: str | None = None
    food_surface: str | None = None
    is_menu_item: bool | None = None
    food_categories: list[str] = Field(default_factory=list)
    food_attributes: list[str] = Field(default_factory=list)
    restaurant_attributes: list[str] = Field(default_factory=list)
    general_praise: bool = False
    source_type: Literal["post", "comment"]
    source_id: str | None = None
    source_ups: int = 0
    source_created_at: datetime
    subreddit: str | None = None

    @field_validator("restaurant_surface", "food", "food_surface", "source_id", "subreddit", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("food_categories", "food_attributes", "restaurant_attributes", mode="before")
    @classmethod
    def clean_string_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        seen: set[str] = set()
        cleaned: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ValueError("List entries must be strings.")
            text = " ".join(item.strip().split())
            key = text.lower()
            if not text or key in seen:
                continue
            seen.add(key)
            cleaned.append(text)
        return cleaned

    @field_validator("source_ups", mode="before")
    @classmethod
    def clamp_upvotes(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return max(0, int(value))
        return value

    @field_validator("source_created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def is_specific_food(self) -> bool:
        return self.food is not None and self.is_menu_item is True

    @property
    def is_category_reference(self) -> bool:
        """No dish named, or one explicitly flagged as not a menu item."""

        return self.food is None or self.is_menu_item is False


class TemporalRange(BaseModel):
    """Time span covered by the posts in a batch."""

    earliest: datetime | None = None
    latest: datetime | None = None


class SourceMetadata(BaseModel):
    """Batch envelope metadata supplied by the collection layer."""

    batch_id: str = Field(min_length=1)
    collection_type: str | None = None
    subreddit: str | None = None
    source_breakdown: dict[str, int] = Field(default_factory=dict)
    temporal_range: TemporalRange | None = None


class MentionBatch(BaseModel):
    """Mention batch envelope.

    Mentions stay loosely typed here and are validated one by one so a single
    malformed record never rejects the whole batch.
    """

    mentions: list[dict[str, Any]]
    source_metadata: SourceMetadata


class ProcessingConfig(BaseModel):
    """Recognized batch processing options."""

    enable_quality_scores: bool = True
    max_retries: int = Field(default=3, ge=1)
    batch_timeout_seconds: float = Field(default=300.0, gt=0)
    batch_size: int = Field(default=250, ge=1)

    @model_validator(mode="after")
    def validate_limits(self) -> "ProcessingConfig":
        if self.max_retries > 10:
            raise ValueError("max_retries must not exceed 10.")
        return self

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ProcessingConfig":
        active = settings or get_settings()
        return cls(
            enable_quality_scores=active.processing_enable_quality_scores,
            max_retries=active.processing_max_retries,
            batch_timeout_seconds=active.processing_batch_timeout_seconds,
            batch_size=active.processing_batch_size,
        )


class MentionBatchRequest(MentionBatch):
    """HTTP body for batch ingestion, with optional per-request processing overrides."""

    processing_config: ProcessingConfig | None = None
