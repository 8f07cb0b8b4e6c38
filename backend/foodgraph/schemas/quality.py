"""Quality score and replay request schemas."""

from pydantic import BaseModel, Field


class QualityScoreRefreshRequest(BaseModel):
    """Connections whose food and restaurant scores should be recomputed."""

    connection_ids: list[int] = Field(min_length=1)


class BoostReplayRequest(BaseModel):
    """Restaurants whose category boost events should be replayed."""

    restaurant_ids: list[int] = Field(min_length=1)


class PerformanceScoreRead(BaseModel):
    """Category or attribute performance score for a restaurant."""

    restaurant_id: int
    target_id: int
    score: float
