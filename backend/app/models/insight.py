# insight models — ai insight request body, pipeline entries, and response payloads
# mirrors frontend api.ts AIInsightResponse

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator

WEEKLY_MODE = "weekly"
FUTURE_YOU_MODE = "future_you"

# moods offered by the entry composer
MOODS = ("joy", "calm", "sad", "anxious", "stressed", "motivated", "grateful")


class InsightRequestBody(BaseModel):
    """POST /insights/ai payload. parsed leniently, bad entries are dropped later, not rejected"""
    mode: str = WEEKLY_MODE
    force: bool = False
    entries: list[Any] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> str:
        mode = str(value if value is not None else WEEKLY_MODE).strip().lower()
        return FUTURE_YOU_MODE if mode == FUTURE_YOU_MODE else WEEKLY_MODE

    @field_validator("force", mode="before")
    @classmethod
    def _coerce_force(cls, value: Any) -> bool:
        # the frontend sends true, "true" or "1"
        return str(value or "").strip().lower() in ("true", "1")

    @field_validator("entries", mode="before")
    @classmethod
    def _coerce_entries(cls, value: Any) -> list:
        return value if isinstance(value, list) else []


class InsightEntry(BaseModel):
    """a journal entry as seen by the insight pipeline"""
    date: datetime
    mood: Optional[str] = None
    text: str = ""

    model_config = {"frozen": True}


class WeeklyInsight(BaseModel):
    """weekly ai insight payload, also the cached artifact"""
    how_you_felt: str = Field("", alias="howYouFelt")
    weekly_summary: str = Field("", alias="weeklySummary")
    mood_drivers: list[str] = Field(default_factory=list, alias="moodDrivers")
    patterns: list[str] = Field(default_factory=list)
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    source_entry_count: int = Field(0, alias="sourceEntryCount")
    is_fallback: bool = Field(False, alias="isFallback")

    model_config = {"populate_by_name": True, "frozen": True}


class FutureSelfInsight(BaseModel):
    """future-self reflection payload"""
    future_you_message: str = Field(..., alias="futureYouMessage")

    model_config = {"populate_by_name": True, "frozen": True}


class InsightCacheRecord(BaseModel):
    """most recent weekly insight for one owner key"""
    owner_key: str
    # iso timestamp of the newest entry the payload was built from
    latest_entry_at: Optional[str] = None
    created_at: datetime
    payload: Optional[WeeklyInsight] = None
