# entry models — journal entry creation, update and response schemas
# mirrors frontend api.ts Entry

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class EntryCreate(BaseModel):
    """payload for a new journal entry"""
    content: str = Field(..., min_length=1, description="entry text")
    mood_tags: list[str] = Field(default_factory=list, alias="moodTags")
    mood_emoji: Optional[str] = Field(None, alias="moodEmoji")
    created_at: Optional[datetime] = Field(None, alias="createdAt", description="backdated timestamp")

    model_config = {"populate_by_name": True}


class EntryUpdate(BaseModel):
    """partial update. omitted fields keep their stored value"""
    content: Optional[str] = Field(None, min_length=1)
    mood_tags: Optional[list[str]] = Field(None, alias="moodTags")
    mood_emoji: Optional[str] = Field(None, alias="moodEmoji")

    model_config = {"populate_by_name": True}


class EntryResponse(BaseModel):
    id: str
    user_id: str = Field(..., alias="userId")
    content: str
    mood_tags: list[str] = Field(default_factory=list, alias="moodTags")
    mood_emoji: Optional[str] = Field(None, alias="moodEmoji")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    model_config = {"populate_by_name": True}


class EntryListResponse(BaseModel):
    entries: list[EntryResponse]
    next_cursor: Optional[str] = Field(None, alias="nextCursor")

    model_config = {"populate_by_name": True}
