# entry store — date-range reads over the entries collection for the insight pipeline
# failures propagate; the caller decides how to degrade

import logging
from datetime import datetime, timezone
from typing import Optional

from app.models.insight import InsightEntry
from app.services.db import Database

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """normalize naive (mongodb) or offset datetimes to aware utc"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def doc_to_insight_entry(doc: dict) -> InsightEntry:
    """stored entry -> pipeline entry. mood is the emoji, else the first mood tag"""
    mood_tags = doc.get("mood_tags") or []
    mood = doc.get("mood_emoji") or (mood_tags[0] if mood_tags else None)
    created_at = doc.get("created_at") or datetime.now(timezone.utc)
    return InsightEntry(
        date=as_utc(created_at),
        mood=mood or None,
        text=str(doc.get("content") or ""),
    )


async def find_entries(
    db: Database,
    owner_id: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> list[InsightEntry]:
    """entries for an owner in [date_from, date_to], oldest first"""
    query: dict = {}
    if owner_id:
        query["user_id"] = owner_id
    if date_from or date_to:
        query["created_at"] = {}
        if date_from:
            query["created_at"]["$gte"] = date_from
        if date_to:
            query["created_at"]["$lte"] = date_to

    cursor = db.entries.find(
        query,
        {"content": 1, "created_at": 1, "mood_emoji": 1, "mood_tags": 1},
    ).sort("created_at", 1)

    entries = []
    async for doc in cursor:
        entries.append(doc_to_insight_entry(doc))

    logger.info(f"Entries fetched from store: {len(entries)}")
    return entries
