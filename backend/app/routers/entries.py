# entries router — create, list, read, update and delete journal entries
# every route is scoped to the authenticated user

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query
from bson import ObjectId
from bson.errors import InvalidId

from app.models.entry import EntryCreate, EntryUpdate, EntryResponse, EntryListResponse
from app.services.db import Database, get_db
from app.services.entry_store import as_utc
from app.dependencies import get_current_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/entries", tags=["entries"])

MAX_PAGE_SIZE = 100


def _doc_to_entry(doc: dict) -> EntryResponse:
    """convert a mongodb entry document to response model"""
    updated_at = doc.get("updated_at")
    return EntryResponse(
        id=str(doc["_id"]),
        userId=doc.get("user_id", ""),
        content=doc.get("content", ""),
        moodTags=doc.get("mood_tags") or [],
        moodEmoji=doc.get("mood_emoji"),
        createdAt=as_utc(doc["created_at"]),
        updatedAt=as_utc(updated_at) if updated_at else None,
    )


async def _find_owned_entry(entry_id: str, user_id: str, db: Database) -> dict:
    """load an entry owned by the user or raise 404 (foreign and malformed ids look the same)"""
    try:
        oid = ObjectId(entry_id)
    except InvalidId:
        oid = None

    entry = await db.entries.find_one({"_id": oid}) if oid else None
    if not entry or entry.get("user_id") != user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not found",
        )
    return entry


@router.post("", response_model=EntryResponse)
async def create_entry(
    body: EntryCreate,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """create a journal entry, optionally backdated via createdAt"""
    now = datetime.now(timezone.utc)
    doc = {
        "user_id": current_user["id"],
        "content": body.content,
        "mood_tags": body.mood_tags,
        "mood_emoji": body.mood_emoji,
        "created_at": as_utc(body.created_at) if body.created_at else now,
        "updated_at": now,
    }
    result = await db.entries.insert_one(doc)
    doc["_id"] = result.inserted_id

    logger.info(f"Entry created: {doc['_id']} by user {current_user['id']}")
    return _doc_to_entry(doc)


@router.get("", response_model=EntryListResponse)
async def list_entries(
    date_from: Optional[datetime] = Query(None, alias="from", description="inclusive lower bound"),
    date_to: Optional[datetime] = Query(None, alias="to", description="inclusive upper bound"),
    limit: int = Query(20, ge=1),
    cursor: Optional[str] = Query(None, description="id of the last entry on the previous page"),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """list the user's entries, newest first, with cursor pagination"""
    take = min(MAX_PAGE_SIZE, limit)

    query: dict = {"user_id": current_user["id"]}
    if date_from or date_to:
        query["created_at"] = {}
        if date_from:
            query["created_at"]["$gte"] = as_utc(date_from)
        if date_to:
            query["created_at"]["$lte"] = as_utc(date_to)

    if cursor:
        anchor = await _find_owned_entry(cursor, current_user["id"], db)
        # strictly after the anchor in (created_at desc, _id desc) order
        query["$or"] = [
            {"created_at": {"$lt": anchor["created_at"]}},
            {"created_at": anchor["created_at"], "_id": {"$lt": anchor["_id"]}},
        ]

    docs = db.entries.find(query).sort([("created_at", -1), ("_id", -1)]).limit(take + 1)
    entries = []
    async for doc in docs:
        entries.append(doc)

    next_cursor = None
    if len(entries) > take:
        entries = entries[:take]
        next_cursor = str(entries[-1]["_id"])

    return EntryListResponse(
        entries=[_doc_to_entry(doc) for doc in entries],
        nextCursor=next_cursor,
    )


@router.get("/{entry_id}", response_model=EntryResponse)
async def get_entry(
    entry_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    entry = await _find_owned_entry(entry_id, current_user["id"], db)
    return _doc_to_entry(entry)


@router.patch("/{entry_id}", response_model=EntryResponse)
async def update_entry(
    entry_id: str,
    body: EntryUpdate,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """partial update. omitted fields keep their stored value"""
    entry = await _find_owned_entry(entry_id, current_user["id"], db)

    update_fields = {"updated_at": datetime.now(timezone.utc)}
    if body.content is not None:
        update_fields["content"] = body.content
    if body.mood_tags is not None:
        update_fields["mood_tags"] = body.mood_tags
    if body.mood_emoji is not None:
        update_fields["mood_emoji"] = body.mood_emoji

    await db.entries.update_one({"_id": entry["_id"]}, {"$set": update_fields})

    updated = await db.entries.find_one({"_id": entry["_id"]})
    logger.info(f"Entry updated: {entry_id} by user {current_user['id']}")
    return _doc_to_entry(updated)


@router.delete("/{entry_id}")
async def delete_entry(
    entry_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    entry = await _find_owned_entry(entry_id, current_user["id"], db)
    await db.entries.delete_one({"_id": entry["_id"]})

    logger.info(f"Entry deleted: {entry_id} by user {current_user['id']}")
    return {"ok": True}
