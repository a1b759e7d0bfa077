# insight cache — most recent weekly insight per owner key
# durable mongodb store for identified users, bounded in-process map for anonymous callers
#
# the cache never expires anything itself. freshness (age, latest entry match)
# is decided by the insight service on every read.

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Optional, Protocol

from pydantic import ValidationError

from app.models.insight import InsightCacheRecord, WeeklyInsight
from app.services.db import Database
from app.services.entry_store import as_utc

logger = logging.getLogger(__name__)

ANON_OWNER_KEY = "anon"


class InsightCache(Protocol):
    async def get(self, owner_key: str) -> Optional[InsightCacheRecord]: ...

    async def put(self, owner_key: str, record: InsightCacheRecord) -> None: ...


class MongoInsightCache:
    """one document per user in the insight_cache collection, upserted on write"""

    def __init__(self, db: Database):
        self.db = db

    async def get(self, owner_key: str) -> Optional[InsightCacheRecord]:
        doc = await self.db.insight_cache.find_one({"user_id": owner_key})
        if not doc:
            return None

        payload = None
        raw_payload = doc.get("payload")
        if raw_payload:
            try:
                payload = WeeklyInsight.model_validate(raw_payload)
            except ValidationError as e:
                # unreadable payload is treated as an empty record
                logger.warning(f"Discarding unreadable cached insight for {owner_key}: {e}")

        created_at = doc.get("updated_at") or doc.get("created_at")
        if not isinstance(created_at, datetime):
            return None

        return InsightCacheRecord(
            owner_key=owner_key,
            latest_entry_at=doc.get("latest_entry_at"),
            created_at=as_utc(created_at),
            payload=payload,
        )

    async def put(self, owner_key: str, record: InsightCacheRecord) -> None:
        await self.db.insight_cache.update_one(
            {"user_id": owner_key},
            {"$set": {
                "user_id": owner_key,
                "latest_entry_at": record.latest_entry_at,
                "updated_at": record.created_at,
                "payload": record.payload.model_dump(by_alias=True) if record.payload else None,
            }},
            upsert=True,
        )


class MemoryInsightCache:
    """process-lifetime map with least-recently-written eviction"""

    def __init__(self, max_size: int = 256):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._records: OrderedDict[str, InsightCacheRecord] = OrderedDict()

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, owner_key: str) -> Optional[InsightCacheRecord]:
        return self._records.get(owner_key)

    async def put(self, owner_key: str, record: InsightCacheRecord) -> None:
        self._records[owner_key] = record
        self._records.move_to_end(owner_key)
        while len(self._records) > self.max_size:
            evicted, _ = self._records.popitem(last=False)
            logger.info(f"Evicted in-memory insight cache entry: {evicted}")


class OwnerRoutedInsightCache:
    """routes the anonymous key to memory and every user id to the durable store"""

    def __init__(self, durable: InsightCache, anonymous: InsightCache):
        self.durable = durable
        self.anonymous = anonymous

    def _target(self, owner_key: str) -> InsightCache:
        return self.anonymous if owner_key == ANON_OWNER_KEY else self.durable

    async def get(self, owner_key: str) -> Optional[InsightCacheRecord]:
        return await self._target(owner_key).get(owner_key)

    async def put(self, owner_key: str, record: InsightCacheRecord) -> None:
        await self._target(owner_key).put(owner_key, record)
