# tests for insight cache — mongodb store, in-memory map, owner routing
# unit tests for app/services/insight_cache.py

import pytest
from datetime import datetime, timedelta, timezone

from app.models.insight import InsightCacheRecord, WeeklyInsight
from app.services.insight_cache import (
    ANON_OWNER_KEY,
    MemoryInsightCache,
    MongoInsightCache,
    OwnerRoutedInsightCache,
)
from tests.conftest import USER_ID, USER_2_ID


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _record(owner_key, how_you_felt="A steady week.", latest="2026-10-17T09:00:00+00:00", created_at=NOW):
    return InsightCacheRecord(
        owner_key=owner_key,
        latest_entry_at=latest,
        created_at=created_at,
        payload=WeeklyInsight(howYouFelt=how_you_felt, confidence=0.7, sourceEntryCount=3),
    )


class TestMemoryInsightCache:
    """bounded process-local map"""

    async def test_get_missing(self):
        cache = MemoryInsightCache(max_size=2)
        assert await cache.get("anon") is None

    async def test_put_then_get(self):
        cache = MemoryInsightCache(max_size=2)
        record = _record("anon")
        await cache.put("anon", record)
        assert await cache.get("anon") == record

    async def test_put_overwrites(self):
        cache = MemoryInsightCache(max_size=2)
        await cache.put("anon", _record("anon", how_you_felt="first"))
        await cache.put("anon", _record("anon", how_you_felt="second"))
        assert len(cache) == 1
        assert (await cache.get("anon")).payload.how_you_felt == "second"

    async def test_evicts_least_recently_written(self):
        cache = MemoryInsightCache(max_size=2)
        await cache.put("a", _record("a"))
        await cache.put("b", _record("b"))
        await cache.put("a", _record("a", how_you_felt="rewritten"))
        await cache.put("c", _record("c"))

        assert len(cache) == 2
        assert await cache.get("b") is None
        assert await cache.get("a") is not None
        assert await cache.get("c") is not None

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            MemoryInsightCache(max_size=0)


class TestMongoInsightCache:
    """one upserted document per user"""

    async def test_get_missing(self, mock_db):
        cache = MongoInsightCache(mock_db)
        assert await cache.get(USER_ID) is None

    async def test_round_trip(self, mock_db):
        cache = MongoInsightCache(mock_db)
        await cache.put(USER_ID, _record(USER_ID))

        record = await cache.get(USER_ID)
        assert record.owner_key == USER_ID
        assert record.latest_entry_at == "2026-10-17T09:00:00+00:00"
        assert record.created_at == NOW
        assert record.payload.how_you_felt == "A steady week."
        assert record.payload.confidence == 0.7

    async def test_stored_document_shape(self, mock_db):
        cache = MongoInsightCache(mock_db)
        await cache.put(USER_ID, _record(USER_ID))

        doc = mock_db.insight_cache._data[0]
        assert doc["user_id"] == USER_ID
        assert doc["updated_at"] == NOW
        assert doc["payload"]["howYouFelt"] == "A steady week."
        assert doc["payload"]["isFallback"] is False

    async def test_upsert_keeps_one_document_per_user(self, mock_db):
        cache = MongoInsightCache(mock_db)
        await cache.put(USER_ID, _record(USER_ID, how_you_felt="first"))
        later = NOW + timedelta(hours=1)
        await cache.put(USER_ID, _record(USER_ID, how_you_felt="second", created_at=later))

        assert len(mock_db.insight_cache._data) == 1
        record = await cache.get(USER_ID)
        assert record.payload.how_you_felt == "second"
        assert record.created_at == later

    async def test_users_are_isolated(self, mock_db):
        cache = MongoInsightCache(mock_db)
        await cache.put(USER_ID, _record(USER_ID))
        assert await cache.get(USER_2_ID) is None

    async def test_naive_timestamp_read_as_utc(self, mock_db):
        mock_db.insight_cache._data.append({
            "user_id": USER_ID,
            "latest_entry_at": "2026-10-17T09:00:00+00:00",
            "updated_at": datetime(2026, 10, 18, 12, 0),
            "payload": {"howYouFelt": "ok"},
        })
        record = await MongoInsightCache(mock_db).get(USER_ID)
        assert record.created_at == NOW

    async def test_unreadable_payload_becomes_empty(self, mock_db):
        mock_db.insight_cache._data.append({
            "user_id": USER_ID,
            "latest_entry_at": "2026-10-17T09:00:00+00:00",
            "updated_at": NOW,
            "payload": {"confidence": "very"},
        })
        record = await MongoInsightCache(mock_db).get(USER_ID)
        assert record is not None
        assert record.payload is None


class TestOwnerRoutedInsightCache:
    """anon -> memory, user ids -> mongodb"""

    async def test_anonymous_goes_to_memory(self, mock_db):
        memory = MemoryInsightCache(max_size=4)
        cache = OwnerRoutedInsightCache(durable=MongoInsightCache(mock_db), anonymous=memory)

        await cache.put(ANON_OWNER_KEY, _record(ANON_OWNER_KEY))

        assert len(memory) == 1
        assert mock_db.insight_cache._data == []
        assert (await cache.get(ANON_OWNER_KEY)).owner_key == ANON_OWNER_KEY

    async def test_user_goes_to_mongodb(self, mock_db):
        memory = MemoryInsightCache(max_size=4)
        cache = OwnerRoutedInsightCache(durable=MongoInsightCache(mock_db), anonymous=memory)

        await cache.put(USER_ID, _record(USER_ID))

        assert len(memory) == 0
        assert len(mock_db.insight_cache._data) == 1
        assert (await cache.get(USER_ID)).owner_key == USER_ID
