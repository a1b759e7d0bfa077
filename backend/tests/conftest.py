# shared fixtures for backend api tests
# provides mock db, test users, auth tokens, insight cache, and httpx test client

import re
import pytest
import pytest_asyncio
from unittest.mock import MagicMock
from datetime import datetime, timezone, timedelta
from bson import ObjectId

from httpx import AsyncClient, ASGITransport

from app.main import app
from app.services.db import get_db
from app.services.auth_service import hash_password, create_access_token
from app.services.insight_cache import MemoryInsightCache, MongoInsightCache, OwnerRoutedInsightCache
from app.services.rate_limit import request_limiter
from app.dependencies import get_current_user, get_insight_cache


# test ids
USER_OID = ObjectId()
USER_2_OID = ObjectId()
USER_ID = str(USER_OID)
USER_2_ID = str(USER_2_OID)

NOW = datetime.now(timezone.utc)


# test user documents (as they'd appear from mongodb)

USER_DOC = {
    "_id": USER_OID,
    "email": "maya.lopez@email.com",
    "hashed_password": hash_password("inkjournal123"),
    "name": "Maya Lopez",
    "created_at": datetime(2025, 9, 1, tzinfo=timezone.utc),
}

USER_2_DOC = {
    "_id": USER_2_OID,
    "email": "sam.okafor@email.com",
    "hashed_password": hash_password("inkjournal123"),
    "name": "Sam Okafor",
    "created_at": datetime(2025, 9, 15, tzinfo=timezone.utc),
}


# sample data: two recent entries for USER_ID, one for USER_2_ID

SAMPLE_ENTRY = {
    "_id": ObjectId(),
    "user_id": USER_ID,
    "content": "Rough day at work. The deadline got moved up and I could not focus.",
    "mood_tags": ["stressed"],
    "mood_emoji": None,
    "created_at": NOW - timedelta(days=2),
    "updated_at": NOW - timedelta(days=2),
}

SAMPLE_ENTRY_2 = {
    "_id": ObjectId(),
    "user_id": USER_ID,
    "content": "Walked by the river after dinner. Felt lighter.",
    "mood_tags": ["calm"],
    "mood_emoji": None,
    "created_at": NOW - timedelta(days=1),
    "updated_at": NOW - timedelta(days=1),
}

OTHER_USER_ENTRY = {
    "_id": ObjectId(),
    "user_id": USER_2_ID,
    "content": "Someone else's private entry.",
    "mood_tags": ["joy"],
    "mood_emoji": None,
    "created_at": NOW - timedelta(days=1),
    "updated_at": NOW - timedelta(days=1),
}


# async cursor mock

class AsyncCursorMock:
    """mock for motor's async cursor, supports async for and chained methods"""

    def __init__(self, data=None):
        self._data = list(data or [])
        self._index = 0

    def sort(self, key_or_list, direction=None):
        keys = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction or 1)]
        # apply least significant key first, python sort is stable
        for key, order in reversed(keys):
            self._data.sort(key=lambda d: d.get(key), reverse=order == -1)
        return self

    def skip(self, n):
        self._data = self._data[n:]
        return self

    def limit(self, n):
        self._data = self._data[:n]
        return self

    def __aiter__(self):
        self._index = 0
        return self

    async def __anext__(self):
        if self._index >= len(self._data):
            raise StopAsyncIteration
        item = self._data[self._index]
        self._index += 1
        return item

    async def to_list(self, length=None):
        if length is not None:
            return self._data[:length]
        return self._data


class MockCollection:
    """mock for a motor collection with async methods"""

    def __init__(self, data=None):
        self._data = data or []
        self.inserted = []

    def find(self, query=None, projection=None):
        # basic query filtering
        results = self._data
        if query:
            results = [d for d in results if self._matches(d, query)]
        return AsyncCursorMock(results)

    async def find_one(self, query=None, projection=None):
        if not query:
            return self._data[0] if self._data else None
        for doc in self._data:
            if self._matches(doc, query):
                return doc
        return None

    async def insert_one(self, doc):
        oid = doc.get("_id", ObjectId())
        doc["_id"] = oid
        self._data.append(doc)
        self.inserted.append(doc)
        result = MagicMock()
        result.inserted_id = oid
        return result

    async def insert_many(self, docs):
        ids = []
        for doc in docs:
            result = await self.insert_one(doc)
            ids.append(result.inserted_id)
        result = MagicMock()
        result.inserted_ids = ids
        return result

    async def update_one(self, query, update, upsert=False):
        result = MagicMock()
        result.modified_count = 0
        result.upserted_id = None
        for doc in self._data:
            if self._matches(doc, query):
                if "$set" in update:
                    doc.update(update["$set"])
                result.modified_count = 1
                return result
        if upsert:
            doc = {k: v for k, v in query.items() if not k.startswith("$")}
            doc.update(update.get("$set", {}))
            doc["_id"] = ObjectId()
            self._data.append(doc)
            result.upserted_id = doc["_id"]
        return result

    async def delete_one(self, query):
        result = MagicMock()
        result.deleted_count = 0
        for i, doc in enumerate(self._data):
            if self._matches(doc, query):
                del self._data[i]
                result.deleted_count = 1
                break
        return result

    async def create_index(self, *args, **kwargs):
        return "mock_index"

    def _matches(self, doc, query):
        """basic mongodb query matching for tests"""
        for key, value in query.items():
            if key == "$or":
                if not any(self._matches(doc, cond) for cond in value):
                    return False
                continue
            doc_val = doc.get(key)
            if isinstance(value, dict):
                for op, operand in value.items():
                    if op == "$in":
                        if doc_val not in operand:
                            return False
                    elif op == "$regex":
                        flags = re.IGNORECASE if value.get("$options") == "i" else 0
                        if doc_val is None or not re.search(operand, str(doc_val), flags):
                            return False
                    elif op == "$options":
                        continue
                    elif doc_val is None:
                        return False
                    elif op == "$gte" and not doc_val >= operand:
                        return False
                    elif op == "$gt" and not doc_val > operand:
                        return False
                    elif op == "$lte" and not doc_val <= operand:
                        return False
                    elif op == "$lt" and not doc_val < operand:
                        return False
            elif doc_val != value:
                return False
        return True


class FailingCollection(MockCollection):
    """collection whose reads blow up, for store-unavailable paths"""

    def find(self, query=None, projection=None):
        raise ConnectionError("mongodb unavailable")

    async def find_one(self, query=None, projection=None):
        raise ConnectionError("mongodb unavailable")


class MockDatabase:
    """mock database that mimics the Database class"""

    def __init__(self):
        self.users = MockCollection([
            USER_DOC.copy(),
            USER_2_DOC.copy(),
        ])
        self.entries = MockCollection([
            SAMPLE_ENTRY.copy(),
            SAMPLE_ENTRY_2.copy(),
            OTHER_USER_ENTRY.copy(),
        ])
        self.insight_cache = MockCollection([])

    async def connect(self):
        pass

    async def close(self):
        pass

    async def ensure_indexes(self):
        pass


@pytest.fixture(autouse=True)
def reset_rate_limit():
    """every test starts with empty per-ip request windows"""
    request_limiter.reset()
    yield
    request_limiter.reset()


@pytest.fixture
def mock_db():
    """create a fresh mock database for each test"""
    return MockDatabase()


@pytest.fixture
def anon_cache():
    """fresh in-memory anonymous cache so tests never share process state"""
    return MemoryInsightCache(max_size=8)


@pytest.fixture
def insight_cache(mock_db, anon_cache):
    return OwnerRoutedInsightCache(durable=MongoInsightCache(mock_db), anonymous=anon_cache)


def _user_dict():
    """return user dict as get_current_user would return"""
    doc = USER_DOC.copy()
    doc["id"] = USER_ID
    del doc["_id"]
    return doc


@pytest.fixture
def user_token():
    """jwt access token for the test user"""
    return create_access_token(USER_ID, USER_DOC["email"])


@pytest_asyncio.fixture
async def client(mock_db, insight_cache):
    """httpx async test client with mocked db and cache, no auth override"""

    async def override_get_db():
        return mock_db

    async def override_get_insight_cache():
        return insight_cache

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_insight_cache] = override_get_insight_cache

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def user_client(mock_db, insight_cache):
    """client authenticated as the test user"""

    async def override_get_db():
        return mock_db

    async def override_get_current_user():
        return _user_dict()

    async def override_get_insight_cache():
        return insight_cache

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_insight_cache] = override_get_insight_cache

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
