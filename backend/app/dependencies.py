# fastapi dependency injection
# provides get_current_user (required auth), get_caller_identity (optional auth)
# and the insight cache wiring

import logging
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from bson import ObjectId
from bson.errors import InvalidId

from app.config import settings
from app.models.user import Anonymous, CallerIdentity, Identified
from app.services.auth_service import user_id_from_token
from app.services.db import Database, get_db
from app.services.insight_cache import (
    InsightCache,
    MemoryInsightCache,
    MongoInsightCache,
    OwnerRoutedInsightCache,
)

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

# process-wide cache for callers without a token
anonymous_insight_cache = MemoryInsightCache(max_size=settings.ANON_CACHE_MAX_SIZE)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Database = Depends(get_db),
) -> dict:
    """extract and validate the current user from the jwt bearer token"""
    user_id = user_id_from_token(credentials.credentials)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    # fetch user from database
    try:
        user = await db.users.find_one({"_id": ObjectId(user_id)})
    except InvalidId:
        user = None

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    # convert _id to string
    user["id"] = str(user["_id"])
    del user["_id"]
    return user


async def get_caller_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> CallerIdentity:
    """best-effort auth: a bad or missing token means anonymous, never an error"""
    if credentials is None:
        return Anonymous()

    user_id = user_id_from_token(credentials.credentials)
    if not user_id:
        logger.info("Ignoring unusable bearer token, continuing anonymously")
        return Anonymous()
    return Identified(user_id=user_id)


async def get_insight_cache(db: Database = Depends(get_db)) -> InsightCache:
    """durable cache for identified users, shared bounded map for anonymous"""
    return OwnerRoutedInsightCache(
        durable=MongoInsightCache(db),
        anonymous=anonymous_insight_cache,
    )
