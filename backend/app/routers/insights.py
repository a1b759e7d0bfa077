# insights router — ai weekly insight and future-self reflection
# auth is optional: anonymous callers send their entries in the body

import logging
from typing import Optional
from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from app.models.insight import InsightRequestBody
from app.models.user import CallerIdentity
from app.services.db import Database, get_db
from app.services.insight_cache import InsightCache
from app.services.insight_service import InsightRequest, handle_insight_request
from app.dependencies import get_caller_identity, get_insight_cache

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/insights", tags=["insights"])


@router.post("/ai")
async def generate_ai_insight(
    body: Optional[InsightRequestBody] = Body(None),
    identity: CallerIdentity = Depends(get_caller_identity),
    db: Database = Depends(get_db),
    cache: InsightCache = Depends(get_insight_cache),
):
    """generate (or serve from cache) an ai insight for the last 7 days.

    weekly mode returns the structured insight, or 502 when gemini fails.
    future_you mode always answers 200 with a message.
    both return {"error": "NO_ENTRIES"} when there is nothing to analyze.
    """
    # a bodyless request behaves like an empty one
    if body is None:
        body = InsightRequestBody()
    request = InsightRequest(
        mode=body.mode,
        force_regenerate=body.force,
        identity=identity,
        client_entries=body.entries,
    )
    status_code, payload = await handle_insight_request(request, db=db, cache=cache)
    return JSONResponse(status_code=status_code, content=payload)
