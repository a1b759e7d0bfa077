# ink journal backend api
# fastapi app with async mongodb, jwt auth, and gemini-powered journal insights

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.services.db import db
from app.services import llm_service
from app.services.rate_limit import RateLimitMiddleware
from app.routers import auth, entries, insights

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """startup: connect to mongodb. shutdown: close connection."""
    logger.info("Starting Ink Journal backend...")
    logger.info(f"Gemini key present: {bool(settings.GEMINI_API_KEY)}, model: {settings.GEMINI_MODEL}")
    await db.connect()
    await db.ensure_indexes()
    logger.info("Ink Journal backend ready")
    yield
    logger.info("Shutting down Ink Journal backend...")
    await db.close()


app = FastAPI(
    title="Ink Journal API",
    description="Backend API for the Ink journaling app: journal entries and AI weekly insights",
    version="0.1.0",
    lifespan=lifespan,
)

# added before cors so cors stays outermost and 429s carry cors headers
app.add_middleware(RateLimitMiddleware)

# cors: allow frontend (vite dev server on 3000, legacy 5173)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# register routers
app.include_router(auth.router)
app.include_router(entries.router)
app.include_router(insights.router)


@app.get("/health")
async def health_check():
    """basic health check endpoint"""
    return {"status": "ok", "service": "ink-journal-api"}


@app.get("/health/llm")
async def llm_health_check():
    """gemini connectivity probe. always 200, ok flag carries the result"""
    try:
        await llm_service.ping()
    except llm_service.LLMError as e:
        return {"ok": False, "status": e.status, "code": e.reason, "message": str(e)}
    return {"ok": True, "model": settings.GEMINI_MODEL}
