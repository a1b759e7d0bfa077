# backend configuration
# loads env vars for mongodb, jwt, gemini, and the insight pipeline

import os
from pathlib import Path
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# load .env from project root
load_dotenv(Path(__file__).parent.parent.parent / ".env")


class Settings(BaseSettings):
    # runtime environment. detail strings are only returned outside production
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # mongodb
    MONGODB_URI: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE", "ink_journal_db")

    # jwt auth
    JWT_SECRET: str = os.getenv("JWT_SECRET", "ink-dev-secret-change-in-production")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7

    # gemini (for insight generation)
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

    # cors
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # insight pipeline
    INSIGHT_WINDOW_DAYS: int = 7
    INSIGHT_CACHE_TTL_HOURS: int = 24
    ANON_CACHE_MAX_SIZE: int = 256

    # per-ip request limit across every route
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


settings = Settings()
