# seed script — creates a demo user with a week of mood-tagged entries
# run once: python -m app.seed

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone

from app.services.db import db
from app.services.auth_service import hash_password

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

# seed password from env
DEFAULT_PASSWORD = os.getenv("SEED_PASSWORD", "ink-demo-password")

DEMO_EMAIL = "demo@ink.app"

# (days ago, hour, mood, text)
DEMO_ENTRIES = [
    (6, 8, "anxious", "Big presentation at work tomorrow. Kept rehearsing in my head instead of sleeping."),
    (5, 19, "stressed", "Presentation went okay but my manager asked for a rewrite by Friday."),
    (4, 22, "sad", "Skipped dinner with friends to work late. Felt lonely afterwards."),
    (3, 7, "calm", "Went for a run before work. The quiet streets helped."),
    (2, 13, "grateful", "Lunch with my sister. We laughed about old family trips."),
    (1, 20, "motivated", "Finished the rewrite early. Planning a slower weekend."),
    (0, 9, "joy", ""),
]


async def seed():
    """create the demo user and its entries, skips if the user already exists"""
    await db.connect()
    await db.ensure_indexes()

    existing = await db.users.find_one({"email": DEMO_EMAIL})
    if existing:
        logger.info(f"Demo user already exists: {DEMO_EMAIL} (id: {existing['_id']})")
        await db.close()
        return

    result = await db.users.insert_one({
        "email": DEMO_EMAIL,
        "hashed_password": hash_password(DEFAULT_PASSWORD),
        "name": "Demo Writer",
        "created_at": datetime.now(timezone.utc),
    })
    user_id = str(result.inserted_id)
    logger.info(f"Created demo user: {DEMO_EMAIL} (id: {user_id})")

    today = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    docs = []
    for days_ago, hour, mood, text in DEMO_ENTRIES:
        # keep today's entry from landing in the future
        created_at = min((today - timedelta(days=days_ago)).replace(hour=hour), today)
        docs.append({
            "user_id": user_id,
            "content": text,
            "mood_tags": [mood],
            "mood_emoji": None,
            "created_at": created_at,
            "updated_at": created_at,
        })
    await db.entries.insert_many(docs)
    logger.info(f"Created {len(docs)} demo entries")

    logger.info("Seed complete!")
    await db.close()


if __name__ == "__main__":
    asyncio.run(seed())
