# insight service — weekly insight and future-self orchestration
# sources the 7-day window, computes mood stats, consults the cache, calls gemini,
# normalizes the output, and maps every outcome to an http status + body
#
# weekly mode:
#   NO_ENTRIES   -> {"error": "NO_ENTRIES"}
#   HAVE_ENTRIES -> CACHE_CHECK -> HIT  -> cached payload
#                               -> MISS -> CALL_LLM -> SUCCESS -> CACHE_WRITE -> payload
#                                                   -> FAILURE -> 502 (reason logged only)
#
# future-self mode skips the cache and never surfaces a failure: every error
# path resolves to FUTURE_SELF_FALLBACK_MESSAGE with a 200.

import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from app.config import settings
from app.models.insight import (
    WEEKLY_MODE,
    FUTURE_YOU_MODE,
    FutureSelfInsight,
    InsightCacheRecord,
    InsightEntry,
    WeeklyInsight,
)
from app.models.user import CallerIdentity, Identified
from app.services.db import Database
from app.services.entry_store import as_utc, find_entries
from app.services.insight_cache import ANON_OWNER_KEY, InsightCache
from app.services.llm_service import (
    FutureSelfPromptFields,
    LLMError,
    WeeklyPromptFields,
    request_future_self,
    request_weekly_insight,
)

logger = logging.getLogger(__name__)

FUTURE_SELF_FALLBACK_MESSAGE = (
    "This reflection is based on a small snapshot of recent entries. "
    "Even so, it's clear you're processing something meaningful. "
    "Be gentle with yourself today."
)

LIMITED_DATA_THRESHOLD = 150
LIMITED_DATA_NOTE = (
    "Based on limited journal text, provide insights mainly from mood tags and timestamps, "
    "and explicitly state that limitation."
)

RECENT_ENTRY_COUNT = 5
RECENT_ENTRY_MAX_CHARS = 500
FUTURE_SELF_SUMMARY_MAX_CHARS = 1200
FUTURE_SELF_STUB_COUNT = 7
PREVIEW_MAX_CHARS = 200

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_PATTERN = re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b")

# defaults applied when the model omits a field or returns the wrong type
#   howYouFelt     str        -> ""   (stripped)
#   weeklySummary  str        -> ""
#   moodDrivers    list[str]  -> []   (non-string items dropped)
#   patterns       list[str]  -> []   (non-string items dropped)
#   confidence     number     -> 0.5  (clamped to [0, 1])
WEEKLY_FIELD_DEFAULTS = {
    "howYouFelt": "",
    "weeklySummary": "",
    "moodDrivers": [],
    "patterns": [],
    "confidence": 0.5,
}


class NoEntries:
    """sentinel: nothing in the window to analyze"""

    def __repr__(self) -> str:
        return "NO_ENTRIES"


NO_ENTRIES = NoEntries()

InsightResult = Union[WeeklyInsight, FutureSelfInsight, NoEntries]


@dataclass(frozen=True)
class InsightRequest:
    mode: str
    force_regenerate: bool
    identity: CallerIdentity
    client_entries: list = field(default_factory=list)


@dataclass(frozen=True)
class InsightWindow:
    start: datetime
    end: datetime
    entries: tuple

    @property
    def latest_entry_at(self) -> Optional[str]:
        if not self.entries:
            return None
        return as_utc(self.entries[-1].date).isoformat()


@dataclass
class EntryStats:
    mood_counts: dict
    mood_distribution: dict
    combined_text: str
    most_written: Optional[str]
    preview: str

    @property
    def combined_text_length(self) -> int:
        return len(self.combined_text)


@dataclass(frozen=True)
class CacheDecision:
    hit: bool
    reason: str
    payload: Optional[WeeklyInsight] = None


# entry sourcing

def window_bounds(now: datetime, days: Optional[int] = None) -> tuple[datetime, datetime]:
    days = days if days is not None else settings.INSIGHT_WINDOW_DAYS
    return now - timedelta(days=days), now


def _parse_timestamp(value: Any, default: datetime) -> Optional[datetime]:
    """client timestamps: iso strings, epoch millis, or missing (-> default)"""
    if value is None or value == "":
        return default
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        return as_utc(datetime.fromisoformat(str(value).strip().replace("Z", "+00:00")))
    except ValueError:
        return None


def parse_client_entries(raw_entries: list, now: datetime) -> list[InsightEntry]:
    """lenient parse of request-body entries. unparseable items are dropped"""
    entries = []
    for raw in raw_entries or []:
        if not isinstance(raw, dict):
            continue
        date = _parse_timestamp(raw.get("createdAt") or raw.get("date"), now)
        if date is None:
            continue
        mood = raw.get("mood") or raw.get("moodEmoji")
        text = raw.get("content") or raw.get("text") or ""
        entries.append(InsightEntry(date=date, mood=str(mood) if mood else None, text=str(text)))
    return entries


def filter_window(entries: list[InsightEntry], start: datetime, end: datetime) -> list[InsightEntry]:
    """entries within [start, end], oldest first"""
    in_window = [e for e in entries if start <= as_utc(e.date) <= end]
    return sorted(in_window, key=lambda e: as_utc(e.date))


async def source_entries(
    db: Database,
    identity: CallerIdentity,
    client_entries: list,
    start: datetime,
    end: datetime,
) -> list[InsightEntry]:
    """stored entries for the caller, else client-supplied entries in the same window"""
    stored: list[InsightEntry] = []
    if isinstance(identity, Identified):
        try:
            stored = await find_entries(db, owner_id=identity.user_id, date_from=start, date_to=end)
        except Exception as e:
            # store unavailable is treated as "no stored entries"
            logger.error(f"Entry store query failed: {e}")
            stored = []

    if stored:
        return filter_window(stored, start, end)

    entries = filter_window(parse_client_entries(client_entries, end), start, end)
    if client_entries:
        logger.info(f"Using entries provided in request body, count={len(entries)}")
    return entries


# statistics

def time_bucket(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def mood_distribution(mood_counts: dict) -> dict:
    """integer percentages over entries that declare a mood (half-up rounding)"""
    total = sum(mood_counts.values())
    if total == 0:
        return {}
    return {mood: math.floor(count * 100 / total + 0.5) for mood, count in mood_counts.items()}


def redact_preview(text: str) -> str:
    preview = " ".join(text.split())[:PREVIEW_MAX_CHARS]
    preview = EMAIL_PATTERN.sub("[redacted-email]", preview)
    return PHONE_PATTERN.sub("[redacted-phone]", preview)


def compute_stats(entries: list[InsightEntry]) -> EntryStats:
    mood_counts: dict[str, int] = {}
    day_time_counts: dict[str, int] = {}
    texts = []

    for entry in entries:
        if entry.mood:
            mood_counts[entry.mood] = mood_counts.get(entry.mood, 0) + 1
        text = entry.text.strip()
        if text:
            texts.append(text)
        date = as_utc(entry.date)
        label = f"{DAY_NAMES[date.weekday()]} {time_bucket(date.hour)}"
        day_time_counts[label] = day_time_counts.get(label, 0) + 1

    # ties resolve to the label seen first
    most_written = max(day_time_counts, key=day_time_counts.get) if day_time_counts else None
    combined_text = " ".join(texts)

    return EntryStats(
        mood_counts=mood_counts,
        mood_distribution=mood_distribution(mood_counts),
        combined_text=combined_text,
        most_written=most_written,
        preview=redact_preview(combined_text),
    )


def limited_data_note(stats: EntryStats) -> str:
    return LIMITED_DATA_NOTE if stats.combined_text_length < LIMITED_DATA_THRESHOLD else ""


# prompt fields

def _entry_bullet(entry: InsightEntry) -> str:
    date = as_utc(entry.date).date().isoformat()
    mood = f" [{entry.mood}]" if entry.mood else ""
    text = " ".join(entry.text.split())[:RECENT_ENTRY_MAX_CHARS]
    return f"- {date}{mood}: {text or '(no text)'}"


def build_weekly_prompt_fields(window: InsightWindow, stats: EntryStats) -> WeeklyPromptFields:
    entries = list(window.entries)
    recent = entries[-RECENT_ENTRY_COUNT:]
    bullets = "\n".join(_entry_bullet(e) for e in recent)

    remaining = max(0, len(entries) - len(recent))
    top = sorted(stats.mood_distribution.items(), key=lambda kv: kv[1], reverse=True)[:3]
    top_moods = ", ".join(f"{mood} {pct}%" for mood, pct in top) or "no mood data"
    summary = (
        f"Remaining entries: {remaining}. Top moods: {top_moods}. "
        f"Most written: {stats.most_written or 'unknown'}."
    )

    return WeeklyPromptFields(
        window_start=window.start.isoformat(),
        window_end=window.end.isoformat(),
        entry_count=len(entries),
        mood_distribution_json=json.dumps(stats.mood_distribution),
        most_written=stats.most_written or "Unknown",
        recent_entries_bullets=f"{bullets}\n\nHigh-signal summary: {summary}",
        limited_data_note=limited_data_note(stats),
    )


def build_future_self_fields(entries: list[InsightEntry], stats: EntryStats) -> FutureSelfPromptFields:
    summary = " ".join(stats.combined_text.split())[:FUTURE_SELF_SUMMARY_MAX_CHARS]
    if not summary:
        # mood-only week: dated stubs instead of text
        summary = ", ".join(
            f"{as_utc(e.date).date().isoformat()}{f' [{e.mood}]' if e.mood else ''}"
            for e in entries[:FUTURE_SELF_STUB_COUNT]
        )

    return FutureSelfPromptFields(
        days=settings.INSIGHT_WINDOW_DAYS,
        entry_count=len(entries),
        mood_distribution_json=json.dumps(stats.mood_distribution),
        entries_summary=summary or "(no text)",
        limited_data_note=limited_data_note(stats),
    )


# response validation

def _coerce_text(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _coerce_string_list(value: Any, default: list) -> list[str]:
    if not isinstance(value, list):
        return list(default)
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _coerce_confidence(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        return default
    return min(1.0, max(0.0, float(value)))


def normalize_weekly_insight(parsed: Any, source_entry_count: int) -> WeeklyInsight:
    """coerce whatever the model returned into a valid weekly payload (see WEEKLY_FIELD_DEFAULTS)"""
    data = parsed if isinstance(parsed, dict) else {}
    defaults = WEEKLY_FIELD_DEFAULTS
    return WeeklyInsight(
        howYouFelt=_coerce_text(data.get("howYouFelt"), defaults["howYouFelt"]).strip(),
        weeklySummary=_coerce_text(data.get("weeklySummary"), defaults["weeklySummary"]),
        moodDrivers=_coerce_string_list(data.get("moodDrivers"), defaults["moodDrivers"]),
        patterns=_coerce_string_list(data.get("patterns"), defaults["patterns"]),
        confidence=_coerce_confidence(data.get("confidence"), defaults["confidence"]),
        sourceEntryCount=source_entry_count,
        isFallback=False,
    )


# cache policy

async def check_cache(
    cache: InsightCache,
    owner_key: str,
    latest_entry_at: Optional[str],
    now: datetime,
) -> CacheDecision:
    """a hit needs a fresh record built from the same latest entry and a real (non-fallback) payload"""
    try:
        record = await cache.get(owner_key)
    except Exception as e:
        logger.warning(f"Insight cache lookup failed: {e}")
        return CacheDecision(hit=False, reason="miss:no_cache")

    if record is None:
        return CacheDecision(hit=False, reason="miss:no_cache")

    age = now - as_utc(record.created_at)
    if age >= timedelta(hours=settings.INSIGHT_CACHE_TTL_HOURS):
        return CacheDecision(hit=False, reason="miss:cache_stale")
    if not latest_entry_at or record.latest_entry_at != latest_entry_at:
        return CacheDecision(hit=False, reason="miss:newer_entry")
    if record.payload is None:
        return CacheDecision(hit=False, reason="miss:cache_empty")
    if record.payload.is_fallback:
        return CacheDecision(hit=False, reason="miss:cached_fallback")

    source = "memory" if owner_key == ANON_OWNER_KEY else "db"
    return CacheDecision(hit=True, reason=f"hit:{source}_cache_fresh_latest_match", payload=record.payload)


async def _write_cache(cache: InsightCache, owner_key: str, record: InsightCacheRecord):
    try:
        await cache.put(owner_key, record)
        logger.info(f"Insight cached for owner {owner_key}")
    except Exception as e:
        # the cached artifact is advisory; the caller still gets the fresh result
        logger.warning(f"Failed to write insight cache: {e}")


# orchestration

async def generate_insight(
    request: InsightRequest,
    *,
    db: Database,
    cache: InsightCache,
    now: Optional[datetime] = None,
) -> InsightResult:
    """run the pipeline for one request. adapter failures propagate as LLMError"""
    now = now or datetime.now(timezone.utc)
    start, end = window_bounds(now)
    caller = "identified" if isinstance(request.identity, Identified) else "anonymous"
    logger.info(f"Insight request: mode={request.mode} force={request.force_regenerate} caller={caller}")

    entries = await source_entries(db, request.identity, request.client_entries, start, end)
    logger.info(f"Entries in window: {len(entries)}")
    if not entries:
        logger.info("No entries available, skipping Gemini call")
        return NO_ENTRIES

    window = InsightWindow(start=start, end=end, entries=tuple(entries))
    stats = compute_stats(entries)
    logger.info(
        f"Mood distribution: {stats.mood_distribution}, "
        f"combined text length: {stats.combined_text_length}"
    )
    logger.info(f"Request payload preview: {stats.preview}")

    if request.mode == FUTURE_YOU_MODE:
        message = await request_future_self(build_future_self_fields(entries, stats))
        logger.info("Future-self reflection generated")
        return FutureSelfInsight(futureYouMessage=message)

    owner_key = request.identity.owner_key
    if request.force_regenerate:
        logger.info("Cache bypassed: force regenerate")
    else:
        decision = await check_cache(cache, owner_key, window.latest_entry_at, now)
        logger.info(f"Cache hit: {decision.hit}, reason: {decision.reason}")
        if decision.hit:
            return decision.payload.model_copy(update={"source_entry_count": len(entries)})

    raw = await request_weekly_insight(build_weekly_prompt_fields(window, stats))
    logger.debug(f"Gemini raw preview: {raw.raw_text[:PREVIEW_MAX_CHARS]}")
    insight = normalize_weekly_insight(raw.parsed, source_entry_count=len(entries))
    logger.info("Weekly insight generated")

    if not request.force_regenerate and not insight.is_fallback:
        await _write_cache(cache, owner_key, InsightCacheRecord(
            owner_key=owner_key,
            latest_entry_at=window.latest_entry_at,
            created_at=now,
            payload=insight,
        ))

    return insight


# result handling, one strategy per mode

DETAIL_MESSAGES = {
    "missing_api_key": "GEMINI_API_KEY missing",
    "auth_error": "Gemini authentication error",
    "model_not_found": "Gemini model not found",
    "rate_limit": "Gemini rate limit",
    "network_error": "Gemini network error",
}


class ResultStrategy(ABC):
    """maps pipeline outcomes to (status_code, body)"""

    def on_success(self, result: Union[WeeklyInsight, FutureSelfInsight]) -> tuple[int, dict]:
        return 200, result.model_dump(by_alias=True)

    def on_no_entries(self) -> tuple[int, dict]:
        return 200, {"error": "NO_ENTRIES"}

    @abstractmethod
    def on_llm_error(self, exc: LLMError) -> tuple[int, dict]:
        ...

    @abstractmethod
    def on_unexpected(self, exc: Exception) -> tuple[int, dict]:
        ...


class WeeklyResultStrategy(ResultStrategy):
    """adapter failures -> 502, anything else -> 500. details only outside production"""

    def on_llm_error(self, exc: LLMError) -> tuple[int, dict]:
        logger.warning(
            f"Weekly insight failed: reason={exc.reason} status={exc.status} "
            f"code={exc.code} message={exc}"
        )
        body = {"error": "AI request failed"}
        if not settings.is_production:
            body["details"] = DETAIL_MESSAGES.get(exc.reason, str(exc))
        return 502, body

    def on_unexpected(self, exc: Exception) -> tuple[int, dict]:
        logger.exception(f"Insights handler error: {exc}")
        body = {"error": "Unexpected server error"}
        if not settings.is_production:
            body["message"] = str(exc)
        return 500, body


class FutureSelfResultStrategy(ResultStrategy):
    """every failure resolves to the fixed reflection"""

    def _fallback(self) -> tuple[int, dict]:
        return 200, FutureSelfInsight(futureYouMessage=FUTURE_SELF_FALLBACK_MESSAGE).model_dump(by_alias=True)

    def on_llm_error(self, exc: LLMError) -> tuple[int, dict]:
        logger.warning(f"Future-self generation failed, returning fallback: reason={exc.reason} message={exc}")
        return self._fallback()

    def on_unexpected(self, exc: Exception) -> tuple[int, dict]:
        logger.exception(f"Future-self handler error, returning fallback: {exc}")
        return self._fallback()


STRATEGIES: dict[str, ResultStrategy] = {
    WEEKLY_MODE: WeeklyResultStrategy(),
    FUTURE_YOU_MODE: FutureSelfResultStrategy(),
}


def strategy_for(mode: str) -> ResultStrategy:
    return STRATEGIES.get(mode, STRATEGIES[WEEKLY_MODE])


async def handle_insight_request(
    request: InsightRequest,
    *,
    db: Database,
    cache: InsightCache,
    now: Optional[datetime] = None,
) -> tuple[int, dict]:
    """entry point for the insights route. the strategy is picked once, by mode"""
    strategy = strategy_for(request.mode)
    try:
        result = await generate_insight(request, db=db, cache=cache, now=now)
    except LLMError as e:
        return strategy.on_llm_error(e)
    except Exception as e:
        return strategy.on_unexpected(e)

    if isinstance(result, NoEntries):
        return strategy.on_no_entries()
    return strategy.on_success(result)
