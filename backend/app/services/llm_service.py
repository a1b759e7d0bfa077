# llm service — gemini client adapter for weekly insights and future-self reflections
# builds the prompts, requests schema-constrained json, and classifies provider failures
#
# call shapes:
#   request_weekly_insight(fields) -> WeeklyInsightRaw(raw_text, parsed)
#   request_future_self(fields)    -> str
#
# both ask gemini for json matching a fixed schema. when the provider does not
# hand back a parsed object, the raw text is parsed manually (code fences
# stripped, first balanced {...} extracted).

import asyncio
import json
import logging
import re
import socket
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from langchain_core.prompts import ChatPromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI

from app.config import settings

logger = logging.getLogger(__name__)

WEEKLY_MAX_OUTPUT_TOKENS = 350
WEEKLY_TEMPERATURE = 0.6
FUTURE_SELF_MAX_OUTPUT_TOKENS = 400
FUTURE_SELF_TEMPERATURE = 0.7

RATE_LIMIT_CODES = {"rate_limit_exceeded", "RESOURCE_EXHAUSTED"}
NETWORK_CODES = {"ENOTFOUND", "ECONNREFUSED", "ECONNRESET", "ETIMEDOUT"}
NETWORK_EXCEPTIONS = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    socket.gaierror,
)


# errors

class LLMError(Exception):
    """base for every adapter failure. reason is the internal diagnostic code"""

    reason = "upstream_error"

    def __init__(self, message: str, *, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code


class MissingCredentialError(LLMError):
    reason = "missing_api_key"


class RateLimitedError(LLMError):
    reason = "rate_limit"


class NetworkError(LLMError):
    reason = "network_error"


class ParseError(LLMError):
    """provider answered but the output could not be turned into json"""

    def __init__(self, message: str, *, kind: str, raw_text: str = ""):
        super().__init__(message)
        self.kind = kind  # empty_output | malformed
        self.raw_text = raw_text

    @property
    def reason(self) -> str:
        return f"parse_error:{self.kind}"


class UpstreamError(LLMError):
    """any other provider error, original status/code attached"""

    @property
    def reason(self) -> str:
        if self.status in (401, 403):
            return "auth_error"
        if self.status == 404:
            return "model_not_found"
        return "upstream_error"


# prompt inputs

@dataclass(frozen=True)
class WeeklyPromptFields:
    window_start: str
    window_end: str
    entry_count: int
    mood_distribution_json: str
    most_written: str
    recent_entries_bullets: str
    limited_data_note: str = ""


@dataclass(frozen=True)
class FutureSelfPromptFields:
    days: int
    entry_count: int
    mood_distribution_json: str
    entries_summary: str
    limited_data_note: str = ""


@dataclass(frozen=True)
class WeeklyInsightRaw:
    raw_text: str
    parsed: dict


# response schemas (gemini json schema constraint)

WEEKLY_INSIGHT_SCHEMA = {
    "type": "object",
    "properties": {
        "howYouFelt": {"type": "string"},
        "weeklySummary": {"type": "string"},
        "moodDrivers": {"type": "array", "items": {"type": "string"}},
        "patterns": {"type": "array", "items": {"type": "string"}},
        "confidence": {"type": "number"},
    },
    "required": ["howYouFelt", "weeklySummary", "moodDrivers", "patterns", "confidence"],
}

FUTURE_SELF_SCHEMA = {
    "type": "object",
    "properties": {
        "futureYou": {"type": "string"},
    },
    "required": ["futureYou"],
}


# prompts

WEEKLY_PROMPT = ChatPromptTemplate.from_messages([
    ("system", """You are Ink, a supportive journaling insights assistant. Produce accurate, non-judgmental weekly insights based only on the provided last-7-days data.
If written text is limited, explicitly say insights are mostly based on mood tags/patterns and begin howYouFelt with "Based on a small number of recent entries...".
Never invent specific events. Output ONLY valid JSON with the required schema. Keep it concise and actionable."""),
    ("human", """DATA:
- Date range: {window_start} to {window_end}
- Entries count (7 days): {entry_count}
- Mood distribution: {mood_distribution_json}
- Most written: {most_written}
- Recent entries (trimmed): {recent_entries_bullets}
- Notes: If journal text is limited, still produce insights using moodDistribution + patterns, and clearly state that limitation.

TASK:
Return ONLY valid JSON in this schema (no markdown, no extra text):
{{
  "howYouFelt": string,
  "weeklySummary": string,
  "moodDrivers": string[],
  "patterns": string[],
  "confidence": number
}}

STYLE RULES:
- howYouFelt: 2-5 supportive sentences, grounded in data
- weeklySummary: 1-2 sentences
- moodDrivers/patterns: 2-5 short items each
- confidence: 0 to 1 (float)
- Never include medical advice. Encourage gentle self-reflection.
- Do not mention the model name or API."""),
])

FUTURE_SELF_PROMPT = ChatPromptTemplate.from_messages([
    ("system", """You are writing a personal reflection as the user, six months in the future, speaking to their present self.
Keep it casual, human, and reflective. No therapy language, no clinical framing, no motivational advice, no "you should" phrasing.
Avoid em dashes. The output must be plain text only."""),
    ("human", """DATA:
- Entries count (last {days} days): {entry_count}
- Mood distribution: {mood_distribution_json}
- Summary of recent notes (trimmed): {entries_summary}
- Note: {limited_data_note}

TASK:
Write 1-2 short paragraphs in second person, from the user speaking to themselves from six months in the future.
The reflection should directly reference recent mood patterns and themes from the data (stress, sadness, work pressure, overthinking, etc.) without inventing specifics.
It should feel like recognition, not instruction, and avoid generic encouragement.
No headings, labels, bullet points, or markdown.

Return ONLY valid JSON:
{{
  "futureYou": string
}}"""),
])


def get_llm(temperature: float, max_output_tokens: int) -> ChatGoogleGenerativeAI:
    """create a gemini llm instance"""
    return ChatGoogleGenerativeAI(
        model=settings.GEMINI_MODEL,
        google_api_key=settings.GEMINI_API_KEY,
        temperature=temperature,
        max_output_tokens=max_output_tokens,
    )


def get_structured_llm(schema: dict, temperature: float, max_output_tokens: int):
    """gemini llm constrained to a json schema. ainvoke returns {raw, parsed, parsing_error}"""
    llm = get_llm(temperature=temperature, max_output_tokens=max_output_tokens)
    return llm.with_structured_output(schema, method="json_schema", include_raw=True)


# json extraction

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def _strip_code_fences(text: str) -> str:
    clean = _FENCE_OPEN.sub("", text.strip())
    return _FENCE_CLOSE.sub("", clean).strip()


def _first_balanced_object(text: str) -> Optional[str]:
    """return the first {...} substring whose braces balance, ignoring braces inside strings"""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def extract_json(text: str) -> dict:
    """parse a json object out of free-form model output"""
    clean = _strip_code_fences(text)
    try:
        parsed = json.loads(clean)
    except json.JSONDecodeError:
        candidate = _first_balanced_object(clean)
        if candidate is None:
            raise ParseError("No JSON found in response", kind="malformed", raw_text=text)
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as e:
            raise ParseError(f"Failed to parse JSON from response: {e}", kind="malformed", raw_text=text)

    if not isinstance(parsed, dict):
        raise ParseError("Expected a JSON object in response", kind="malformed", raw_text=text)
    return parsed


# error classification

def _status_of(exc: Exception) -> Optional[int]:
    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and 100 <= value < 600:
            return int(value)
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def _code_of(exc: Exception) -> Optional[str]:
    for attr in ("code", "status", "errno"):
        value = getattr(exc, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def classify_provider_error(exc: Exception) -> LLMError:
    """map a raw provider/transport exception onto the adapter taxonomy"""
    if isinstance(exc, LLMError):
        return exc

    status = _status_of(exc)
    code = _code_of(exc)
    message = str(exc) or type(exc).__name__

    if status == 429 or code in RATE_LIMIT_CODES:
        return RateLimitedError("Gemini rate limit", status=429, code=code)

    if (
        isinstance(exc, NETWORK_EXCEPTIONS)
        or code in NETWORK_CODES
        or type(exc).__name__ == "APIConnectionError"
    ):
        return NetworkError(message, status=status, code=code)

    return UpstreamError(message, status=status, code=code or type(exc).__name__)


def _require_api_key():
    if not settings.GEMINI_API_KEY:
        raise MissingCredentialError("GEMINI_API_KEY is required")


def _message_text(message: Any) -> str:
    """flatten an ai message's content (str or list of parts) into text"""
    if message is None:
        return ""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)


async def _invoke_structured(
    prompt: ChatPromptTemplate,
    variables: dict,
    schema: dict,
    temperature: float,
    max_output_tokens: int,
) -> tuple[str, Optional[dict]]:
    """single schema-constrained call. returns (raw text, parsed object or none)"""
    messages = prompt.format_messages(**variables)
    llm = get_structured_llm(schema, temperature=temperature, max_output_tokens=max_output_tokens)

    try:
        result = await llm.ainvoke(messages)
    except Exception as e:
        raise classify_provider_error(e) from e

    if isinstance(result, dict):
        raw_text = _message_text(result.get("raw")).strip()
        parsed = result.get("parsed")
    else:
        raw_text = _message_text(result).strip()
        parsed = None

    if parsed is not None and hasattr(parsed, "model_dump"):
        parsed = parsed.model_dump()
    if not isinstance(parsed, dict) or not parsed:
        parsed = None
    return raw_text, parsed


async def request_weekly_insight(fields: WeeklyPromptFields) -> WeeklyInsightRaw:
    """ask gemini for the weekly insight json"""
    _require_api_key()

    limited_note = f"\n- Limited data note: {fields.limited_data_note}" if fields.limited_data_note else ""
    raw_text, parsed = await _invoke_structured(
        WEEKLY_PROMPT,
        {
            "window_start": fields.window_start,
            "window_end": fields.window_end,
            "entry_count": fields.entry_count,
            "mood_distribution_json": fields.mood_distribution_json,
            "most_written": fields.most_written or "Unknown",
            "recent_entries_bullets": (fields.recent_entries_bullets or "(none)") + limited_note,
        },
        WEEKLY_INSIGHT_SCHEMA,
        temperature=WEEKLY_TEMPERATURE,
        max_output_tokens=WEEKLY_MAX_OUTPUT_TOKENS,
    )

    if parsed is None and not raw_text:
        raise ParseError("Empty Gemini response text", kind="empty_output")
    if parsed is not None:
        return WeeklyInsightRaw(raw_text=raw_text or json.dumps(parsed), parsed=parsed)

    logger.info("Structured output missing, extracting json from raw text")
    return WeeklyInsightRaw(raw_text=raw_text, parsed=extract_json(raw_text))


async def request_future_self(fields: FutureSelfPromptFields) -> str:
    """ask gemini for the future-self reflection text"""
    _require_api_key()

    raw_text, parsed = await _invoke_structured(
        FUTURE_SELF_PROMPT,
        {
            "days": fields.days,
            "entry_count": fields.entry_count,
            "mood_distribution_json": fields.mood_distribution_json,
            "entries_summary": fields.entries_summary or "(no text)",
            "limited_data_note": fields.limited_data_note or "No additional notes.",
        },
        FUTURE_SELF_SCHEMA,
        temperature=FUTURE_SELF_TEMPERATURE,
        max_output_tokens=FUTURE_SELF_MAX_OUTPUT_TOKENS,
    )

    if parsed is None and not raw_text:
        raise ParseError("Empty Gemini response text", kind="empty_output")
    if parsed is None:
        parsed = extract_json(raw_text)

    message = parsed.get("futureYou")
    message = message.strip() if isinstance(message, str) else ""
    if not message:
        raise ParseError("Missing futureYou in response", kind="malformed", raw_text=raw_text)
    return message


async def ping() -> None:
    """minimal connectivity probe used by /health/llm"""
    _require_api_key()
    llm = get_llm(temperature=0.0, max_output_tokens=5)
    try:
        await llm.ainvoke("ping")
    except Exception as e:
        raise classify_provider_error(e) from e
