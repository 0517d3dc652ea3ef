"""Abstraction layer around the Gemini ``generateContent`` REST API.

Only one use case exists: turning a transcript sample into a short title plus
a bit of metadata (companies, people, meeting type).  Calls are *not* rate
limited here; callers go through the title queue
(:mod:`transcript_hub.services.titles`).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Sequence

import httpx

from ..config import settings
from ..utils.transcript import extract_sample, truncate_title
from .throttled_queue import RateLimitError

logger = logging.getLogger(__name__)

MEETING_TYPES = ("interview", "meeting", "presentation", "call", "brainstorm", "other")
MIN_SAMPLE_CHARS = 50
MAX_PROMPT_SAMPLE_CHARS = 3500

PROMPT_TEMPLATE = """Analyse this transcription and return a JSON object with a title and metadata.

INSTRUCTIONS:
1. Write a short, descriptive TITLE (max 60 characters)
2. Extract COMPANY NAMES that are mentioned (max 3)
3. Extract NAMES of the people being spoken with or about (max 3, not the interviewer/host)
4. Classify the conversation TYPE: interview, meeting, presentation, call, brainstorm or other

TITLE FORMAT RULES:
- With a company: "[Company] - [Topic]" (e.g. "Shell - Q4 Review")
- For an interview: "Interview: [Person] - [Topic]"
- With several people: "[Topic] with [Person]"
- Otherwise: just the main topic
- Write the title in the language of the transcription

TRANSCRIPTION SAMPLE:
{sample}

RESPONSE FORMAT (valid JSON only, no markdown):
{{
  "title": "The generated title",
  "companyNames": ["Company1", "Company2"],
  "personNames": ["Person1", "Person2"],
  "meetingType": "interview|meeting|presentation|call|brainstorm|other"
}}"""


class LLMConfigurationError(RuntimeError):
    """The generator cannot be called at all (e.g. missing API key)."""


@dataclass
class TitleMetadata:
    title: str
    company_names: list[str] = field(default_factory=list)
    person_names: list[str] = field(default_factory=list)
    meeting_type: str = "other"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_prompt(sample: str) -> str:
    return PROMPT_TEMPLATE.format(sample=sample[:MAX_PROMPT_SAMPLE_CHARS])


def _strip_code_fences(text: str) -> str:
    cleaned = re.sub(r"```(?:json)?\n?", "", text.strip(), flags=re.IGNORECASE)
    return cleaned.strip()


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()][:3]


def parse_title_response(text: str) -> TitleMetadata | None:
    """Parse the model answer; fall back to the first line as a bare title."""
    cleaned = _strip_code_fences(text)
    if not cleaned:
        return None
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Failed to parse JSON response, using raw text as title")
        first_line = re.sub(r'["{}\[\]]', "", cleaned.splitlines()[0]).strip()
        return TitleMetadata(title=truncate_title(first_line)) if first_line else None

    if not isinstance(parsed, dict):
        return None
    title = truncate_title(str(parsed.get("title") or ""))
    if not title:
        return None
    meeting_type = str(parsed.get("meetingType") or "other").lower()
    if meeting_type not in MEETING_TYPES:
        meeting_type = "other"
    return TitleMetadata(
        title=title,
        company_names=_string_list(parsed.get("companyNames")),
        person_names=_string_list(parsed.get("personNames")),
        meeting_type=meeting_type,
    )


def _extract_text(data: dict) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "\n".join(str(p.get("text") or "") for p in parts if isinstance(p, dict)).strip()


async def generate_content(prompt: str) -> str:
    """POST a single-turn prompt to Gemini and return the answer text.

    Raises:
        LLMConfigurationError: GEMINI_API_KEY is not configured.
        RateLimitError: Gemini answered 429.
        httpx.HTTPStatusError: any other non-2xx answer.
        httpx.RequestError: connection problems.
    """
    if not settings.GEMINI_API_KEY:
        raise LLMConfigurationError("GEMINI_API_KEY is not configured")

    url = f"{settings.GEMINI_BASE_URL}/models/{settings.GEMINI_MODEL}:generateContent"
    payload = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {"temperature": 0.3, "maxOutputTokens": 500},
    }
    async with httpx.AsyncClient(timeout=settings.GEMINI_TIMEOUT_SECONDS) as client:
        response = await client.post(url, params={"key": settings.GEMINI_API_KEY}, json=payload)
        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(
                f"Gemini returned 429 Too Many Requests: {response.text[:200]}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        response.raise_for_status()
        return _extract_text(response.json())


async def generate_title_metadata(
    words: Sequence[Any] | None,
    sample_size: int | None = None,
) -> TitleMetadata | None:
    """Generate a title and metadata for a transcript's word list.

    Returns ``None`` when the transcript is too short to title or the model
    produced nothing usable.  Errors from :func:`generate_content` propagate
    so the title queue can tell throttling apart from real failures.
    """
    sample = extract_sample(words, sample_size or settings.TITLE_SAMPLE_WORDS_PER_SECTION)
    if len(sample) < MIN_SAMPLE_CHARS:
        logger.warning("Transcript too short for title generation (%d chars)", len(sample))
        return None

    text = await generate_content(build_prompt(sample))
    metadata = parse_title_response(text)
    if metadata:
        logger.info(
            "Generated title: %s | Companies: %s | People: %s",
            metadata.title,
            metadata.company_names,
            metadata.person_names,
        )
    return metadata
