"""Helpers for working with AssemblyAI transcript payloads."""

import math
import time
from pathlib import PurePath
from typing import Any, Callable, Hashable, Mapping, Sequence

TITLE_MAX_LENGTH = 60
DEFAULT_SAMPLE_SIZE = 200


def _word_text(word: Any) -> str:
    if isinstance(word, Mapping):
        return str(word.get("text") or "")
    return str(getattr(word, "text", "") or "")


def extract_sample(words: Sequence[Any] | None, sample_size: int = DEFAULT_SAMPLE_SIZE) -> str:
    """Return a bounded text sample covering the start, middle and end of a transcript.

    Transcripts with at most ``3 * sample_size`` words are returned whole.
    Longer ones yield ``sample_size`` words from the start, ``sample_size``
    words centred on the midpoint and ``sample_size`` words from the end.

    Words may be AssemblyAI word dicts (``{"text": ..., "start": ...}``) or any
    object with a ``text`` attribute.
    """
    if not words:
        return ""
    if sample_size < 1:
        raise ValueError("sample_size must be at least 1")

    total = len(words)
    if total <= sample_size * 3:
        return " ".join(_word_text(w) for w in words)

    mid = total // 2
    start = words[:sample_size]
    middle = words[mid - sample_size // 2: mid + math.ceil(sample_size / 2)]
    end = words[-sample_size:]
    return " ".join(_word_text(w) for w in [*start, *middle, *end])


def generate_preview(transcript: Mapping[str, Any] | None, max_length: int = 150) -> str:
    """Join the first three utterances into a short preview."""
    utterances = (transcript or {}).get("utterances") or []
    if not utterances:
        return ""
    text = " ".join(u.get("text", "") for u in utterances[:3])
    if len(text) > max_length:
        return text[:max_length].strip() + "..."
    return text


def truncate_title(title: str, limit: int = TITLE_MAX_LENGTH) -> str:
    title = title.strip()
    if len(title) > limit:
        return title[: limit - 3] + "..."
    return title


def generate_fallback_title(file_name: str | None, language: str | None, duration: float | None) -> str:
    """Title used when the generator is unavailable, throttled out or returns nothing."""
    if file_name:
        cleaned = PurePath(file_name).stem.replace("-", " ").replace("_", " ")
        return cleaned[:1].upper() + cleaned[1:]

    if language and language.startswith("nl"):
        flag = "🇳🇱"
    elif language and language.startswith("en"):
        flag = "🇬🇧"
    else:
        flag = "🌐"
    minutes = round(duration / 60) if duration else 0
    return f"{flag} Transcription {minutes}min"


class TTLCache:
    """Tiny time-based cache for transcripts fetched from AssemblyAI.

    Completed transcripts never change, so the only reason to expire entries is
    to bound memory.
    """

    def __init__(self, ttl: float = 5 * 60, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._items: dict[Hashable, tuple[float, Any]] = {}

    def set(self, key: Hashable, value: Any) -> None:
        self._items[key] = (self._clock(), value)

    def get(self, key: Hashable) -> Any | None:
        item = self._items.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self._clock() - stored_at > self.ttl:
            del self._items[key]
            return None
        return value

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
