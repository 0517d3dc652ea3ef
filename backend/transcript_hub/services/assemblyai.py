"""Thin async client for the AssemblyAI v2 REST API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..config import settings
from ..utils.transcript import TTLCache

logger = logging.getLogger(__name__)

# Shared across client instances; completed transcripts are immutable.  Entries
# are keyed by (api key, transcript id) so a hit never bypasses AssemblyAI's
# check that the caller's key may read the transcript.
transcript_cache = TTLCache()


class AssemblyAIError(Exception):
    """Non-2xx answer from AssemblyAI."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AssemblyAIClient:
    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float = 30.0,
        page_delay: float = 0.3,
        cache: TTLCache | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("AssemblyAI API key is required")
        self.api_key = api_key
        self.base_url = (base_url or settings.ASSEMBLYAI_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.page_delay = page_delay
        self.cache = transcript_cache if cache is None else cache

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self.api_key, "Content-Type": "application/json"}

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(method, url, headers=self._headers(), **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get("error")
            except ValueError:
                detail = None
            message = detail or f"AssemblyAI API error: {response.status_code}"
            logger.error("AssemblyAI %s %s failed: %s", method, url, message)
            raise AssemblyAIError(message, status_code=response.status_code)
        return response.json()

    async def submit_transcription(
        self,
        audio_url: str,
        webhook_url: str | None = None,
        webhook_secret: str | None = None,
    ) -> dict:
        """Start a transcription with speaker labels and language detection."""
        body: dict[str, Any] = {
            "audio_url": audio_url,
            "speaker_labels": True,
            "language_detection": True,
        }
        if webhook_url:
            body["webhook_url"] = webhook_url
            if webhook_secret:
                body["webhook_auth_header_name"] = "X-Webhook-Secret"
                body["webhook_auth_header_value"] = webhook_secret
        data = await self._request("POST", f"{self.base_url}/transcript", json=body)
        logger.info("Submitted transcription %s", data.get("id"))
        return data

    async def get_transcript(self, transcript_id: str) -> dict:
        cache_key = (self.api_key, transcript_id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached
        data = await self._request("GET", f"{self.base_url}/transcript/{transcript_id}")
        if data.get("status") == "completed":
            self.cache.set(cache_key, data)
        return data

    async def list_transcripts(self, status: str = "completed", limit: int = 100) -> list[dict]:
        """Return every transcript summary, following ``page_details.next_url``."""
        transcripts: list[dict] = []
        url: str | None = f"{self.base_url}/transcript?limit={limit}&status={status}"
        while url:
            data = await self._request("GET", url)
            transcripts.extend(data.get("transcripts") or [])
            url = (data.get("page_details") or {}).get("next_url")
            if url and self.page_delay:
                await asyncio.sleep(self.page_delay)
        logger.info("Fetched %d %s transcripts from AssemblyAI", len(transcripts), status)
        return transcripts
