"""Title generation on top of the throttled Gemini queue.

One :class:`TitleGenerationService` (and therefore one queue) exists per
process: ``create_app()`` builds it for the API, the Celery worker builds its
own for each resync run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping

from sqlalchemy.orm import Session

from ..db.database import SessionLocal
from ..models.transcription import Transcription
from ..utils.transcript import generate_fallback_title
from . import llm
from .throttled_queue import QueuePolicy, ThrottledTaskQueue

logger = logging.getLogger(__name__)

Generator = Callable[[Any], Awaitable["llm.TitleMetadata | None"]]


class TitleGenerationService:
    def __init__(
        self,
        queue: ThrottledTaskQueue,
        session_factory: Callable[[], Session] = SessionLocal,
        generator: Generator | None = None,
    ) -> None:
        self.queue = queue
        self.session_factory = session_factory
        self._generator = generator
        self._in_flight: set[str] = set()
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings) -> "TitleGenerationService":
        return cls(ThrottledTaskQueue(QueuePolicy.from_settings(settings)))

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _generate(self, words: Any) -> llm.TitleMetadata | None:
        generator = self._generator or llm.generate_title_metadata
        return await generator(words)

    async def generate_title(self, transcript: Mapping[str, Any]) -> llm.TitleMetadata | None:
        """Run one Gemini call through the queue.

        Every failure the queue hands back (quota exhausted, retries exhausted,
        configuration or API errors) ends up as ``None`` so callers can fall
        back to a generated title.
        """
        words = transcript.get("words") or []
        try:
            return await self.queue.enqueue(lambda: self._generate(words))
        except llm.LLMConfigurationError as exc:
            logger.warning("Skipping title generation: %s", exc)
        except Exception as exc:
            logger.error("Error generating title with Gemini: %s", exc, exc_info=True)
        return None

    def is_processing(self, transcription_id: str) -> bool:
        return transcription_id in self._in_flight

    async def queue_title_generation(self, transcription_id: str, transcript: Mapping[str, Any]) -> str | None:
        """Generate and store the title of one transcription.

        Returns the stored title, or ``None`` if the id was already in flight
        or nothing could be stored.
        """
        if transcription_id in self._in_flight:
            logger.info("Transcription %s already in queue, skipping", transcription_id)
            return None
        self._in_flight.add(transcription_id)
        try:
            metadata = await self.generate_title(transcript)
            return self._store_title(transcription_id, metadata)
        except Exception as exc:
            logger.error("Error generating title for %s: %s", transcription_id, exc, exc_info=True)
            self._clear_generating_flag(transcription_id)
            return None
        finally:
            self._in_flight.discard(transcription_id)

    def schedule(self, transcription_id: str, transcript: Mapping[str, Any]) -> asyncio.Task:
        """Fire-and-forget :meth:`queue_title_generation`."""
        task = asyncio.get_running_loop().create_task(self.queue_title_generation(transcription_id, transcript))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_for_background(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def status(self) -> dict:
        status = self.queue.get_status().as_dict()
        status["processing_count"] = len(self._in_flight)
        return status

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _store_title(self, transcription_id: str, metadata: llm.TitleMetadata | None) -> str | None:
        db = self.session_factory()
        try:
            transcription = db.get(Transcription, transcription_id)
            if transcription is None:
                logger.warning("Transcription %s disappeared before its title was stored", transcription_id)
                return None

            if metadata and metadata.title:
                transcription.title = metadata.title
                transcription.company_names = metadata.company_names
                transcription.person_names = metadata.person_names
                transcription.meeting_type = metadata.meeting_type
            else:
                transcription.title = generate_fallback_title(
                    transcription.file_name, transcription.language, transcription.duration
                )
            transcription.title_generating = False
            db.commit()
            logger.info("Title updated for %s: %r", transcription_id, transcription.title)
            return transcription.title
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _clear_generating_flag(self, transcription_id: str) -> None:
        db = self.session_factory()
        try:
            transcription = db.get(Transcription, transcription_id)
            if transcription is not None:
                transcription.title_generating = False
                db.commit()
        except Exception as db_exc:
            logger.error("Failed to update title_generating flag for %s: %s", transcription_id, db_exc)
            db.rollback()
        finally:
            db.close()
