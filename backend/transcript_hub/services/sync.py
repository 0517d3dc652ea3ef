"""Importing a user's AssemblyAI history into the local database.

Two flavours exist:

* the *incremental* flow used by the browser: ``init_sync`` inserts cheap
  placeholder rows, then ``enrich_batch`` / ``process_titles`` are called
  repeatedly with small batches so each request stays short;
* ``purge_and_resync``, the one-shot version run by the Celery worker.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.orm import Session

from ..models.transcription import Transcription, TranscriptionStatus
from ..utils.transcript import generate_preview
from .assemblyai import AssemblyAIClient, AssemblyAIError
from .titles import TitleGenerationService

logger = logging.getLogger(__name__)

ENRICH_BATCH_LIMIT = 3
PLACEHOLDER_TITLE = "Loading..."
PLACEHOLDER_PREVIEW = "Loading transcript data..."


def parse_created(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable AssemblyAI timestamp: %r", value)
        return None


def apply_transcript_details(transcription: Transcription, transcript: dict) -> None:
    """Copy language/duration/word count/preview from a full AssemblyAI transcript."""
    transcription.language = transcript.get("language_code")
    transcription.duration = transcript.get("audio_duration")
    transcription.word_count = len(transcript.get("words") or [])
    transcription.preview = generate_preview(transcript)
    transcription.full_text = transcript.get("text")
    transcription.status = TranscriptionStatus.COMPLETED
    created = parse_created(transcript.get("created"))
    if created:
        transcription.assembly_created_at = created


def purge_user(db: Session, user_email: str) -> int:
    deleted = db.query(Transcription).filter(Transcription.user_email == user_email).delete()
    db.commit()
    logger.info("Deleted %d existing transcriptions for %s", deleted, user_email)
    return deleted


async def init_sync(db: Session, user_email: str, client: AssemblyAIClient) -> dict:
    """Purge the user's records and insert one placeholder per completed transcript."""
    deleted = purge_user(db, user_email)
    summaries = await client.list_transcripts()
    if not summaries:
        return {"success": True, "purged": deleted, "total": 0, "ids": [], "message": "No transcripts found at AssemblyAI"}

    ids: list[str] = []
    for summary in summaries:
        if summary["id"] in ids:
            continue
        ids.append(summary["id"])
        db.add(
            Transcription(
                assembly_ai_id=summary["id"],
                user_email=user_email,
                assembly_created_at=parse_created(summary.get("created")),
                title=PLACEHOLDER_TITLE,
                title_generating=True,
                preview=PLACEHOLDER_PREVIEW,
                status=TranscriptionStatus.COMPLETED,
                is_new=True,
            )
        )
    db.commit()
    logger.info("Inserted %d placeholder records for %s", len(ids), user_email)
    return {
        "success": True,
        "purged": deleted,
        "total": len(ids),
        "ids": ids,
        "message": f"{len(ids)} transcripts ready for enrichment",
    }


def _find(db: Session, user_email: str, assembly_ai_id: str) -> Transcription | None:
    return (
        db.query(Transcription)
        .filter(Transcription.user_email == user_email, Transcription.assembly_ai_id == assembly_ai_id)
        .first()
    )


async def enrich_batch(
    db: Session,
    user_email: str,
    client: AssemblyAIClient,
    titles: TitleGenerationService,
    transcript_ids: Iterable[str],
) -> dict:
    """Fill in details for up to three placeholder rows and schedule their titles."""
    batch = list(transcript_ids)[:ENRICH_BATCH_LIMIT]
    results: list[dict] = []
    for transcript_id in batch:
        transcription = _find(db, user_email, transcript_id)
        if transcription is None:
            results.append({"id": transcript_id, "success": False, "error": "Transcription not found"})
            continue
        try:
            transcript = await client.get_transcript(transcript_id)
        except AssemblyAIError as exc:
            logger.error("Failed to fetch transcript %s: %s", transcript_id, exc)
            transcription.title = "Failed to load"
            transcription.title_generating = False
            transcription.preview = "Could not load transcript data"
            db.commit()
            results.append({"id": transcript_id, "success": False, "error": "Failed to fetch transcript"})
            continue

        apply_transcript_details(transcription, transcript)
        db.commit()
        titles.schedule(transcription.id, transcript)
        results.append({"id": transcript_id, "success": True, "transcription_id": transcription.id})
        logger.info("Enriched %s", transcript_id)

    successful = sum(1 for r in results if r["success"])
    logger.info("Batch complete: %d/%d successful", successful, len(batch))
    return {"success": True, "processed": len(batch), "successful": successful, "results": results}


async def process_titles(
    db: Session,
    user_email: str,
    client: AssemblyAIClient,
    titles: TitleGenerationService,
    batch_size: int = 2,
) -> dict:
    """Schedule titles for a few records that are still waiting for one."""
    pending = (
        db.query(Transcription)
        .filter(Transcription.user_email == user_email, Transcription.title_generating.is_(True))
        .order_by(Transcription.created_at.desc())
        .all()
    )
    batch = [t for t in pending if not titles.is_processing(t.id)][:batch_size]

    processed = 0
    for transcription in batch:
        try:
            transcript = await client.get_transcript(transcription.assembly_ai_id)
        except AssemblyAIError as exc:
            logger.error("Failed to fetch transcript %s: %s", transcription.assembly_ai_id, exc)
            # don't retry it on every call
            transcription.title_generating = False
            db.commit()
            continue
        titles.schedule(transcription.id, transcript)
        processed += 1
        logger.info("Queued title generation for %s", transcription.id)

    remaining = (
        db.query(Transcription)
        .filter(Transcription.user_email == user_email, Transcription.title_generating.is_(True))
        .count()
    )
    has_more = remaining > 0
    return {
        "success": True,
        "processed": processed,
        "remaining": remaining,
        "has_more": has_more,
        "message": f"Processed {processed} items, {remaining} remaining" if has_more else f"All {processed} items processed",
    }


async def purge_and_resync(
    db: Session,
    user_email: str,
    client: AssemblyAIClient,
    titles: TitleGenerationService,
) -> dict:
    """Full re-import: purge, fetch every transcript, store it, then title all of them."""
    deleted = purge_user(db, user_email)
    summaries = await client.list_transcripts()

    synced: list[tuple[str, dict]] = []
    for index, summary in enumerate(summaries, start=1):
        logger.info("Syncing %d/%d: %s", index, len(summaries), summary["id"])
        try:
            transcript = await client.get_transcript(summary["id"])
        except AssemblyAIError as exc:
            logger.warning("Skipping %s: failed to fetch details (%s)", summary["id"], exc)
            continue
        if _find(db, user_email, transcript["id"]) is not None:
            continue
        transcription = Transcription(assembly_ai_id=transcript["id"], user_email=user_email, title=None, title_generating=True)
        apply_transcript_details(transcription, transcript)
        db.add(transcription)
        db.commit()
        synced.append((transcription.id, transcript))

    logger.info("Synced %d transcriptions, generating titles", len(synced))
    for transcription_id, transcript in synced:
        titles.schedule(transcription_id, transcript)
    await titles.wait_for_background()

    return {"purged": deleted, "synced": len(synced), "total": len(summaries)}
