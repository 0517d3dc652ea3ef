"""Transcription records: listing, creation, metadata updates and sync endpoints."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..db.database import get_db
from ..models.job import JobStatus, ProcessingJob
from ..models.transcription import Transcription, TranscriptionStatus
from ..services import sync
from ..services.assemblyai import AssemblyAIClient, AssemblyAIError
from ..services.titles import TitleGenerationService
from ..utils.transcript import generate_fallback_title, generate_preview
from .deps import get_assemblyai_client, get_current_user, get_title_service

router = APIRouter()
logger = logging.getLogger(__name__)

LIST_LIMIT = 50


class TranscriptionCreate(BaseModel):
    assembly_ai_id: str
    file_name: Optional[str] = None
    language: Optional[str] = None
    duration: Optional[float] = None
    word_count: Optional[int] = None
    transcript: Optional[dict[str, Any]] = None


class TranscriptionSubmit(BaseModel):
    audio_url: str
    file_name: str


class TagsUpdate(BaseModel):
    tags: List[str] = Field(default_factory=list)


class GenerateTitleRequest(BaseModel):
    transcription_id: str
    transcript: dict[str, Any]


class ProcessTitlesRequest(BaseModel):
    batch_size: int = Field(default=2, ge=1, le=10)


class EnrichBatchRequest(BaseModel):
    transcript_ids: List[str]


def _get_owned(db: Session, transcription_id: str, user_email: str) -> Transcription:
    transcription = db.get(Transcription, transcription_id)
    if transcription is None or transcription.user_email != user_email:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transcription not found")
    return transcription


@router.get("")
async def list_transcriptions(user_email: str = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    """Return the caller's most recent transcriptions."""
    rows = (
        db.query(Transcription)
        .filter(Transcription.user_email == user_email)
        .order_by(Transcription.assembly_created_at.desc(), Transcription.created_at.desc())
        .limit(LIST_LIMIT)
        .all()
    )
    logger.info("Found %d transcriptions for %s", len(rows), user_email)
    return {"transcriptions": [t.to_dict() for t in rows]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transcription(
    body: TranscriptionCreate,
    user_email: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    """Record a transcription the browser created directly at AssemblyAI."""
    transcript = body.transcript or {}
    transcription = Transcription(
        assembly_ai_id=body.assembly_ai_id,
        user_email=user_email,
        file_name=body.file_name,
        language=body.language,
        duration=body.duration,
        word_count=body.word_count,
        preview=generate_preview(transcript) if transcript else None,
        assembly_created_at=sync.parse_created(transcript.get("created")),
        status=TranscriptionStatus.COMPLETED if transcript.get("status") == "completed" else TranscriptionStatus.PROCESSING,
        title=None,
        title_generating=True,
    )
    db.add(transcription)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Transcription already exists")
    db.refresh(transcription)
    logger.info("Created transcription %s", transcription.id)
    return {"transcription": transcription.to_dict()}


@router.post("/submit", status_code=status.HTTP_201_CREATED)
async def submit_transcription(
    body: TranscriptionSubmit,
    user_email: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: AssemblyAIClient = Depends(get_assemblyai_client),
) -> dict:
    """Send an audio URL to AssemblyAI; the webhook finishes the record later."""
    try:
        submitted = await client.submit_transcription(
            body.audio_url,
            webhook_url=f"{settings.PUBLIC_BASE_URL}/api/webhooks/assemblyai",
            webhook_secret=settings.WEBHOOK_SECRET or None,
        )
    except AssemblyAIError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"AssemblyAI error: {exc}")

    transcription = Transcription(
        assembly_ai_id=submitted["id"],
        user_email=user_email,
        file_name=body.file_name,
        status=TranscriptionStatus.PROCESSING,
        title_generating=True,
    )
    db.add(transcription)
    db.commit()
    return {"id": transcription.id, "assembly_ai_id": submitted["id"], "status": TranscriptionStatus.PROCESSING.value}


@router.post("/mark-all-viewed")
async def mark_all_viewed(user_email: str = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    count = (
        db.query(Transcription)
        .filter(Transcription.user_email == user_email, Transcription.is_new.is_(True))
        .update({"is_new": False, "viewed_at": datetime.utcnow()}, synchronize_session=False)
    )
    db.commit()
    return {"success": True, "count": count}


@router.post("/generate-title")
async def generate_title(
    body: GenerateTitleRequest,
    user_email: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    titles: TitleGenerationService = Depends(get_title_service),
) -> dict:
    """Generate a title synchronously (waits for the queue)."""
    transcription = _get_owned(db, body.transcription_id, user_email)
    metadata = await titles.generate_title(body.transcript)
    if metadata:
        transcription.title = metadata.title
        transcription.company_names = metadata.company_names
        transcription.person_names = metadata.person_names
        transcription.meeting_type = metadata.meeting_type
    else:
        transcription.title = generate_fallback_title(transcription.file_name, transcription.language, transcription.duration)
    transcription.title_generating = False
    db.commit()
    db.refresh(transcription)
    return {"transcription": transcription.to_dict()}


@router.post("/process-titles")
async def process_titles(
    body: ProcessTitlesRequest,
    user_email: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: AssemblyAIClient = Depends(get_assemblyai_client),
    titles: TitleGenerationService = Depends(get_title_service),
) -> dict:
    return await sync.process_titles(db, user_email, client, titles, batch_size=body.batch_size)


@router.post("/init-sync")
async def init_sync(
    user_email: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: AssemblyAIClient = Depends(get_assemblyai_client),
) -> dict:
    try:
        return await sync.init_sync(db, user_email, client)
    except AssemblyAIError as exc:
        logger.error("init-sync failed for %s: %s", user_email, exc, exc_info=True)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Failed to initialize sync: {exc}")


@router.post("/enrich-batch")
async def enrich_batch(
    body: EnrichBatchRequest,
    user_email: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: AssemblyAIClient = Depends(get_assemblyai_client),
    titles: TitleGenerationService = Depends(get_title_service),
) -> dict:
    return await sync.enrich_batch(db, user_email, client, titles, body.transcript_ids)


@router.post("/resync", status_code=status.HTTP_202_ACCEPTED)
async def resync(
    user_email: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    """Purge and re-import everything in the background worker.

    The worker authenticates with the server's AssemblyAI key; the broker
    message carries only the job id.
    """
    if not settings.ASSEMBLYAI_API_KEY:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="AssemblyAI not configured")
    from ..workers.tasks import resync_transcriptions_task  # local import: loads Celery only when needed

    job = ProcessingJob(job_type="resync", user_email=user_email, status=JobStatus.PENDING)
    db.add(job)
    db.commit()
    db.refresh(job)
    resync_transcriptions_task.delay(job.id)
    logger.info("Dispatched resync job %s for %s", job.id, user_email)
    return {"job_id": job.id, "status": job.status_str}


@router.get("/{transcription_id}")
async def get_transcription(
    transcription_id: str,
    user_email: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return {"transcription": _get_owned(db, transcription_id, user_email).to_dict()}


@router.patch("/{transcription_id}")
async def update_tags(
    transcription_id: str,
    body: TagsUpdate,
    user_email: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    transcription = _get_owned(db, transcription_id, user_email)
    transcription.tags = list(dict.fromkeys(t.strip() for t in body.tags if t.strip()))
    db.commit()
    db.refresh(transcription)
    return {"transcription": transcription.to_dict()}


@router.post("/{transcription_id}/mark-viewed")
async def mark_viewed(
    transcription_id: str,
    user_email: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    transcription = _get_owned(db, transcription_id, user_email)
    transcription.is_new = False
    transcription.viewed_at = datetime.utcnow()
    db.commit()
    return {"success": True}
