"""Webhook receiver for AssemblyAI transcript status changes."""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from ..config import settings
from ..db.database import get_db
from ..models.transcription import Transcription, TranscriptionStatus
from ..services.assemblyai import AssemblyAIClient, AssemblyAIError
from ..services.sync import apply_transcript_details
from ..services.titles import TitleGenerationService
from .deps import get_title_service

router = APIRouter()
logger = logging.getLogger(__name__)


class AssemblyAIWebhook(BaseModel):
    model_config = ConfigDict(extra="allow")

    transcript_id: str
    status: str


def _check_secret(provided: str | None) -> None:
    expected = settings.WEBHOOK_SECRET
    if not expected or not provided or not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/assemblyai")
async def assemblyai_webhook(
    payload: AssemblyAIWebhook,
    x_webhook_secret: str | None = Header(None),
    db: Session = Depends(get_db),
    titles: TitleGenerationService = Depends(get_title_service),
) -> dict:
    _check_secret(x_webhook_secret)
    logger.info("Webhook received for %s: %s", payload.transcript_id, payload.status)

    transcriptions = db.query(Transcription).filter(Transcription.assembly_ai_id == payload.transcript_id).all()
    if not transcriptions:
        logger.warning("Webhook for unknown transcript %s", payload.transcript_id)
        return {"received": True}

    if payload.status == "error":
        for transcription in transcriptions:
            transcription.status = TranscriptionStatus.ERROR
            transcription.title_generating = False
        db.commit()
        logger.error("Transcription %s failed at AssemblyAI", payload.transcript_id)
        return {"received": True}

    if payload.status != "completed":
        return {"received": True}

    # The webhook body only carries the id and status; fetch the full transcript.
    if not settings.ASSEMBLYAI_API_KEY:
        logger.error("ASSEMBLYAI_API_KEY not configured; cannot complete %s", payload.transcript_id)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="AssemblyAI not configured")
    try:
        transcript = await AssemblyAIClient(settings.ASSEMBLYAI_API_KEY).get_transcript(payload.transcript_id)
    except AssemblyAIError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Failed to fetch transcript: {exc}")

    for transcription in transcriptions:
        apply_transcript_details(transcription, transcript)
    db.commit()
    for transcription in transcriptions:
        titles.schedule(transcription.id, transcript)
    logger.info("Transcription %s completed successfully", payload.transcript_id)
    return {"received": True}
