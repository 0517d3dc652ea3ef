"""Read-only proxy for AssemblyAI transcripts (keeps the key server-side)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..services.assemblyai import AssemblyAIClient, AssemblyAIError
from .deps import get_assemblyai_client, get_current_user

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/transcript/{transcript_id}")
async def get_transcript(
    transcript_id: str,
    response: Response,
    _user_email: str = Depends(get_current_user),
    client: AssemblyAIClient = Depends(get_assemblyai_client),
) -> dict:
    try:
        data = await client.get_transcript(transcript_id)
    except AssemblyAIError as exc:
        logger.error("Error fetching transcript %s from AssemblyAI: %s", transcript_id, exc)
        code = status.HTTP_404_NOT_FOUND if exc.status_code == 404 else status.HTTP_502_BAD_GATEWAY
        raise HTTPException(status_code=code, detail=f"Failed to fetch transcript: {exc}")
    # Completed transcripts are immutable
    if data.get("status") == "completed":
        response.headers["Cache-Control"] = "s-maxage=3600, stale-while-revalidate=86400"
    return data
