"""Endpoints exposing the Gemini title queue."""

from fastapi import APIRouter, Depends

from ..services.titles import TitleGenerationService
from .deps import get_current_user, get_title_service

router = APIRouter()


@router.get("/status")
async def queue_status(
    _user_email: str = Depends(get_current_user),
    titles: TitleGenerationService = Depends(get_title_service),
) -> dict:
    """Snapshot of the title queue and its rate-limit policy."""
    status = titles.status()
    pending = status["pending_count"]
    if pending:
        message = f"Processing {pending} title generation{'s' if pending > 1 else ''}"
    else:
        message = "Queue is empty"
    return {
        "queue": status,
        "rate_limit": {
            "max_requests": status["policy"]["max_requests"],
            "window_seconds": status["policy"]["window_seconds"],
            "current_usage": status["requests_in_window"],
            "remaining": status["remaining_capacity"],
        },
        "message": message,
    }
