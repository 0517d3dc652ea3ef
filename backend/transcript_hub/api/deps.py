"""Shared FastAPI dependencies."""

from __future__ import annotations

import logging

from fastapi import Header, HTTPException, Request, status

from ..config import settings
from ..services.assemblyai import AssemblyAIClient
from ..services.titles import TitleGenerationService

logger = logging.getLogger(__name__)


def get_current_user(x_user_email: str | None = Header(None)) -> str:
    """Identity of the caller, as asserted by the upstream auth proxy."""
    email = (x_user_email or "").strip().lower()
    if not email or "@" not in email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    domain = settings.ALLOWED_EMAIL_DOMAIN.lower()
    if domain and not email.endswith(domain if domain.startswith("@") else f"@{domain}"):
        logger.warning("Rejected user outside allowed domain: %s", email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return email


def get_title_service(request: Request) -> TitleGenerationService:
    return request.app.state.title_service


def get_assemblyai_client(x_assemblyai_key: str | None = Header(None)) -> AssemblyAIClient:
    """AssemblyAI client for the caller's key, falling back to the server key."""
    api_key = x_assemblyai_key or settings.ASSEMBLYAI_API_KEY
    if not api_key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="AssemblyAI API key is required")
    return AssemblyAIClient(api_key)
