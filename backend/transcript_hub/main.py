"""ASGI entry-point for the FastAPI application.

This module
1. instantiates the :class:`fastapi.FastAPI` application;
2. builds the process-wide title generation queue and stores it on
   ``app.state`` (routes receive it through a dependency);
3. wires all API routers located in ``transcript_hub.api``;
4. registers global exception handlers and middleware; and
5. performs a few start-up sanity checks.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from transcript_hub.api import api_router
from transcript_hub.config import settings
from transcript_hub.logging_config import LOG_DIR as APP_LOG_DIR
from transcript_hub.logging_config import setup_logging
from transcript_hub.services.titles import TitleGenerationService


# ---------------------------------------------------------------------------
# Logging must be configured as soon as possible so that any errors during
# import/start-up are captured.
# ---------------------------------------------------------------------------
setup_logging()
logger = logging.getLogger(__name__)


class AppBaseException(Exception):
    """Domain-level base exception so we can map to JSON responses easily."""

    def __init__(self, status_code: int, detail: str) -> None:  # noqa: D401
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def create_app(title_service: TitleGenerationService | None = None) -> FastAPI:  # noqa: D401
    """Wire and return the FastAPI application instance."""

    app = FastAPI(
        title="Transcript Hub API",
        version="0.1.0",
        docs_url="/api/docs",
    )
    app.state.title_service = title_service or TitleGenerationService.from_settings(settings)

    # ------------------------------------------------------------------
    # Start-up / shutdown
    # ------------------------------------------------------------------

    @app.on_event("startup")
    async def _startup_checks() -> None:  # noqa: D401
        logger.info("Running start-up checks …")
        log_dir = Path(APP_LOG_DIR)
        writable = log_dir.is_dir() and os.access(str(log_dir), os.W_OK)
        logger.info("Log directory %s is %swritable", log_dir, "" if writable else "NOT ")
        if not settings.GEMINI_API_KEY:
            logger.warning("GEMINI_API_KEY not configured; fallback titles will be used")
        if not settings.WEBHOOK_SECRET:
            logger.warning("WEBHOOK_SECRET not configured; AssemblyAI webhooks will be rejected")
        logger.info("Title queue policy: %s", app.state.title_service.queue.policy)
        logger.info("Start-up checks finished.")

    @app.on_event("shutdown")
    async def _close_title_queue() -> None:  # noqa: D401
        await app.state.title_service.queue.close()

    # ------------------------------------------------------------------
    # Exception handlers
    # ------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(  # noqa: D401
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:  # type: ignore[valid-type]
        logger.error("Request validation error: %s", exc.errors())
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(  # noqa: D401
        _request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:  # type: ignore[valid-type]
        logger.error("HTTP exception %s: %s", exc.status_code, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))

    @app.exception_handler(AppBaseException)
    async def _app_error_handler(  # noqa: D401
        _request: Request,
        exc: AppBaseException,
    ) -> JSONResponse:  # type: ignore[valid-type]
        logger.error("Application exception: %s", exc.detail, exc_info=True)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def _generic_error_handler(  # noqa: D401
        _request: Request,
        exc: Exception,
    ) -> JSONResponse:  # type: ignore[valid-type]
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")

    # ------------------------------------------------------------------
    # Ensure DB schema exists (development convenience only).
    # ------------------------------------------------------------------

    try:
        from transcript_hub.db.database import create_tables  # local import to avoid circular deps

        create_tables()
    except Exception as exc:  # pragma: no cover
        logger.exception("Failed to create DB schema: %s", exc)

    @app.get("/api/health")
    async def _health() -> dict[str, str]:  # noqa: D401
        return {"status": "ok"}

    return app


# Instantiate at import time so `uvicorn transcript_hub.main:app` works.
app: FastAPI = create_app()
