# Router aggregator – import each route module here and expose ``api_router``
# for convenient inclusion in the FastAPI app.

from fastapi import APIRouter

from . import (
    routes_assemblyai,
    routes_jobs,
    routes_llm,
    routes_tags,
    routes_transcriptions,
    routes_webhooks,
)


api_router = APIRouter()
api_router.include_router(routes_transcriptions.router, prefix="/transcriptions", tags=["transcriptions"])
api_router.include_router(routes_tags.router, prefix="/tags", tags=["tags"])
api_router.include_router(routes_llm.router, prefix="/llm", tags=["llm"])
api_router.include_router(routes_assemblyai.router, prefix="/assemblyai", tags=["assemblyai"])
api_router.include_router(routes_webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(routes_jobs.router, prefix="/jobs", tags=["jobs"])
