"""Celery task definitions."""

import asyncio
import logging

from celery import Celery, Task

from transcript_hub.config import settings
from transcript_hub.db.database import SessionLocal, create_tables
from ..models.job import ProcessingJob, JobStatus
from ..services.assemblyai import AssemblyAIClient
from ..services.sync import purge_and_resync
from ..services.titles import TitleGenerationService
from ..logging_config import setup_logging as setup_app_logging

# Creating tables is a no-op if they already exist (and very fast).  This way
# the worker does not depend on the API container running first.
create_tables()

setup_app_logging()
logger = logging.getLogger(__name__)


# --- Celery Application Setup ---
celery_app = Celery(
    "tasks",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['transcript_hub.workers.tasks']
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
)


class BaseTaskWithDB(Task):
    """Base Celery Task that logs calls and marks the job FAILED on error."""
    abstract = True

    def __call__(self, *args, **kwargs):
        logger.info(f"Task {self.name} [{self.request.id}] called for job args: {args[:1]}")
        return super().__call__(*args, **kwargs)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Task {self.name} [{task_id}] failed: {exc}", exc_info=einfo)
        job_id = kwargs.get('job_id') or (args[0] if args and isinstance(args[0], int) else None)
        if job_id:
            mark_job_failed(job_id, exc)
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"Task {self.name} [{task_id}] completed successfully. Result: {retval}")
        super().on_success(retval, task_id, args, kwargs)


def mark_job_failed(job_id: int, exc: BaseException) -> None:
    db = SessionLocal()
    try:
        job = db.query(ProcessingJob).filter(ProcessingJob.id == job_id).first()
        if job:
            job.status = JobStatus.FAILED
            job.error_message = f"Task failed: {str(exc)[:500]}"
            db.commit()
        else:
            logger.warning(f"Job with id {job_id} not found for failure update.")
    except Exception as db_exc:
        logger.error(f"DB error during task failure handling for job {job_id}: {db_exc}", exc_info=True)
        db.rollback()
    finally:
        db.close()


async def _run_resync(db, user_email: str) -> dict:
    # The queue must live on the loop that asyncio.run() creates for this run.
    titles = TitleGenerationService.from_settings(settings)
    try:
        return await purge_and_resync(db, user_email, AssemblyAIClient(settings.ASSEMBLYAI_API_KEY), titles)
    finally:
        await titles.queue.close()


# --- Resync Task ---
@celery_app.task(name="resync_transcriptions_task", base=BaseTaskWithDB)
def resync_transcriptions_task(job_id: int):
    # Only the job id travels through the broker; API keys stay out of Redis.
    logger.info(f"Starting transcription resync for job_id: {job_id}")
    db = SessionLocal()
    job = None
    try:
        job = db.query(ProcessingJob).filter(ProcessingJob.id == job_id).first()
        if not job:
            logger.error(f"Job {job_id} not found for resync.")
            raise ValueError(f"Job {job_id} not found.")
        if not settings.ASSEMBLYAI_API_KEY:
            raise ValueError("ASSEMBLYAI_API_KEY is not configured for the worker.")

        job.status = JobStatus.PROCESSING
        db.commit()

        result = asyncio.run(_run_resync(db, job.user_email))

        job.status = JobStatus.COMPLETED
        job.result = result
        job.error_message = None
        logger.info(f"Resync successful for job_id: {job_id}. Result: {result}")
        return {"job_id": job_id, "status": "COMPLETED", **result}

    except Exception as e:
        logger.error(f"Unexpected error during resync for job {job_id}: {e}", exc_info=True)
        if job:
            job.error_message = f"Unexpected error: {str(e)[:500]}"
        raise
    finally:
        if job:
            db.commit()
        db.close()
