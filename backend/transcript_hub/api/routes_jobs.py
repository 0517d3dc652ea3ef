from __future__ import annotations

import logging
from typing import List
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..db.database import SessionLocal
from ..models.job import ProcessingJob
from .deps import get_current_user

router = APIRouter()
logger = logging.getLogger(__name__)


class JobInfo(BaseModel):
    id: int
    job_type: str
    status: str
    result: dict | None = None
    error_message: str | None = None
    created_at: datetime


def _to_info(job: ProcessingJob) -> JobInfo:
    return JobInfo(
        id=job.id,
        job_type=job.job_type,
        status=job.status_str,
        result=job.result,
        error_message=job.error_message,
        created_at=job.created_at,
    )


@router.get("", response_model=List[JobInfo])
async def list_jobs(user_email: str = Depends(get_current_user)) -> List[JobInfo]:
    """Return the caller's background jobs, newest first."""
    db = SessionLocal()
    try:
        jobs = (
            db.query(ProcessingJob)
            .filter(ProcessingJob.user_email == user_email)
            .order_by(ProcessingJob.created_at.desc())
            .all()
        )
        return [_to_info(j) for j in jobs]
    except Exception as exc:
        logger.error("Failed to list jobs: %s", exc, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error listing jobs")
    finally:
        db.close()


@router.get("/{job_id}", response_model=JobInfo)
async def get_job(job_id: int, user_email: str = Depends(get_current_user)) -> JobInfo:
    """Return a single background job by ID."""
    db = SessionLocal()
    try:
        job = db.query(ProcessingJob).filter(ProcessingJob.id == job_id).first()
        if not job or job.user_email != user_email:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        return _to_info(job)
    except HTTPException:
        raise
    except Exception as exc:
        logger.error("Failed to fetch job %s: %s", job_id, exc, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error fetching job")
    finally:
        db.close()
