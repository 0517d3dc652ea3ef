import pytest
from unittest.mock import AsyncMock, patch

from transcript_hub.config import settings
from transcript_hub.models.job import JobStatus, ProcessingJob
from transcript_hub.workers import tasks

from .conftest import USER


@pytest.fixture
def job(db_session) -> ProcessingJob:
    job = ProcessingJob(job_type="resync", user_email=USER, status=JobStatus.PENDING)
    db_session.add(job)
    db_session.commit()
    return job


@patch("transcript_hub.workers.tasks.purge_and_resync", new_callable=AsyncMock)
def test_resync_task_completes_job(mock_resync, db_session, job):
    mock_resync.return_value = {"purged": 2, "synced": 5, "total": 5}

    result = tasks.resync_transcriptions_task.run(job.id)

    assert result == {"job_id": job.id, "status": "COMPLETED", "purged": 2, "synced": 5, "total": 5}
    args = mock_resync.call_args.args
    assert args[1] == USER
    # the worker authenticates with the server key, never a key from the broker
    assert args[2].api_key == settings.ASSEMBLYAI_API_KEY == "test-assemblyai-key"
    # the worker builds its own queue and closes it when the run ends
    assert args[3].queue.get_status().pending_count == 0

    db_session.expire_all()
    stored = db_session.get(ProcessingJob, job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.result == {"purged": 2, "synced": 5, "total": 5}


@patch("transcript_hub.workers.tasks.purge_and_resync", new_callable=AsyncMock)
def test_resync_task_records_error(mock_resync, db_session, job):
    mock_resync.side_effect = RuntimeError("AssemblyAI unreachable")

    with pytest.raises(RuntimeError):
        tasks.resync_transcriptions_task.run(job.id)

    db_session.expire_all()
    stored = db_session.get(ProcessingJob, job.id)
    assert stored.status == JobStatus.PROCESSING
    assert "AssemblyAI unreachable" in stored.error_message


def test_resync_task_unknown_job(db_session):
    with pytest.raises(ValueError, match="Job 999 not found"):
        tasks.resync_transcriptions_task.run(999)


def test_mark_job_failed(db_session, job):
    tasks.mark_job_failed(job.id, RuntimeError("boom"))

    db_session.expire_all()
    stored = db_session.get(ProcessingJob, job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "Task failed: boom"


@patch("transcript_hub.workers.tasks.purge_and_resync", new_callable=AsyncMock)
def test_resync_task_without_server_key(mock_resync, db_session, job, monkeypatch):
    monkeypatch.setattr(settings, "ASSEMBLYAI_API_KEY", "")

    with pytest.raises(ValueError, match="ASSEMBLYAI_API_KEY"):
        tasks.resync_transcriptions_task.run(job.id)

    mock_resync.assert_not_called()
    db_session.expire_all()
    assert db_session.get(ProcessingJob, job.id).status == JobStatus.PENDING
