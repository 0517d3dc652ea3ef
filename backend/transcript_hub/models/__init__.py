# Namespace for ORM models.
from .job import JobStatus, ProcessingJob
from .transcription import Transcription, TranscriptionStatus

__all__ = ["JobStatus", "ProcessingJob", "Transcription", "TranscriptionStatus"]
