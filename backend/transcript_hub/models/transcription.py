"""SQLAlchemy model for transcription records."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum as SAEnum, Float, Integer, String, Text, UniqueConstraint

from transcript_hub.db.base import Base


class TranscriptionStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class Transcription(Base):
    """
    One transcript produced by AssemblyAI for one user.

    The AssemblyAI id is the external key; a user can hold each external
    transcript at most once.  ``title`` stays ``NULL`` (or a placeholder) while
    ``title_generating`` is true.
    """
    __tablename__ = "transcriptions"
    __table_args__ = (
        UniqueConstraint("user_email", "assembly_ai_id", name="uq_transcriptions_user_assembly_id"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), comment="Internal identifier (UUID).")
    assembly_ai_id = Column(String(64), nullable=False, index=True, comment="Transcript id at AssemblyAI.")
    user_email = Column(String(255), nullable=False, index=True, comment="Owner of the transcription.")
    title = Column(String(255), nullable=True, comment="Generated (or fallback) human title.")
    title_generating = Column(Boolean, nullable=False, default=True, comment="True until a title has been written.")
    file_name = Column(String(512), nullable=True)
    language = Column(String(16), nullable=True)
    duration = Column(Float, nullable=True, comment="Audio duration in seconds.")
    word_count = Column(Integer, nullable=True)
    preview = Column(Text, nullable=True)
    full_text = Column(Text, nullable=True)
    status = Column(SAEnum(TranscriptionStatus), nullable=False, default=TranscriptionStatus.PROCESSING)
    company_names = Column(JSON, nullable=False, default=list)
    person_names = Column(JSON, nullable=False, default=list)
    tags = Column(JSON, nullable=False, default=list)
    meeting_type = Column(String(32), nullable=True)
    is_new = Column(Boolean, nullable=False, default=True)
    viewed_at = Column(DateTime(timezone=True), nullable=True)
    assembly_created_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def status_str(self) -> str:
        return self.status.value if isinstance(self.status, TranscriptionStatus) else str(self.status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "assembly_ai_id": self.assembly_ai_id,
            "user_email": self.user_email,
            "title": self.title,
            "title_generating": bool(self.title_generating),
            "file_name": self.file_name,
            "language": self.language,
            "duration": self.duration,
            "word_count": self.word_count,
            "preview": self.preview,
            "status": self.status_str if self.status is not None else None,
            "company_names": self.company_names or [],
            "person_names": self.person_names or [],
            "tags": self.tags or [],
            "meeting_type": self.meeting_type,
            "is_new": bool(self.is_new) if self.is_new is not None else True,
            "viewed_at": self.viewed_at,
            "assembly_created_at": self.assembly_created_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
