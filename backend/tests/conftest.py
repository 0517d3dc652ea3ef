"""Shared fixtures: a clean in-memory database and canned AssemblyAI payloads."""

import pytest

import transcript_hub.models  # noqa: F401 - registers every model on Base
from transcript_hub.db.base import Base
from transcript_hub.db.database import SessionLocal, engine

USER = "alice@example.com"
AUTH = {"X-User-Email": USER}


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())


def make_transcript(transcript_id: str = "aai-1", words: int = 30, **overrides) -> dict:
    payload = {
        "id": transcript_id,
        "status": "completed",
        "language_code": "en",
        "audio_duration": 125.0,
        "text": "Hello there. General Kenobi.",
        "created": "2025-03-01T09:30:00Z",
        "words": [{"text": f"word{i}", "start": i * 100, "end": i * 100 + 80} for i in range(words)],
        "utterances": [
            {"speaker": "A", "text": "Hello there."},
            {"speaker": "B", "text": "General Kenobi."},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def transcript() -> dict:
    return make_transcript()
