# Ensure the `backend` directory is importable so `transcript_hub` resolves
from __future__ import annotations

import sys
from pathlib import Path

# Add the backend directory to PYTHONPATH so imports like `from transcript_hub.*` work
ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT_DIR))

# Use an in-memory SQLite DB during tests unless overridden
import os
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DB_ECHO", "0")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ASSEMBLYAI_API_KEY", "test-assemblyai-key")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
