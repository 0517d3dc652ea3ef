"""Application-wide configuration loader.

Parses environment variables once and exposes a singleton ``settings`` object
that other modules import.
"""

import os


def _optional_int(key: str) -> int | None:
    """Return ``int(env[key])`` or ``None`` when unset/empty/zero."""
    value = int(os.getenv(key) or "0")
    return value or None


class Settings:
    """Settings helper that gracefully falls back to sane defaults.

    Rationale
    ---------
    When docker-compose injects an environment variable whose value is empty
    (e.g. `DATABASE_URL=""`) ``os.getenv("DATABASE_URL", default)`` returns an
    empty string *not* ``None``.  That empty string then overrides the useful
    in-code default and downstream libraries (SQLAlchemy, Celery, httpx…)
    raise parsing errors.  For every setting we therefore use the idiom

        os.getenv(KEY) or DEFAULT

    so that *falsy* values ("", None) are replaced by the specified DEFAULT.
    """

    def __init__(self) -> None:
        self.DATABASE_URL: str = os.getenv('DATABASE_URL') or 'postgresql://transcripts:transcripts@db:5432/transcripts'
        self.DB_ECHO: bool = (os.getenv('DB_ECHO') or '0').lower() in ('1', 'true', 'yes')
        self.CELERY_BROKER_URL: str = os.getenv('CELERY_BROKER_URL') or 'redis://broker:6379/0'
        self.CELERY_RESULT_BACKEND: str = os.getenv('CELERY_RESULT_BACKEND') or 'redis://broker:6379/0'

        self.LOG_DIR: str = os.getenv('LOG_DIR') or 'backend/logs'
        self.LOG_LEVEL: str = os.getenv('LOG_LEVEL') or 'INFO'

        # External services
        self.GEMINI_API_KEY: str = os.getenv('GEMINI_API_KEY') or ''
        self.GEMINI_MODEL: str = os.getenv('GEMINI_MODEL') or 'gemini-2.5-flash-lite'
        self.GEMINI_BASE_URL: str = (os.getenv('GEMINI_BASE_URL') or 'https://generativelanguage.googleapis.com/v1beta').rstrip('/')
        self.GEMINI_TIMEOUT_SECONDS: float = float(os.getenv('GEMINI_TIMEOUT_SECONDS') or '30')
        self.ASSEMBLYAI_API_KEY: str = os.getenv('ASSEMBLYAI_API_KEY') or ''
        self.ASSEMBLYAI_BASE_URL: str = (os.getenv('ASSEMBLYAI_BASE_URL') or 'https://api.assemblyai.com/v2').rstrip('/')

        # Webhooks & identity
        self.WEBHOOK_SECRET: str = os.getenv('WEBHOOK_SECRET') or ''
        self.PUBLIC_BASE_URL: str = (os.getenv('PUBLIC_BASE_URL') or 'http://localhost:8000').rstrip('/')
        self.ALLOWED_EMAIL_DOMAIN: str = os.getenv('ALLOWED_EMAIL_DOMAIN') or ''

        # Title generation queue (Gemini free tier limits)
        self.TITLE_QUEUE_MAX_REQUESTS: int = int(os.getenv('TITLE_QUEUE_MAX_REQUESTS') or '15')
        self.TITLE_QUEUE_WINDOW_SECONDS: float = float(os.getenv('TITLE_QUEUE_WINDOW_SECONDS') or '60')
        self.TITLE_QUEUE_REQUEST_DELAY_SECONDS: float = float(os.getenv('TITLE_QUEUE_REQUEST_DELAY_SECONDS') or '4')
        self.TITLE_QUEUE_THROTTLE_BACKOFF_SECONDS: float = float(os.getenv('TITLE_QUEUE_THROTTLE_BACKOFF_SECONDS') or '10')
        # 0 / unset means "retry throttled requests forever"
        self.TITLE_QUEUE_MAX_THROTTLE_RETRIES: int | None = _optional_int('TITLE_QUEUE_MAX_THROTTLE_RETRIES')
        self.TITLE_QUEUE_MAX_REQUESTS_PER_DAY: int | None = int(os.getenv('TITLE_QUEUE_MAX_REQUESTS_PER_DAY') or '1000') or None
        self.TITLE_SAMPLE_WORDS_PER_SECTION: int = int(os.getenv('TITLE_SAMPLE_WORDS_PER_SECTION') or '200')


settings = Settings()
