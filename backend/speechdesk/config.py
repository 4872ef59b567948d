"""Application-wide configuration loader.

Every setting is read from the environment once, at import time, and exposed
through the module-level ``settings`` singleton that other modules import.
"""

import os


def _int(key: str, default: int) -> int:
    return int(os.getenv(key) or default)


def _flag(key: str, default: str = "0") -> bool:
    return (os.getenv(key) or default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Settings helper that gracefully falls back to sane defaults.

    Rationale
    ---------
    When docker-compose injects an environment variable whose value is empty
    (e.g. `DATABASE_URL=""`) ``os.getenv("DATABASE_URL", default)`` returns an
    empty string *not* ``None``.  That empty string then overrides the useful
    in-code default and downstream libraries (SQLAlchemy, Celery…) raise
    parsing errors.  To avoid that for every setting we use the idiom

        os.getenv(KEY) or DEFAULT

    so that *falsy* values ("", None, 0) are replaced by the specified
    DEFAULT.
    """

    DATABASE_URL: str = os.getenv('DATABASE_URL') or 'sqlite:///./speechdesk.db'
    DB_ECHO: bool = _flag('DB_ECHO')

    CELERY_BROKER_URL: str = os.getenv('CELERY_BROKER_URL') or 'redis://broker:6379/0'
    CELERY_RESULT_BACKEND: str = os.getenv('CELERY_RESULT_BACKEND') or 'redis://broker:6379/0'
    CELERY_TASK_ALWAYS_EAGER: bool = _flag('CELERY_TASK_ALWAYS_EAGER')

    # External speech services
    STT_API_URL: str = os.getenv('STT_API_URL') or 'https://api.stt-service.com/v1/transcribe'
    STT_API_KEY: str = os.getenv('STT_API_KEY') or ''
    TTS_API_URL: str = os.getenv('TTS_API_URL') or 'https://api.tts-service.com/v1/synthesize'
    TTS_API_KEY: str = os.getenv('TTS_API_KEY') or ''
    PROVIDER_TIMEOUT: int = _int('PROVIDER_TIMEOUT', 300)

    # Queued processing policy
    JOB_MAX_ATTEMPTS: int = _int('JOB_MAX_ATTEMPTS', 3)
    JOB_BACKOFF: tuple[int, ...] = tuple(
        int(part) for part in (os.getenv('JOB_BACKOFF') or '30,60,120').split(',') if part.strip()
    )
    JOB_TIMEOUT: int = _int('JOB_TIMEOUT', 600)
    # A record left in "processing" longer than this is treated as abandoned
    STALE_PROCESSING_AFTER: int = _int('STALE_PROCESSING_AFTER', 900)

    MAX_UPLOAD_SIZE_MB: int = _int('MAX_UPLOAD_SIZE_MB', 10)

    LOG_DIR: str = os.getenv('LOG_DIR') or 'backend/logs'
    LOG_LEVEL: str = (os.getenv('LOG_LEVEL') or 'INFO').upper()

    @property
    def max_upload_size_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024


settings = Settings()
