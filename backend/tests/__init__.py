# Ensure the `backend` directory is importable so `speechdesk` resolves
from __future__ import annotations

import sys
import tempfile
from pathlib import Path

# Add the backend directory to PYTHONPATH so imports like `from speechdesk.*` work
ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT_DIR))

# Use an in-memory SQLite DB and throwaway directories during tests unless overridden
import os
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DB_ECHO", "0")
os.environ.setdefault("DATA_ROOT", tempfile.mkdtemp(prefix="speechdesk-data-"))
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="speechdesk-logs-"))
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "0")
