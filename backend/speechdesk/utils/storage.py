"""Filesystem blob storage helpers.

Blobs are addressed by a path relative to ``DATA_ROOT`` (that relative path is
what gets stored on a record).  Source audio and generated audio live in
per-user directories so one owner's files never share a folder with
another's.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from speechdesk.errors import StorageError

logger = logging.getLogger(__name__)

# Determine base data directory:
# 1. Use DATA_ROOT env var if set.
# 2. Else, if /data exists, assume Docker environment and use /data.
# 3. Otherwise, use project_root/data (development environment).
_PROJECT_ROOT = Path(__file__).resolve().parents[3]
_ENV_DATA_ROOT = os.getenv("DATA_ROOT")
if _ENV_DATA_ROOT:
    DATA_ROOT = Path(_ENV_DATA_ROOT)
elif Path("/data").exists():
    DATA_ROOT = Path("/data")
else:
    DATA_ROOT = _PROJECT_ROOT / "data"

AUDIO_PREFIX = "transcriptions/audio"
OUTPUT_PREFIX = "transcriptions/output"

PRIVATE = "private"
PUBLIC = "public"
_FILE_MODES = {PRIVATE: 0o600, PUBLIC: 0o644}


def ensure_dir_exists(path: Path) -> Path:
    """Ensure that the given directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def _owner_segment(user_id: Optional[int]) -> str:
    return str(user_id) if user_id is not None else "default"


def audio_dir_for(user_id: Optional[int]) -> str:
    """Relative directory holding uploaded source audio for ``user_id``."""
    return f"{AUDIO_PREFIX}/{_owner_segment(user_id)}"


def output_dir_for(user_id: Optional[int]) -> str:
    """Relative directory holding generated audio for ``user_id``."""
    return f"{OUTPUT_PREFIX}/{_owner_segment(user_id)}"


def blob_path(relative_path: str) -> Path:
    """Resolve a stored blob path to an absolute path under ``DATA_ROOT``.

    Raises:
        StorageError: If the path is empty or escapes the data root.
    """
    if not relative_path:
        raise StorageError("Empty blob path")
    root = DATA_ROOT.resolve()
    candidate = (root / relative_path).resolve()
    if candidate != root and root not in candidate.parents:
        logger.warning("Rejected blob path outside data root: %s", relative_path)
        raise StorageError(f"Invalid blob path: {relative_path}")
    return candidate


def blob_exists(relative_path: Optional[str]) -> bool:
    if not relative_path:
        return False
    try:
        return blob_path(relative_path).is_file()
    except StorageError:
        return False


def read_blob(relative_path: str) -> bytes:
    """Return the bytes stored at ``relative_path``."""
    path = blob_path(relative_path)
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as exc:
        logger.error("Failed to read blob %s: %s", relative_path, exc)
        raise StorageError(f"Could not read {relative_path}: {exc}") from exc


def write_blob(relative_path: str, data: bytes, visibility: str = PRIVATE) -> str:
    """Write ``data`` to ``relative_path`` and return the path for the record.

    Private blobs are readable by the service account only.
    """
    if visibility not in _FILE_MODES:
        raise ValueError(f"Unknown visibility: {visibility}")
    path = blob_path(relative_path)
    try:
        ensure_dir_exists(path.parent)
        with open(path, "wb") as f:
            f.write(data)
        os.chmod(path, _FILE_MODES[visibility])
    except OSError as exc:
        logger.error("Failed to write blob %s: %s", relative_path, exc)
        raise StorageError(f"Could not write {relative_path}: {exc}") from exc
    logger.debug("Stored %d bytes at %s (%s)", len(data), relative_path, visibility)
    return relative_path


def delete_blob(relative_path: str) -> bool:
    """Remove a blob; returns False when there was nothing to remove."""
    path = blob_path(relative_path)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise StorageError(f"Could not delete {relative_path}: {exc}") from exc
    return True
