"""Record-store helpers for :class:`Transcription` rows.

The processor and both entry points only go through these helpers (plus plain
attribute assignment + ``commit``) so partial updates stay partial: SQLAlchemy
only writes the columns that actually changed.
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from speechdesk.models.transcription import Transcription, TranscriptionStatus

logger = logging.getLogger(__name__)

FAILURE_KEYS = ("error", "trace")


def get_transcription(db: Session, transcription_id: int, include_deleted: bool = False) -> Optional[Transcription]:
    """Fetch a record by id; soft-deleted rows are hidden unless asked for."""
    query = db.query(Transcription).filter(Transcription.id == transcription_id)
    if not include_deleted:
        query = query.filter(Transcription.deleted_at.is_(None))
    return query.first()


def merge_metadata(
    existing: Optional[Mapping[str, Any]],
    extra: Optional[Mapping[str, Any]] = None,
    drop: Iterable[str] = (),
) -> dict[str, Any]:
    """Return a *new* dict: ``existing`` overlaid with ``extra``, minus ``drop``.

    A fresh dict is always returned so SQLAlchemy notices the JSON column
    changed.
    """
    merged = dict(existing or {})
    for key in drop:
        merged.pop(key, None)
    if extra:
        merged.update(extra)
    return merged


def format_trace(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def annotate_failure(
    existing: Optional[Mapping[str, Any]],
    exc: BaseException,
    trace: Optional[str] = None,
) -> dict[str, Any]:
    """Merge ``{error, trace}`` for ``exc`` into ``existing`` metadata.

    Applying it again replaces only ``error``/``trace``; every other key is
    kept.
    """
    return merge_metadata(existing, {
        "error": str(exc) or exc.__class__.__name__,
        "trace": trace if trace is not None else format_trace(exc),
    })


def claim_for_processing(
    db: Session,
    transcription: Transcription,
    started_at: datetime,
    stale_after: int,
) -> bool:
    """Atomically move ``transcription`` into PROCESSING.

    The conditional UPDATE only matches when no other attempt owns the row, or
    when the owning attempt started more than ``stale_after`` seconds ago.
    Returns False (and changes nothing) when the row is owned.
    """
    stale_before = started_at - timedelta(seconds=stale_after)
    stmt = (
        update(Transcription)
        .where(Transcription.id == transcription.id)
        .where(Transcription.deleted_at.is_(None))
        .where(
            or_(
                Transcription.status != TranscriptionStatus.PROCESSING,
                Transcription.processing_started_at < stale_before,
            )
        )
        .values(status=TranscriptionStatus.PROCESSING, processing_started_at=started_at, updated_at=started_at)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    db.refresh(transcription)
    claimed = result.rowcount == 1
    if not claimed:
        logger.warning("Claim refused for transcription %s (owned by another attempt or deleted).", transcription.id)
    return claimed


def mark_failed(db: Session, transcription: Transcription, exc: BaseException, trace: Optional[str] = None) -> Transcription:
    """Persist FAILED plus the failure annotation, preserving other metadata."""
    db.rollback()
    db.refresh(transcription)
    transcription.status = TranscriptionStatus.FAILED
    transcription.meta = annotate_failure(transcription.meta, exc, trace)
    db.commit()
    return transcription
