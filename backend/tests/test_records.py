from datetime import timedelta

from speechdesk.db import records
from speechdesk.models.transcription import TranscriptionStatus, utcnow


def test_merge_metadata_returns_new_dict():
    existing = {"source": "admin"}
    merged = records.merge_metadata(existing, {"model": "tts-1"})
    assert merged == {"source": "admin", "model": "tts-1"}
    assert merged is not existing
    assert existing == {"source": "admin"}


def test_merge_metadata_drops_keys():
    merged = records.merge_metadata({"error": "old", "trace": "tb", "keep": 1}, {"model": "x"}, drop=records.FAILURE_KEYS)
    assert merged == {"keep": 1, "model": "x"}


def test_annotate_failure_twice_keeps_unrelated_keys():
    meta = {"source": "admin", "voice": "en-US-Wavenet-D"}
    meta = records.annotate_failure(meta, RuntimeError("first"), trace="trace one")
    meta = records.annotate_failure(meta, RuntimeError("second"), trace="trace two")
    assert meta == {
        "source": "admin",
        "voice": "en-US-Wavenet-D",
        "error": "second",
        "trace": "trace two",
    }


def test_annotate_failure_formats_traceback_when_missing():
    try:
        raise ValueError("broken")
    except ValueError as exc:
        meta = records.annotate_failure(None, exc)
    assert meta["error"] == "broken"
    assert "ValueError: broken" in meta["trace"]


def test_get_transcription_hides_soft_deleted(db, make_transcription):
    t = make_transcription(deleted_at=utcnow())
    assert records.get_transcription(db, t.id) is None
    assert records.get_transcription(db, t.id, include_deleted=True).id == t.id


def test_claim_moves_pending_record_to_processing(db, make_transcription):
    t = make_transcription()
    assert records.claim_for_processing(db, t, utcnow(), stale_after=900) is True
    assert t.status == TranscriptionStatus.PROCESSING
    assert t.processing_started_at is not None


def test_claim_refused_while_another_attempt_runs(db, make_transcription):
    t = make_transcription(status=TranscriptionStatus.PROCESSING, processing_started_at=utcnow())
    assert records.claim_for_processing(db, t, utcnow(), stale_after=900) is False
    assert t.status == TranscriptionStatus.PROCESSING


def test_claim_takes_over_stale_attempt(db, make_transcription):
    now = utcnow()
    t = make_transcription(status=TranscriptionStatus.PROCESSING, processing_started_at=now - timedelta(hours=1))
    assert records.claim_for_processing(db, t, now, stale_after=900) is True


def test_mark_failed_preserves_metadata(db, make_transcription):
    t = make_transcription(meta={"source": "admin"})
    records.mark_failed(db, t, RuntimeError("provider down"), trace="tb")
    db.expire_all()
    fresh = records.get_transcription(db, t.id)
    assert fresh.status == TranscriptionStatus.FAILED
    assert fresh.meta == {"source": "admin", "error": "provider down", "trace": "tb"}
