import logging
from unittest.mock import MagicMock, patch

import pytest
from celery.exceptions import SoftTimeLimitExceeded

from speechdesk.db import records
from speechdesk.errors import (
    ProcessingTimeoutError,
    ProviderError,
    TranscriptionNotFoundError,
    ValidationError,
)
from speechdesk.models.transcription import TranscriptionStatus, utcnow
from speechdesk.workers import tasks


class RetryScheduled(Exception):
    pass


@pytest.fixture
def task():
    return tasks.celery_app.tasks["process_transcription_task"]


@pytest.fixture
def retries(task):
    """Record the countdown of every retry the task schedules."""
    delays = []

    def fake_retry(exc=None, countdown=None, **kwargs):
        delays.append(countdown)
        return RetryScheduled(str(exc))

    with patch.object(task, "retry", side_effect=fake_retry):
        yield delays


@pytest.fixture
def tts_client():
    with patch("speechdesk.services.processor.TextToSpeechClient") as client_cls:
        yield client_cls.return_value


def run_attempt(task, transcription_id, retries=0):
    task.push_request(retries=retries)
    try:
        return task.run(transcription_id=transcription_id)
    finally:
        task.pop_request()


def test_backoff_schedule():
    assert tasks.backoff_for(0) == 30
    assert tasks.backoff_for(1) == 60
    assert tasks.backoff_for(2) == 120
    assert tasks.backoff_for(10) == 120


def test_task_limits(task):
    assert task.max_retries == 2
    assert task.soft_time_limit == 600
    assert task.time_limit == 660


def test_successful_attempt(db, task, tts_client, make_transcription):
    tts_client.synthesize.return_value = b"audio"
    t = make_transcription()

    result = run_attempt(task, t.id)

    assert result["status"] == "completed"
    assert result["output_audio_path"].startswith("transcriptions/output/default/")
    db.expire_all()
    assert t.status == TranscriptionStatus.COMPLETED


def test_retry_budget_then_terminal_failure(db, task, retries, tts_client, make_transcription):
    tts_client.synthesize.side_effect = ProviderError("TTS API request failed: boom", status_code=503)
    t = make_transcription(meta={"source": "admin"})

    for attempt in range(2):
        with pytest.raises(RetryScheduled):
            run_attempt(task, t.id, retries=attempt)
    with pytest.raises(ProviderError) as excinfo:
        run_attempt(task, t.id, retries=2)

    assert tts_client.synthesize.call_count == 3
    assert retries == [30, 60]

    task.on_failure(excinfo.value, "task-final", (), {"transcription_id": t.id}, None)

    db.expire_all()
    assert t.status == TranscriptionStatus.FAILED
    assert t.meta["source"] == "admin"
    assert t.meta["error"] == "TTS API request failed: boom"


def test_validation_error_is_not_retried(db, task, retries, tts_client, make_transcription):
    t = make_transcription(input_text="")

    with pytest.raises(ValidationError):
        run_attempt(task, t.id)

    assert retries == []
    tts_client.synthesize.assert_not_called()
    db.expire_all()
    assert t.status == TranscriptionStatus.FAILED


def test_missing_record_is_not_retried(task, retries):
    with pytest.raises(TranscriptionNotFoundError):
        run_attempt(task, 9999)
    assert retries == []


def test_soft_delete_hides_record_from_worker(db, task, retries, make_transcription):
    t = make_transcription(deleted_at=utcnow())
    with pytest.raises(TranscriptionNotFoundError):
        run_attempt(task, t.id)


def test_concurrent_attempt_is_skipped(db, task, retries, tts_client, make_transcription):
    t = make_transcription(status=TranscriptionStatus.PROCESSING, processing_started_at=utcnow())

    result = run_attempt(task, t.id)

    assert result["skipped"] is True
    assert retries == []
    tts_client.synthesize.assert_not_called()


def test_soft_time_limit_becomes_timeout_error(db, task, retries, tts_client, make_transcription):
    tts_client.synthesize.side_effect = SoftTimeLimitExceeded()
    t = make_transcription()

    with pytest.raises(ProcessingTimeoutError):
        run_attempt(task, t.id, retries=2)

    db.expire_all()
    assert t.status == TranscriptionStatus.FAILED


def test_soft_time_limit_is_retried_before_last_attempt(db, task, retries, tts_client, make_transcription):
    tts_client.synthesize.side_effect = SoftTimeLimitExceeded()
    t = make_transcription()

    with pytest.raises(RetryScheduled):
        run_attempt(task, t.id, retries=0)
    assert retries == [30]


def test_terminal_handler_replaces_previous_error(db, task, make_transcription):
    t = make_transcription(status=TranscriptionStatus.FAILED, meta={"error": "attempt error", "trace": "tb", "voice": "v"})
    einfo = MagicMock(traceback="final traceback", exc_info=None)

    task.on_failure(RuntimeError("gave up"), "task-1", (t.id,), {}, einfo)

    db.expire_all()
    fresh = records.get_transcription(db, t.id)
    assert fresh.meta == {"error": "gave up", "trace": "final traceback", "voice": "v"}


def test_enqueue_sends_snapshot(make_transcription):
    t = make_transcription(title="Queued")
    with patch.object(tasks, "process_transcription_task") as mock_task:
        mock_task.delay.return_value = MagicMock(id="task-42")
        result = tasks.enqueue_transcription(t)

    assert result.id == "task-42"
    mock_task.delay.assert_called_once_with(
        transcription_id=t.id,
        snapshot={"id": t.id, "type": "text_to_speech", "title": "Queued"},
    )


def test_late_ack_requeues_on_worker_loss():
    assert tasks.celery_app.conf.task_acks_late is True
    assert tasks.celery_app.conf.task_reject_on_worker_lost is True


def test_terminal_log_reports_final_attempt(task, make_transcription, caplog):
    t = make_transcription()
    task.push_request(retries=2)
    try:
        with caplog.at_level(logging.ERROR, logger="speechdesk.workers.tasks"):
            task.on_failure(ProviderError("boom"), "task-9", (), {"transcription_id": t.id}, None)
    finally:
        task.pop_request()

    assert "failed after all retries (attempt 3/3)" in caplog.text


def test_terminal_log_for_non_retryable_error(task, make_transcription, caplog):
    t = make_transcription()
    with caplog.at_level(logging.ERROR, logger="speechdesk.workers.tasks"):
        task.on_failure(ValidationError("Input text is required"), "task-10", (), {"transcription_id": t.id}, None)

    assert "failed without retry" in caplog.text
    assert "after all retries" not in caplog.text
