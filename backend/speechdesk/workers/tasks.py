"""Celery task definitions."""

import logging

from celery import Celery, Task
from celery.exceptions import SoftTimeLimitExceeded

from speechdesk.config import settings
from speechdesk.db import records
from speechdesk.db.database import SessionLocal, create_tables
from speechdesk.errors import AlreadyProcessingError, ProcessingTimeoutError, TranscriptionNotFoundError
from speechdesk.logging_config import setup_logging as setup_app_logging
from speechdesk.models.transcription import Transcription, TranscriptionStatus
from speechdesk.services.processor import TranscriptionProcessor

# Ensure tables exist when the worker starts on its own
create_tables()

# --- Logger Setup ---
setup_app_logging()
logger = logging.getLogger(__name__)


# --- Celery Application Setup ---
celery_app = Celery(
    "speechdesk",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['speechdesk.workers.tasks'],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Ack after the attempt; a message whose worker process died is requeued.
    # The redelivered attempt only claims the record once the dead attempt
    # is older than STALE_PROCESSING_AFTER, otherwise it is skipped.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
)


def backoff_for(retries: int) -> int:
    """Delay in seconds before the attempt following retry number ``retries``."""
    schedule = settings.JOB_BACKOFF or (0,)
    return schedule[min(retries, len(schedule) - 1)]


def _transcription_id_from(args, kwargs):
    transcription_id = kwargs.get('transcription_id')
    if transcription_id is None and args and isinstance(args[0], int):
        transcription_id = args[0]
    return transcription_id


# --- Base Task with terminal failure handling ---
class TranscriptionTask(Task):
    """Base task: logs calls and annotates the record once retries run out."""
    abstract = True

    def __call__(self, *args, **kwargs):
        logger.info(f"Task {self.name} [{self.request.id}] called with args: {args}, kwargs: {kwargs}")
        return super().__call__(*args, **kwargs)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Runs once the error escapes the task (last attempt or a non-retryable
        error); the in-attempt failure path already wrote ``error``/``trace``,
        so this merges over them."""
        transcription_id = _transcription_id_from(args, kwargs)
        trace = getattr(einfo, 'traceback', None) if einfo else None
        if getattr(exc, "retryable", True):
            outcome = f"after all retries (attempt {self.request.retries + 1}/{self.max_retries + 1})"
        else:
            outcome = "without retry"
        logger.error(
            f"Transcription job failed {outcome} (task {self.name} [{task_id}], "
            f"transcription_id={transcription_id}): {exc}",
            exc_info=einfo.exc_info if einfo else None,
        )
        if transcription_id is not None:
            db = SessionLocal()
            try:
                transcription = records.get_transcription(db, transcription_id)
                if transcription:
                    transcription.status = TranscriptionStatus.FAILED
                    transcription.meta = records.annotate_failure(transcription.meta, exc, trace)
                    db.commit()
                else:
                    logger.warning(f"Transcription {transcription_id} not found for failure update of task {self.name} [{task_id}].")
            except Exception as db_exc:
                logger.error(f"DB error during task failure handling for transcription {transcription_id}, task {self.name} [{task_id}]: {db_exc}", exc_info=True)
                db.rollback()
            finally:
                db.close()
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(f"Task {self.name} [{task_id}] will be retried: {exc}")
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"Task {self.name} [{task_id}] completed successfully. Result: {retval}")
        super().on_success(retval, task_id, args, kwargs)


# --- Transcription Processing Task ---
@celery_app.task(
    name="process_transcription_task",
    base=TranscriptionTask,
    bind=True,
    max_retries=max(settings.JOB_MAX_ATTEMPTS - 1, 0),
    soft_time_limit=settings.JOB_TIMEOUT,
    time_limit=settings.JOB_TIMEOUT + 60,
)
def process_transcription_task(self, transcription_id: int, snapshot: dict | None = None):
    """Queued entry point.

    ``snapshot`` holds the identifying fields captured at enqueue time and is
    only used for logging; the live record is always re-fetched here.
    """
    attempt = self.request.retries + 1
    logger.info(
        f"Starting transcription {transcription_id} attempt {attempt}/{self.max_retries + 1} "
        f"(snapshot: {snapshot})"
    )
    db = SessionLocal()
    try:
        transcription = records.get_transcription(db, transcription_id)
        if not transcription:
            logger.error(f"Transcription {transcription_id} not found in DB.")
            raise TranscriptionNotFoundError(f"Transcription {transcription_id} not found.")

        processor = TranscriptionProcessor(db)
        try:
            processor.process(transcription)
        except SoftTimeLimitExceeded as exc:
            raise ProcessingTimeoutError(
                f"Processing exceeded the {settings.JOB_TIMEOUT}s attempt limit"
            ) from exc

        return {
            "transcription_id": transcription.id,
            "status": transcription.status_str,
            "output_audio_path": transcription.output_audio_path,
            "processing_time": transcription.processing_time,
        }

    except AlreadyProcessingError as exc:
        logger.warning(f"Skipping transcription {transcription_id}: {exc}")
        return {"transcription_id": transcription_id, "status": TranscriptionStatus.PROCESSING.value, "skipped": True}
    except Exception as exc:
        if not getattr(exc, "retryable", True) or self.request.retries >= self.max_retries:
            raise  # Handled by TranscriptionTask.on_failure
        countdown = backoff_for(self.request.retries)
        logger.warning(
            f"Transcription {transcription_id} attempt {attempt} failed ({exc}); retrying in {countdown}s"
        )
        raise self.retry(exc=exc, countdown=countdown)
    finally:
        db.close()


def enqueue_transcription(transcription: Transcription):
    """Queue ``transcription`` for processing and return the Celery AsyncResult.

    Only an immutable snapshot crosses the process boundary; the worker loads
    the live row itself.
    """
    snapshot = {
        "id": transcription.id,
        "type": transcription.type_str,
        "title": transcription.title,
    }
    result = process_transcription_task.delay(transcription_id=transcription.id, snapshot=snapshot)
    logger.info(f"Enqueued transcription {transcription.id} as task {result.id}")
    return result


logger.info("Celery tasks defined and logging configured.")
