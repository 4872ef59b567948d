"""Transcription processing workflow shared by the API and the Celery worker.

A processing attempt moves a record through

    pending/failed/completed -> processing -> completed | failed

The move into ``processing`` is committed before any provider is contacted.
Every failure is written to the record and then re-raised;
retrying is the caller's business.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from speechdesk.config import settings
from speechdesk.db import records
from speechdesk.errors import AlreadyProcessingError, StorageError, TranscriptionNotFoundError, ValidationError
from speechdesk.models.transcription import (
    Transcription,
    TranscriptionStatus,
    TranscriptionType,
    utcnow,
)
from speechdesk.services.providers import SpeechToTextClient, TextToSpeechClient
from speechdesk.services.voices import voice_for_language
from speechdesk.utils import storage

logger = logging.getLogger(__name__)

# Letters, optionally joined by apostrophes or hyphens ("don't", "well-known")
_WORD_RE = re.compile(r"[^\W\d_]+(?:['\-][^\W\d_]+)*")


def count_words(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(_WORD_RE.findall(text))


def count_chars(text: Optional[str]) -> int:
    return len(text) if text else 0


def output_audio_name(transcription: Transcription, now: datetime) -> str:
    """Unique blob path for a record's synthesized audio.

    The random suffix separates two attempts within the same second.
    """
    filename = f"tts-{transcription.id}-{now:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}.mp3"
    return f"{storage.output_dir_for(transcription.user_id)}/{filename}"


class TranscriptionProcessor:
    """Runs one processing attempt for a :class:`Transcription`."""

    def __init__(
        self,
        db: Session,
        stt_client: Optional[SpeechToTextClient] = None,
        tts_client: Optional[TextToSpeechClient] = None,
    ) -> None:
        self.db = db
        self.stt_client = stt_client or SpeechToTextClient()
        self.tts_client = tts_client or TextToSpeechClient()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, transcription: Transcription) -> Transcription:
        """Run a full attempt and return the updated record.

        Raises:
            ValidationError: a required input is missing (record marked failed).
            StorageError: source audio missing/unreadable or output not written.
            ProviderError / ProcessingTimeoutError: the external call failed.
            AlreadyProcessingError: another attempt owns the record (record untouched).
            TranscriptionNotFoundError: the record was soft-deleted before the claim.
        """
        logger.info("Processing transcription %s (%s)", transcription.id, transcription.type_str)

        try:
            self._preflight(transcription)
        except (ValidationError, StorageError) as exc:
            self._fail(transcription, exc)
            raise

        started_at = utcnow()
        if not records.claim_for_processing(self.db, transcription, started_at, settings.STALE_PROCESSING_AFTER):
            if transcription.deleted_at is not None:
                raise TranscriptionNotFoundError(f"Transcription {transcription.id} was deleted")
            raise AlreadyProcessingError(f"Transcription {transcription.id} is already being processed")
        logger.debug("Transcription %s claimed at %s", transcription.id, started_at.isoformat())

        try:
            if transcription.type == TranscriptionType.SPEECH_TO_TEXT:
                result = self._speech_to_text(transcription)
            else:
                result = self._text_to_speech(transcription)

            transcription.status = TranscriptionStatus.COMPLETED
            transcription.processing_time = (utcnow() - started_at).total_seconds()
            transcription.output_text = result.get("output_text")
            transcription.output_audio_path = result.get("output_audio_path")
            transcription.word_count = result["word_count"]
            transcription.char_count = result["char_count"]
            transcription.meta = records.merge_metadata(
                transcription.meta, result["metadata"], drop=records.FAILURE_KEYS
            )
            self.db.commit()
        except Exception as exc:
            self._fail(transcription, exc)
            raise

        logger.info(
            "Transcription %s completed in %.2fs (%d words, %d chars)",
            transcription.id,
            transcription.processing_time,
            transcription.word_count,
            transcription.char_count,
        )
        return transcription

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _preflight(self, transcription: Transcription) -> None:
        if transcription.type == TranscriptionType.SPEECH_TO_TEXT:
            if not (transcription.audio_file_path or "").strip():
                raise ValidationError("An audio file is required for speech to text.")
            if not storage.blob_exists(transcription.audio_file_path):
                raise StorageError(f"Audio file not found: {transcription.audio_file_path}")
        elif transcription.type == TranscriptionType.TEXT_TO_SPEECH:
            if not (transcription.input_text or "").strip():
                raise ValidationError("Input text is required for text to speech.")
        else:
            raise ValidationError(f"Unknown transcription type: {transcription.type!r}")

    def _speech_to_text(self, transcription: Transcription) -> Dict[str, Any]:
        audio = storage.read_blob(transcription.audio_file_path)
        filename = PurePosixPath(transcription.audio_file_path).name
        response = self.stt_client.transcribe(
            audio,
            filename=filename,
            model=transcription.model_used,
            language=transcription.language,
        )
        text = response.get("text") or ""
        return {
            "output_text": text,
            "output_audio_path": None,
            "word_count": count_words(text),
            "char_count": count_chars(text),
            "metadata": {
                "model": transcription.model_used,
                "language": transcription.language,
                "api_response": response,
            },
        }

    def _text_to_speech(self, transcription: Transcription) -> Dict[str, Any]:
        voice = voice_for_language(transcription.language)
        audio = self.tts_client.synthesize(
            transcription.input_text,
            model=transcription.model_used,
            language=transcription.language,
            voice=voice,
        )
        output_path = storage.write_blob(output_audio_name(transcription, utcnow()), audio, visibility=storage.PRIVATE)
        # Counts describe the text that was spoken, not the audio
        return {
            "output_text": None,
            "output_audio_path": output_path,
            "word_count": count_words(transcription.input_text),
            "char_count": count_chars(transcription.input_text),
            "metadata": {
                "model": transcription.model_used,
                "language": transcription.language,
                "voice": voice,
                "audio_bytes": len(audio),
            },
        }

    def _fail(self, transcription: Transcription, exc: BaseException) -> None:
        logger.error(
            "Transcription %s processing failed: %s", transcription.id, exc, exc_info=exc
        )
        try:
            records.mark_failed(self.db, transcription, exc)
        except Exception:
            # Re-raised by the caller; only log the persistence failure here
            logger.exception("Failed to persist failed state for transcription %s", transcription.id)
