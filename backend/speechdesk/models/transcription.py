"""SQLAlchemy model & helpers for transcription records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    Index,
    Integer,
    String,
    Text,
)

from speechdesk.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptionType(str, Enum):
    """Which direction a record converts; selects the processing branch."""

    SPEECH_TO_TEXT = "speech_to_text"
    TEXT_TO_SPEECH = "text_to_speech"


class TranscriptionStatus(str, Enum):
    """Lifecycle of a transcription record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Languages offered for both directions, code -> display name
LANGUAGES = MappingProxyType({
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "zh": "Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "hi": "Hindi",
    "ar": "Arabic",
})

MODELS_BY_TYPE = MappingProxyType({
    TranscriptionType.SPEECH_TO_TEXT: MappingProxyType({
        "openai/whisper-base": "Whisper Base",
        "openai/whisper-small": "Whisper Small (Recommended)",
        "openai/whisper-medium": "Whisper Medium",
        "openai/whisper-large": "Whisper Large",
        "facebook/mms-1b-all": "Facebook MMS 1B",
        "facebook/mms-1b-lt": "Facebook MMS 1B (Low-resource)",
    }),
    TranscriptionType.TEXT_TO_SPEECH: MappingProxyType({
        "tts-1": "TTS-1 (Standard)",
        "tts-1-hd": "TTS-1 HD (High Quality)",
    }),
})

DEFAULT_MODELS = MappingProxyType({
    TranscriptionType.SPEECH_TO_TEXT: "openai/whisper-small",
    TranscriptionType.TEXT_TO_SPEECH: "tts-1",
})

MAX_INPUT_TEXT_LENGTH = 5000


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Transcription(Base):
    """Persistent representation of one STT or TTS unit of work."""

    __tablename__ = "transcriptions"
    __table_args__ = (
        Index("ix_transcriptions_user_type_status_created", "user_id", "type", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    user_id = Column(Integer, nullable=True, comment="Owner; namespaces stored blobs.")
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    type = Column(
        SAEnum(TranscriptionType, name="transcription_type", values_callable=_enum_values),
        nullable=False,
    )
    input_text = Column(Text, nullable=True)
    audio_file_path = Column(String(1024), nullable=True, comment="Blob path of the source audio.")
    output_text = Column(Text, nullable=True)
    output_audio_path = Column(String(1024), nullable=True, comment="Blob path of generated audio.")

    model_used = Column(String(100), nullable=False, default="default")
    language = Column(String(10), nullable=False, default="en")

    status = Column(
        SAEnum(TranscriptionStatus, name="transcription_status", values_callable=_enum_values),
        nullable=False,
        default=TranscriptionStatus.PENDING,
    )
    auto_process = Column(Boolean, nullable=False, default=True)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    processing_time = Column(Float, nullable=True, comment="Seconds spent by the last successful attempt.")
    word_count = Column(Integer, nullable=False, default=0)
    char_count = Column(Integer, nullable=False, default=0)

    # "metadata" is reserved on declarative classes, so the attribute is ``meta``
    meta = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Helpers to convert enums to plain strings for JSON responses
    @property
    def status_str(self) -> str:
        return self.status.value if isinstance(self.status, TranscriptionStatus) else str(self.status)

    @property
    def type_str(self) -> str:
        return self.type.value if isinstance(self.type, TranscriptionType) else str(self.type)

    def __repr__(self) -> str:
        return f"<Transcription id={self.id} type={self.type_str} status={self.status_str}>"
