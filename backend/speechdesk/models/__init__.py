# Namespace for ORM models.
from .transcription import Transcription, TranscriptionStatus, TranscriptionType

__all__ = ["Transcription", "TranscriptionStatus", "TranscriptionType"]
