"""Speechdesk: speech-to-text and text-to-speech transcription service."""

__version__ = "0.1.0"
