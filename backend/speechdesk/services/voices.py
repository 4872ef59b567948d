"""Language code -> synthesis voice lookup."""

from types import MappingProxyType

DEFAULT_LANGUAGE = "en"

VOICES = MappingProxyType({
    "en": "en-US-Wavenet-D",
    "es": "es-ES-Standard-A",
    "fr": "fr-FR-Standard-A",
    "de": "de-DE-Standard-A",
    "it": "it-IT-Standard-A",
    "pt": "pt-PT-Standard-A",
    "ru": "ru-RU-Standard-A",
    "zh": "cmn-CN-Standard-A",
    "ja": "ja-JP-Standard-A",
    "ko": "ko-KR-Standard-A",
    "hi": "hi-IN-Standard-A",
    "ar": "ar-XA-Standard-A",
})


def voice_for_language(language: str) -> str:
    """Return the TTS voice for ``language``; unknown codes get the English voice."""
    return VOICES.get(language, VOICES[DEFAULT_LANGUAGE])
