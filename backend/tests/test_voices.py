import pytest

from speechdesk.models.transcription import LANGUAGES
from speechdesk.services.voices import VOICES, voice_for_language


def test_english_voice():
    assert voice_for_language("en") == "en-US-Wavenet-D"


@pytest.mark.parametrize("language,voice", [
    ("es", "es-ES-Standard-A"),
    ("zh", "cmn-CN-Standard-A"),
    ("ar", "ar-XA-Standard-A"),
])
def test_known_languages(language, voice):
    assert voice_for_language(language) == voice


def test_unknown_language_falls_back_to_english():
    assert voice_for_language("xx-unknown") == voice_for_language("en")
    assert voice_for_language("") == "en-US-Wavenet-D"


def test_every_supported_language_has_a_voice():
    assert set(VOICES) == set(LANGUAGES)


def test_voice_table_is_read_only():
    with pytest.raises(TypeError):
        VOICES["en"] = "something-else"
