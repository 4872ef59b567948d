import pytest

from speechdesk.db.base import Base
from speechdesk.db.database import SessionLocal, engine
from speechdesk.models.transcription import Transcription, TranscriptionStatus, TranscriptionType
from speechdesk.utils import storage


@pytest.fixture(autouse=True)
def data_root(tmp_path, monkeypatch):
    """Point blob storage at a fresh directory for every test."""
    monkeypatch.setattr(storage, "DATA_ROOT", tmp_path)
    return tmp_path


@pytest.fixture(autouse=True)
def _fresh_schema():
    from speechdesk import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_transcription(db):
    """Factory inserting a committed record; keyword arguments override defaults."""

    def _make(**overrides):
        type_ = overrides.pop("type", TranscriptionType.TEXT_TO_SPEECH)
        fields = {
            "title": "Greeting",
            "type": type_,
            "language": "en",
            "status": TranscriptionStatus.PENDING,
            "auto_process": False,
        }
        if type_ == TranscriptionType.TEXT_TO_SPEECH:
            fields.update(model_used="tts-1", input_text="Hello")
        else:
            fields.update(model_used="openai/whisper-small", audio_file_path="transcriptions/audio/default/clip.mp3")
        fields.update(overrides)
        transcription = Transcription(**fields)
        db.add(transcription)
        db.commit()
        db.refresh(transcription)
        return transcription

    return _make
