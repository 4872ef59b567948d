"""Admin endpoints for transcription records.

* GET    /transcriptions                      – list (filters: type, status, language)
* POST   /transcriptions                      – create from JSON, optionally auto-process
* POST   /transcriptions/upload               – create a speech-to-text record from an audio upload
* GET    /transcriptions/options              – supported languages and models per type
* GET    /transcriptions/{id}                 – detail
* PATCH  /transcriptions/{id}                 – edit
* DELETE /transcriptions/{id}                 – soft delete
* POST   /transcriptions/{id}/process         – process synchronously
* POST   /transcriptions/{id}/enqueue         – queue processing on the worker
* GET    /transcriptions/{id}/download-text   – transcript as a .txt attachment
* GET    /transcriptions/{id}/download-audio  – generated audio as an .mp3 attachment
"""

from __future__ import annotations

import logging
import re
import unicodedata
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, Response, UploadFile, status
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import or_

from ..config import settings
from ..db import records
from ..db.database import SessionLocal
from ..errors import (
    AlreadyProcessingError,
    StorageError,
    TranscriptionError,
    TranscriptionNotFoundError,
    ValidationError,
)
from ..models.transcription import (
    DEFAULT_MODELS,
    LANGUAGES,
    MAX_INPUT_TEXT_LENGTH,
    MODELS_BY_TYPE,
    Transcription,
    TranscriptionStatus,
    TranscriptionType,
    utcnow,
)
from ..services.processor import TranscriptionProcessor
from ..utils import storage
from ..workers.tasks import enqueue_transcription

router = APIRouter()
logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".mp3", ".wav", ".m4a", ".mp4", ".webm", ".mpga", ".mpeg", ".ogg"}


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


def _check_language(language: str) -> None:
    if language not in LANGUAGES:
        raise ValueError(f"Unsupported language '{language}'. Supported: {', '.join(LANGUAGES)}")


def _check_model(type_: TranscriptionType, model_used: str) -> None:
    allowed = MODELS_BY_TYPE[type_]
    if model_used not in allowed:
        raise ValueError(f"Model '{model_used}' is not available for {type_.value}. Choose one of: {', '.join(allowed)}")


class TranscriptionCreate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: TranscriptionType
    language: str = "en"
    model_used: Optional[str] = None
    input_text: Optional[str] = Field(None, max_length=MAX_INPUT_TEXT_LENGTH)
    audio_file_path: Optional[str] = None
    auto_process: bool = True
    user_id: Optional[int] = None

    @model_validator(mode="after")
    def check_inputs(self) -> "TranscriptionCreate":
        _check_language(self.language)
        if self.model_used is None:
            self.model_used = DEFAULT_MODELS[self.type]
        _check_model(self.type, self.model_used)
        if self.type == TranscriptionType.TEXT_TO_SPEECH:
            if not (self.input_text or "").strip():
                raise ValueError("input_text is required for text_to_speech")
            self.audio_file_path = None
        else:
            if not (self.audio_file_path or "").strip():
                raise ValueError("audio_file_path is required for speech_to_text")
            self.input_text = None
        return self


class TranscriptionUpdate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    language: Optional[str] = None
    model_used: Optional[str] = None
    input_text: Optional[str] = Field(None, max_length=MAX_INPUT_TEXT_LENGTH)

    @model_validator(mode="after")
    def check_language_code(self) -> "TranscriptionUpdate":
        if self.language is not None:
            _check_language(self.language)
        return self


class TranscriptionInfo(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: int
    user_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    type: str
    status: str
    language: str
    model_used: str
    input_text: Optional[str] = None
    audio_file_path: Optional[str] = None
    output_text: Optional[str] = None
    output_audio_path: Optional[str] = None
    auto_process: bool
    processing_started_at: Optional[datetime] = None
    processing_time: Optional[float] = None
    word_count: int
    char_count: int
    metadata: Optional[Dict[str, Any]] = None
    download_url: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


def download_url_for(t: Transcription) -> Optional[str]:
    """Where a finished record's artifact can be fetched, if it has one."""
    if t.status != TranscriptionStatus.COMPLETED:
        return None
    if t.type == TranscriptionType.SPEECH_TO_TEXT and t.output_text:
        return f"/api/transcriptions/{t.id}/download-text"
    if t.type == TranscriptionType.TEXT_TO_SPEECH and t.output_audio_path:
        return f"/api/transcriptions/{t.id}/download-audio"
    return None


def to_info(t: Transcription) -> TranscriptionInfo:
    return TranscriptionInfo(
        id=t.id,
        user_id=t.user_id,
        title=t.title,
        description=t.description,
        type=t.type_str,
        status=t.status_str,
        language=t.language,
        model_used=t.model_used,
        input_text=t.input_text,
        audio_file_path=t.audio_file_path,
        output_text=t.output_text,
        output_audio_path=t.output_audio_path,
        auto_process=bool(t.auto_process),
        processing_started_at=t.processing_started_at,
        processing_time=t.processing_time,
        word_count=t.word_count or 0,
        char_count=t.char_count or 0,
        metadata=t.meta,
        download_url=download_url_for(t),
        created_at=t.created_at,
        updated_at=t.updated_at,
    )


def slugify(value: str, fallback: str = "transcription") -> str:
    """ASCII, lowercase, dash-separated version of ``value`` for filenames."""
    normalized = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug or fallback


def _get_or_404(db, transcription_id: int) -> Transcription:
    transcription = records.get_transcription(db, transcription_id)
    if not transcription:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transcription not found")
    return transcription


def _auto_enqueue(transcription: Transcription) -> None:
    if not transcription.auto_process:
        return
    try:
        enqueue_transcription(transcription)
    except Exception as exc:
        # The record stays pending and can be queued again from /enqueue
        logger.error("Failed to enqueue transcription %s: %s", transcription.id, exc, exc_info=True)


# ---------------------------------------------------------------------------
# Collection endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=List[TranscriptionInfo])
async def list_transcriptions(
    type_: Optional[TranscriptionType] = Query(None, alias="type"),
    status_: Optional[TranscriptionStatus] = Query(None, alias="status"),
    language: Optional[str] = None,
    search: Optional[str] = None,
) -> List[TranscriptionInfo]:
    """Return all non-deleted transcriptions, newest first.

    ``search`` matches a substring of the title or the model name.
    """
    db = SessionLocal()
    try:
        query = db.query(Transcription).filter(Transcription.deleted_at.is_(None))
        if type_ is not None:
            query = query.filter(Transcription.type == type_)
        if status_ is not None:
            query = query.filter(Transcription.status == status_)
        if language:
            query = query.filter(Transcription.language == language)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Transcription.title.ilike(pattern), Transcription.model_used.ilike(pattern)))
        items = query.order_by(Transcription.created_at.desc(), Transcription.id.desc()).all()
        return [to_info(t) for t in items]
    except Exception as exc:
        logger.error("Failed to list transcriptions: %s", exc, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error listing transcriptions")
    finally:
        db.close()


@router.post("", response_model=TranscriptionInfo, status_code=status.HTTP_201_CREATED)
async def create_transcription(payload: TranscriptionCreate) -> TranscriptionInfo:
    """Create a pending record; queue it right away when ``auto_process`` is set."""
    db = SessionLocal()
    try:
        transcription = Transcription(
            user_id=payload.user_id,
            title=payload.title,
            description=payload.description,
            type=payload.type,
            language=payload.language,
            model_used=payload.model_used,
            input_text=payload.input_text,
            audio_file_path=payload.audio_file_path,
            auto_process=payload.auto_process,
            status=TranscriptionStatus.PENDING,
        )
        db.add(transcription)
        db.commit()
        db.refresh(transcription)
        logger.info("Created transcription %s (%s)", transcription.id, transcription.type_str)
        _auto_enqueue(transcription)
        return to_info(transcription)
    finally:
        db.close()


@router.post("/upload", response_model=TranscriptionInfo, status_code=status.HTTP_201_CREATED)
async def upload_transcription(
    file: UploadFile = File(...),
    title: str = Form(...),
    description: Optional[str] = Form(None),
    language: str = Form("en"),
    model_used: Optional[str] = Form(None),
    auto_process: bool = Form(True),
    user_id: Optional[int] = Form(None),
) -> TranscriptionInfo:
    """Store an uploaded audio file privately and create a speech-to-text record for it."""
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Audio file is invalid (no filename).")
    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in ALLOWED_EXTENSIONS:
        logger.error("Upload rejected: '%s' has an unsupported extension.", file.filename)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File '{file.filename}' has an unsupported extension. Allowed extensions are: {', '.join(sorted(ALLOWED_EXTENSIONS))}.",
        )
    if not title.strip():
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="title is required")
    model_used = model_used or DEFAULT_MODELS[TranscriptionType.SPEECH_TO_TEXT]
    try:
        _check_language(language)
        _check_model(TranscriptionType.SPEECH_TO_TEXT, model_used)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    max_bytes = settings.max_upload_size_bytes
    chunks = []
    bytes_read = 0
    while True:
        chunk = await file.read(8192)  # Read file in 8KB chunks
        if not chunk:
            break
        bytes_read += len(chunk)
        if max_bytes and bytes_read > max_bytes:
            logger.warning("Upload of '%s' exceeded %dMB", file.filename, settings.MAX_UPLOAD_SIZE_MB)
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File '{file.filename}' exceeds the maximum allowed size of {settings.MAX_UPLOAD_SIZE_MB} MB.",
            )
        chunks.append(chunk)

    safe_name = re.sub(r"[^A-Za-z0-9._-]+", "_", Path(file.filename).name)
    blob = f"{storage.audio_dir_for(user_id)}/{uuid.uuid4().hex}-{safe_name}"
    try:
        storage.write_blob(blob, b"".join(chunks), visibility=storage.PRIVATE)
    except StorageError as exc:
        logger.error("Error saving upload '%s': %s", file.filename, exc, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Error saving file: {file.filename}.")
    logger.info("Saved upload '%s' (%d bytes) to '%s'", file.filename, bytes_read, blob)

    try:
        payload = TranscriptionCreate(
            title=title,
            description=description,
            type=TranscriptionType.SPEECH_TO_TEXT,
            language=language,
            model_used=model_used,
            audio_file_path=blob,
            auto_process=auto_process,
            user_id=user_id,
        )
    except ValueError as exc:
        storage.delete_blob(blob)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return await create_transcription(payload)


@router.get("/options")
async def transcription_options() -> dict:
    """Languages and models the admin form offers, per transcription type."""
    return {
        "languages": dict(LANGUAGES),
        "models": {t.value: dict(models) for t, models in MODELS_BY_TYPE.items()},
        "default_models": {t.value: model for t, model in DEFAULT_MODELS.items()},
    }


# ---------------------------------------------------------------------------
# Item endpoints
# ---------------------------------------------------------------------------


@router.get("/{transcription_id}", response_model=TranscriptionInfo)
async def get_transcription(transcription_id: int) -> TranscriptionInfo:
    db = SessionLocal()
    try:
        return to_info(_get_or_404(db, transcription_id))
    finally:
        db.close()


@router.patch("/{transcription_id}", response_model=TranscriptionInfo)
async def update_transcription(transcription_id: int, payload: TranscriptionUpdate) -> TranscriptionInfo:
    """Edit descriptive fields and processing configuration; ``type`` is fixed."""
    db = SessionLocal()
    try:
        transcription = _get_or_404(db, transcription_id)
        if transcription.status == TranscriptionStatus.PROCESSING:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Transcription is being processed")

        changes = payload.model_dump(exclude_unset=True)
        for field in ("title", "language", "model_used"):
            if field in changes and changes[field] is None:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{field} cannot be null")
        if "model_used" in changes:
            try:
                _check_model(transcription.type, changes["model_used"])
            except ValueError as exc:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
        if "input_text" in changes:
            if transcription.type != TranscriptionType.TEXT_TO_SPEECH:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="input_text can only be set on text_to_speech transcriptions",
                )
            if not (changes["input_text"] or "").strip():
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="input_text cannot be empty")

        for field, value in changes.items():
            setattr(transcription, field, value)
        db.commit()
        db.refresh(transcription)
        logger.info("Updated transcription %s: %s", transcription_id, sorted(changes))
        return to_info(transcription)
    finally:
        db.close()


@router.delete("/{transcription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transcription(transcription_id: int) -> Response:
    """Soft delete: the row and its blobs stay, but the record disappears from the API."""
    db = SessionLocal()
    try:
        transcription = _get_or_404(db, transcription_id)
        transcription.deleted_at = utcnow()
        db.commit()
        logger.info("Soft-deleted transcription %s", transcription_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    finally:
        db.close()


@router.post("/{transcription_id}/process")
def process_transcription(transcription_id: int):
    """Run processing in the request and report the outcome.

    Declared sync so the blocking provider calls run in FastAPI's thread pool.
    """
    db = SessionLocal()
    try:
        transcription = _get_or_404(db, transcription_id)
        try:
            TranscriptionProcessor(db).process(transcription)
        except TranscriptionError as exc:
            if isinstance(exc, ValidationError):
                status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
            elif isinstance(exc, AlreadyProcessingError):
                status_code = status.HTTP_409_CONFLICT
            elif isinstance(exc, TranscriptionNotFoundError):
                status_code = status.HTTP_404_NOT_FOUND
            else:
                status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
            return JSONResponse(
                status_code=status_code,
                content={"success": False, "message": f"Processing failed: {exc}"},
            )
        except Exception as exc:
            logger.error("Unexpected error processing transcription %s: %s", transcription_id, exc, exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"success": False, "message": f"Processing failed: {exc}"},
            )
        return {"success": True, "data": to_info(transcription)}
    finally:
        db.close()


@router.post("/{transcription_id}/enqueue", status_code=status.HTTP_202_ACCEPTED)
async def enqueue(transcription_id: int) -> dict:
    """Hand the record to the Celery worker."""
    db = SessionLocal()
    try:
        transcription = _get_or_404(db, transcription_id)
        if transcription.status == TranscriptionStatus.PROCESSING:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Transcription is being processed")
        try:
            result = enqueue_transcription(transcription)
        except Exception as exc:
            logger.error("Failed to enqueue transcription %s: %s", transcription_id, exc, exc_info=True)
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job queue unavailable")
        return {"transcription_id": transcription.id, "task_id": result.id, "message": "Processing queued."}
    finally:
        db.close()


@router.get("/{transcription_id}/download-text")
async def download_text(transcription_id: int) -> Response:
    db = SessionLocal()
    try:
        transcription = _get_or_404(db, transcription_id)
        if (
            transcription.type != TranscriptionType.SPEECH_TO_TEXT
            or transcription.status != TranscriptionStatus.COMPLETED
            or not transcription.output_text
        ):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transcript not available")
        filename = f"{slugify(transcription.title)}.txt"
        return Response(
            content=transcription.output_text,
            media_type="text/plain; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    finally:
        db.close()


@router.get("/{transcription_id}/download-audio")
async def download_audio(transcription_id: int) -> FileResponse:
    db = SessionLocal()
    try:
        transcription = _get_or_404(db, transcription_id)
        if (
            transcription.type != TranscriptionType.TEXT_TO_SPEECH
            or transcription.status != TranscriptionStatus.COMPLETED
            or not transcription.output_audio_path
        ):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audio not available")
        if not storage.blob_exists(transcription.output_audio_path):
            logger.warning("Audio for transcription %s missing at %s", transcription_id, transcription.output_audio_path)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audio file not found")
        return FileResponse(
            path=storage.blob_path(transcription.output_audio_path),
            media_type="audio/mpeg",
            filename=f"{slugify(transcription.title)}.mp3",
        )
    finally:
        db.close()
