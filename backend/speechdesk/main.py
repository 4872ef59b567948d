"""ASGI entry-point for the FastAPI application.

This module
1. instantiates the :class:`fastapi.FastAPI` application;
2. wires the transcription admin router located in ``speechdesk.api``;
3. registers global exception handlers and middleware; and
4. performs a few start-up sanity checks (log directory, blob storage
   writable, database schema present).
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Internal utilities
from speechdesk.db.database import create_tables
from speechdesk.errors import TranscriptionError
from speechdesk.logging_config import LOG_DIR as APP_LOG_DIR
from speechdesk.logging_config import setup_logging
from speechdesk.utils.storage import AUDIO_PREFIX, DATA_ROOT, OUTPUT_PREFIX, ensure_dir_exists

from speechdesk.api import api_router


# ---------------------------------------------------------------------------
# Logging must be configured as soon as possible so that any errors during
# import/start-up are captured.
# ---------------------------------------------------------------------------
setup_logging()
logger = logging.getLogger(__name__)


class AppBaseException(Exception):
    """Domain-level base exception so we can map to JSON responses easily."""

    def __init__(self, status_code: int, detail: str) -> None:  # noqa: D401
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    logger.info("Running start-up checks …")

    for path in (Path(APP_LOG_DIR), DATA_ROOT, DATA_ROOT / AUDIO_PREFIX, DATA_ROOT / OUTPUT_PREFIX):
        try:
            ensure_dir_exists(Path(path))
        except OSError as exc:
            logger.critical("Cannot create/access directory %s – %s", path, exc)
        else:
            writable = os.access(str(path), os.W_OK)
            logger.info("Directory %s is %swritable", path, "" if writable else "NOT ")

    logger.info("Start-up checks finished.")
    yield
    logger.info("Shutting down.")


def create_app() -> FastAPI:  # noqa: D401 – factory nomenclature is fine
    """Wire and return the FastAPI application instance."""

    app = FastAPI(
        title="Speechdesk API",
        version="0.1.0",
        docs_url="/api/docs",
        lifespan=_lifespan,
    )

    # ------------------------------------------------------------------
    # Exception handlers
    # ------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        logger.error("Request validation error: %s", exc.errors())
        return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(
        _request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        logger.error("HTTP exception %s: %s", exc.status_code, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(AppBaseException)
    async def _app_error_handler(
        _request: Request,
        exc: AppBaseException,
    ) -> JSONResponse:
        logger.error("Application exception: %s", exc.detail, exc_info=True)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(TranscriptionError)
    async def _transcription_error_handler(
        _request: Request,
        exc: TranscriptionError,
    ) -> JSONResponse:
        logger.error("Transcription error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def _generic_error_handler(
        _request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------
    # Routers
    # ------------------------------------------------------------------

    app.include_router(api_router, prefix="/api")

    # ------------------------------------------------------------------
    # Ensure DB schema exists (development convenience only).
    # ------------------------------------------------------------------

    try:
        create_tables()
    except Exception as exc:  # pragma: no cover
        logger.exception("Failed to create DB schema: %s", exc)

    # ------------------------------------------------------------------
    # Miscellaneous endpoints
    # ------------------------------------------------------------------

    @app.get("/api/health")
    async def _health() -> dict[str, str]:
        return {"status": "ok"}

    return app


# Instantiate at import time so `uvicorn speechdesk.main:app` works.
app: FastAPI = create_app()
