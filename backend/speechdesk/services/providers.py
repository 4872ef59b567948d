"""Clients for the external speech-to-text and text-to-speech HTTP APIs.

Both services take a bearer token. Non-success responses raise
:class:`ProviderError` with the remote body in the message.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from speechdesk.config import settings
from speechdesk.errors import ProcessingTimeoutError, ProviderError

logger = logging.getLogger(__name__)


class ProviderClient:
    """Shared request/response handling for one external speech service."""

    label = "Provider"

    def __init__(self, url: str, api_key: str, timeout: Optional[float] = None) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "*/*"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, **kwargs: Any) -> httpx.Response:
        logger.info("Sending %s request to %s", self.label, self.url)
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("%s request to %s timed out after %ss", self.label, self.url, self.timeout)
            raise ProcessingTimeoutError(f"{self.label} API request timed out after {self.timeout}s") from exc
        except httpx.RequestError as exc:
            logger.error("%s request to %s failed: %s", self.label, self.url, exc, exc_info=True)
            raise ProviderError(f"{self.label} API request failed: {exc}") from exc

        if not response.is_success:
            body = response.text
            logger.error("%s API returned HTTP %s: %s", self.label, response.status_code, body[:500])
            raise ProviderError(
                f"{self.label} API request failed: {body}",
                status_code=response.status_code,
                body=body,
            )
        return response


class SpeechToTextClient(ProviderClient):
    label = "STT"

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None) -> None:
        super().__init__(
            url or settings.STT_API_URL,
            api_key if api_key is not None else settings.STT_API_KEY,
            timeout,
        )

    def transcribe(self, audio: bytes, filename: str, model: str, language: str) -> Dict[str, Any]:
        """Upload ``audio`` as a multipart file and return the decoded JSON.

        The payload is expected to contain at least ``text``.
        """
        response = self._post(
            files={"file": (filename, audio)},
            data={"model": model, "language": language},
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"STT API returned a non-JSON response: {response.text[:500]}",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderError(f"STT API returned an unexpected payload: {payload!r}", status_code=response.status_code)
        return payload


class TextToSpeechClient(ProviderClient):
    label = "TTS"

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None) -> None:
        super().__init__(
            url or settings.TTS_API_URL,
            api_key if api_key is not None else settings.TTS_API_KEY,
            timeout,
        )

    def synthesize(self, text: str, model: str, language: str, voice: str) -> bytes:
        """Return the raw audio bytes produced for ``text``."""
        response = self._post(
            json={"text": text, "model": model, "language": language, "voice": voice},
        )
        return response.content
