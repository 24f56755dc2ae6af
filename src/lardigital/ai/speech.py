"""Speech-to-text for WhatsApp voice notes (ElevenLabs).

Transcriptions are paid and capped per hour: the caller checks the
HourlyQuota before calling `transcribe` and tells the sender when it is
exhausted. The HTTP call is blocking (`requests`), so the async wrapper
runs it in a worker thread.
"""

from __future__ import annotations

import asyncio

import requests

from lardigital.infra.settings import SpeechConfig
from lardigital.observability.logging import get_logger
from lardigital.observability.redaction import safe_log_context

logger = get_logger(__name__)

ELEVENLABS_STT_URL = "https://api.elevenlabs.io/v1/speech-to-text"
REQUEST_TIMEOUT_SECONDS = 60


class TranscriptionError(Exception):
    """Speech service not configured, unreachable or returned no text."""


class SpeechTranscriber:
    def __init__(self, config: SpeechConfig, session: requests.Session | None = None) -> None:
        self._config = config
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self._config.api_key)

    def transcribe_sync(self, audio: bytes, mime_type: str | None = None) -> str:
        """Transcribe audio bytes to text.

        Raises:
            TranscriptionError: On missing key, HTTP failure or empty result.
        """
        if not self.configured:
            raise TranscriptionError("ELEVENLABS_API_KEY not configured")

        files = {"file": ("audio.ogg", audio, mime_type or "audio/ogg")}
        data = {
            "model_id": self._config.model_id,
            "language_code": self._config.language_code,
        }
        try:
            response = self._session.post(
                ELEVENLABS_STT_URL,
                headers={"xi-api-key": self._config.api_key},
                files=files,
                data=data,
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise TranscriptionError(f"speech service unreachable: {type(e).__name__}") from e

        if response.status_code >= 400:
            logger.warning(
                "transcription failed",
                extra={"extra_fields": safe_log_context(status_code=response.status_code)},
            )
            raise TranscriptionError(f"speech service returned {response.status_code}")

        try:
            text = (response.json().get("text") or "").strip()
        except ValueError as e:
            raise TranscriptionError("speech service returned invalid JSON") from e
        if not text:
            raise TranscriptionError("empty transcription")

        logger.info(
            "audio transcribed",
            extra={"extra_fields": safe_log_context(audio_bytes=len(audio), text_len=len(text))},
        )
        return text

    async def transcribe(self, audio: bytes, mime_type: str | None = None) -> str:
        return await asyncio.to_thread(self.transcribe_sync, audio, mime_type)
