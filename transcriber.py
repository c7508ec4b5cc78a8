"""Transcription collaborator backed by DashScope qwen3-asr-flash.

The model accepts a complete clip as a base64 data URI and streams back
recognition text with ``stream=True``. Each finished capture artifact is
sent as-is, tagged with the container type the capture side negotiated.
"""

from __future__ import annotations

import base64
import logging
import os
from typing import Callable, Optional

from errors import ASR_PROTOCOL_ERROR, AUTH_FAILED, NETWORK_ERROR
from models import AudioArtifact, TranscriptionResult

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)


class TranscriptionError(Exception):
    def __init__(self, code: str, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable


def artifact_data_uri(artifact: AudioArtifact) -> str:
    encoded = base64.b64encode(artifact.data).decode("ascii")
    return f"data:{artifact.mime_type};base64,{encoded}"


class DashscopeTranscriptionService:
    def __init__(
        self,
        api_key: str,
        model: str = "qwen3-asr-flash",
        request_timeout_s: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._request_timeout_s = request_timeout_s

    def transcribe(
        self,
        artifact: AudioArtifact,
        on_partial: Optional[Callable[[str], None]] = None,
    ) -> TranscriptionResult:
        if dashscope is None:
            raise TranscriptionError(ASR_PROTOCOL_ERROR, "dashscope is not installed")

        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            raise TranscriptionError(AUTH_FAILED, "No API key configured")

        logger.info("Transcribing %d bytes of %s", len(artifact.data), artifact.mime_type)
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=api_key,
                model=self._model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": artifact_data_uri(artifact)}]},
                ],
                result_format="message",
                asr_options={"enable_itn": False},
                stream=True,
                timeout=self._request_timeout_s,
            )
            latest_text = ""
            for chunk in response:
                text = self._extract_text(chunk)
                if text:
                    latest_text = text
                    if on_partial:
                        on_partial(text)
        except TranscriptionError:
            raise
        except Exception as exc:
            raise self._to_error(exc) from exc

        return TranscriptionResult(transcription=latest_text.strip())

    def _extract_text(self, chunk: object) -> str:
        """Pull text from a dashscope streaming chunk dict."""
        if isinstance(chunk, dict):
            if chunk.get("status_code") not in (None, 200):
                raise TranscriptionError(
                    ASR_PROTOCOL_ERROR,
                    str(chunk.get("message") or chunk.get("code") or "request failed"),
                )
            output = chunk.get("output") or {}
            choices = output.get("choices", [])
            if not choices:
                return ""
            content = choices[0].get("message", {}).get("content", [])
            if content and isinstance(content[0], dict):
                return str(content[0].get("text", ""))
        return ""

    def _to_error(self, exc: Exception) -> TranscriptionError:
        """Map an SDK/network exception to a coded error."""
        message = str(exc)
        low = message.lower()
        if "401" in low or "auth" in low or "api key" in low:
            return TranscriptionError(AUTH_FAILED, message, retryable=False)
        if "timeout" in low or "network" in low or "connection" in low:
            return TranscriptionError(NETWORK_ERROR, message, retryable=True)
        return TranscriptionError(ASR_PROTOCOL_ERROR, message, retryable=True)
