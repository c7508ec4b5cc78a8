"""Shared error codes, user-facing messages and microphone exceptions."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
TOO_SHORT = "TOO_SHORT"
MODEL_LOAD_FAILED = "MODEL_LOAD_FAILED"
DEVICE_ERROR = "DEVICE_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone denied",
    TOO_SHORT: "Hold button to record audio",
    MODEL_LOAD_FAILED: "Wake word model failed to load.",
    DEVICE_ERROR: "Microphone error.",
    NETWORK_ERROR: "Network failed, please retry.",
    AUTH_FAILED: "API key is invalid.",
    ASR_PROTOCOL_ERROR: "ASR response format is invalid.",
}

# Shown instead of ERROR_MESSAGES when the failure also turned hands-free mode off.
HANDS_FREE_OFF_MESSAGES = {
    PERMISSION_DENIED: "Microphone denied, hands-free mode turned off.",
    MODEL_LOAD_FAILED: "Wake word model failed to load, hands-free mode turned off.",
    DEVICE_ERROR: "Microphone error, hands-free mode turned off.",
}

WAKE_WORD_ON = "Wake word on"
WAKE_WORD_OFF = "Wake word off"


class MicrophoneError(Exception):
    """The input device could not be opened."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class MicrophonePermissionError(MicrophoneError, PermissionError):
    def __init__(self, message: str) -> None:
        super().__init__(PERMISSION_DENIED, message)


class ModelLoadError(Exception):
    pass
