"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

INSECURE_CONTEXT = "INSECURE_CONTEXT"
UNSUPPORTED_PLATFORM = "UNSUPPORTED_PLATFORM"
PERMISSION_DENIED = "PERMISSION_DENIED"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"
CAPTURE_FAILED = "CAPTURE_FAILED"

ERROR_MESSAGES = {
    INSECURE_CONTEXT: "Microphone requires HTTPS (or localhost) for the progress server.",
    UNSUPPORTED_PLATFORM: "Speech recognition isn't supported here. Use Tap to count.",
    PERMISSION_DENIED: "Microphone permission is denied. Please allow mic access.",
    NETWORK_ERROR: "Network failed, please retry.",
    AUTH_FAILED: "API key is invalid.",
    ASR_PROTOCOL_ERROR: "ASR response format is invalid.",
    CAPTURE_FAILED: "Microphone capture failed.",
}

# Failures that stop start() before a recognizer exists; never retried.
PRECONDITION_CODES = frozenset({INSECURE_CONTEXT, UNSUPPORTED_PLATFORM, PERMISSION_DENIED})


class ProgressStoreError(Exception):
    """Raised by progress stores when a load or save cannot complete."""


class RecognizerBusyError(RuntimeError):
    """Raised by a recognizer asked to start while it is already running."""
