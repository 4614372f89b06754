"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionState(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    LISTENING = "LISTENING"
    RESTARTING = "RESTARTING"
    STOPPED = "STOPPED"
    ERROR = "ERROR"


class RecognitionKind(str, Enum):
    START = "start"
    RESULT = "result"
    END = "end"
    ERROR = "error"


class MicrophonePermission(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass(frozen=True)
class RecognitionAlternative:
    transcript: str
    confidence: float = 0.0


@dataclass(frozen=True)
class RecognitionResult:
    alternatives: tuple[RecognitionAlternative, ...] = ()
    is_final: bool = True


@dataclass(frozen=True)
class RecognitionEvent:
    """One recognizer callback.

    ``retryable`` is false for errors a restart will not fix (bad API key,
    missing backend); the session controller restarts regardless and only
    reports those more prominently.
    """

    kind: str
    results: tuple[RecognitionResult, ...] = ()
    result_index: int = 0
    code: str = ""
    message: str = ""
    retryable: bool = False


@dataclass(frozen=True)
class ProgressRecord:
    term: str
    count: int


@dataclass
class ProgressState:
    term: str
    count: int = 0
    last_saved_at: float = 0.0


@dataclass(frozen=True)
class User:
    id: str
    name: str = ""
    email: str = ""


@dataclass
class StartResult:
    started: bool
    code: str = ""
    message: str = ""
