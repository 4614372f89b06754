"""Protocol interfaces used by the session controller and progress accumulator."""

from __future__ import annotations

from queue import Queue
from typing import Callable, Optional, Protocol

from models import AudioFrame, MicrophonePermission, ProgressRecord, RecognitionEvent, User


class Recorder(Protocol):
    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...


class Recognizer(Protocol):
    def start(self, on_event: Callable[[RecognitionEvent], None]) -> None: ...

    def stop(self) -> None: ...


class CapturePlatform(Protocol):
    def is_secure_context(self) -> bool: ...

    def recognizer_available(self) -> bool: ...

    def request_microphone(self) -> None: ...

    def query_microphone_permission(self) -> MicrophonePermission: ...


class VisibilitySource(Protocol):
    def subscribe(self, callback: Callable[[bool], None]) -> None: ...


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_s: float, fn: Callable[[], None]) -> Cancellable: ...

    def call_every(self, interval_s: float, fn: Callable[[], None]) -> Cancellable: ...


class Identity(Protocol):
    def get_current_user(self) -> Optional[User]: ...


class ProgressStore(Protocol):
    def load_progress(self, user_id: str, term: Optional[str] = None) -> Optional[ProgressRecord]: ...

    def save_progress(self, user_id: str, term: str, count: int) -> ProgressRecord: ...

