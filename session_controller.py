"""State-machine based recognition session orchestration."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from errors import (
    ASR_PROTOCOL_ERROR,
    CAPTURE_FAILED,
    ERROR_MESSAGES,
    INSECURE_CONTEXT,
    PERMISSION_DENIED,
    UNSUPPORTED_PLATFORM,
    RecognizerBusyError,
)
from interfaces import CapturePlatform, Cancellable, Recognizer, Scheduler, VisibilitySource
from matching import count_hits, top_transcript
from models import (
    MicrophonePermission,
    RecognitionEvent,
    RecognitionKind,
    SessionState,
    StartResult,
)
from progress import ProgressAccumulator

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
HeardCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]
RecognizerFactory = Callable[[], Recognizer]

RESTART_AFTER_END_S = 0.2
RESTART_AFTER_ERROR_S = 0.5
RESTART_AFTER_VISIBLE_S = 0.2
RETRY_START_S = 0.25

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.STARTING, SessionState.ERROR, SessionState.STOPPED}),
    SessionState.STARTING: frozenset(
        {SessionState.LISTENING, SessionState.RESTARTING, SessionState.ERROR, SessionState.STOPPED}
    ),
    SessionState.LISTENING: frozenset(
        {SessionState.RESTARTING, SessionState.ERROR, SessionState.STOPPED}
    ),
    SessionState.RESTARTING: frozenset(
        {SessionState.LISTENING, SessionState.ERROR, SessionState.STOPPED}
    ),
    SessionState.STOPPED: frozenset(
        {SessionState.STARTING, SessionState.RESTARTING, SessionState.ERROR}
    ),
    SessionState.ERROR: frozenset(
        {SessionState.STARTING, SessionState.RESTARTING, SessionState.STOPPED}
    ),
}


class RecognitionSessionController:
    """Keeps one recognizer listening until the user explicitly stops it.

    Recognizers end and fail on their own; unless ``stop()`` was called, every
    end or error schedules a restart. Matching is done against the
    accumulator's live canonical term, so the controller never restarts on a
    term change.
    """

    def __init__(
        self,
        recognizer_factory: RecognizerFactory,
        platform: CapturePlatform,
        accumulator: ProgressAccumulator,
        scheduler: Scheduler,
        restart_after_end_s: float = RESTART_AFTER_END_S,
        restart_after_error_s: float = RESTART_AFTER_ERROR_S,
        restart_after_visible_s: float = RESTART_AFTER_VISIBLE_S,
        retry_start_s: float = RETRY_START_S,
        on_state_change: Optional[StateCallback] = None,
        on_heard: Optional[HeardCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._recognizer_factory = recognizer_factory
        self._platform = platform
        self._accumulator = accumulator
        self._scheduler = scheduler
        self._restart_after_end_s = restart_after_end_s
        self._restart_after_error_s = restart_after_error_s
        self._restart_after_visible_s = restart_after_visible_s
        self._retry_start_s = retry_start_s
        self._on_state_change = on_state_change
        self._on_heard = on_heard
        self._on_error = on_error

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._recognizer: Optional[Recognizer] = None
        self._restart_timer: Optional[Cancellable] = None
        self._restart_generation = 0
        self._active = False
        self._stopped = True
        self._hidden = False
        self._visibility_bound = False
        self._last_heard = ""
        self._last_error = ""

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def last_heard(self) -> str:
        return self._last_heard

    @property
    def last_error(self) -> str:
        return self._last_error

    def start(self) -> StartResult:
        with self._lock:
            if self._active:
                return StartResult(started=True, message="already listening")
            self._active = True
            self._stopped = False
            self._last_error = ""
            self._last_heard = ""

        code = self._check_preconditions()
        if code:
            message = ERROR_MESSAGES[code]
            with self._lock:
                self._active = False
                self._stopped = True
                self._last_error = message
                self._transition(SessionState.ERROR)
            logger.warning("Cannot start listening: %s", code)
            self._emit_error(code, message)
            return StartResult(started=False, code=code, message=message)

        with self._lock:
            if self._stopped:
                return StartResult(started=False, message="stopped while starting")
            if self._recognizer is None:
                self._recognizer = self._recognizer_factory()
            recognizer = self._recognizer
            self._transition(SessionState.STARTING)

        try:
            recognizer.start(self._handle_recognition_event)
        except RecognizerBusyError:
            logger.debug("Recognizer already running")
        except Exception as exc:
            logger.warning("Recognizer start failed, retrying: %s", exc)
            self.schedule_restart(self._retry_start_s)
        return StartResult(started=True)

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            self._active = False
            self._cancel_restart_timer()
            recognizer = self._recognizer
            self._transition(SessionState.STOPPED)
        self._safe_stop_recognizer(recognizer)
        self._accumulator.save(force=True)

    def schedule_restart(self, delay_s: float) -> None:
        with self._lock:
            if self._stopped or self._hidden:
                return
            self._cancel_restart_timer()
            self._restart_generation += 1
            generation = self._restart_generation
            self._restart_timer = self._scheduler.call_later(
                delay_s, lambda: self._restart(generation)
            )
            self._transition(SessionState.RESTARTING)
        logger.debug("Restart scheduled in %.2fs", delay_s)

    def bind_visibility(self, source: VisibilitySource) -> None:
        with self._lock:
            if self._visibility_bound:
                return
            self._visibility_bound = True
        source.subscribe(self.set_visible)

    def set_visible(self, visible: bool) -> None:
        with self._lock:
            hidden = not visible
            if hidden == self._hidden:
                return
            self._hidden = hidden
            recognizer = self._recognizer if self._active else None
            if hidden:
                self._cancel_restart_timer()
                if self._active:
                    self._transition(SessionState.STOPPED)
        if hidden:
            logger.debug("Hidden, pausing recognizer")
            self._safe_stop_recognizer(recognizer)
            return
        self.schedule_restart(self._restart_after_visible_s)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_preconditions(self) -> str:
        if not self._platform.is_secure_context():
            return INSECURE_CONTEXT
        if not self._platform.recognizer_available():
            return UNSUPPORTED_PLATFORM
        try:
            self._platform.request_microphone()
        except Exception as exc:
            logger.debug("Microphone probe failed: %s", exc)
        try:
            permission = self._platform.query_microphone_permission()
        except Exception as exc:
            logger.debug("Permission query failed: %s", exc)
            permission = MicrophonePermission.PROMPT
        if permission == MicrophonePermission.DENIED:
            return PERMISSION_DENIED
        return ""

    def _handle_recognition_event(self, event: RecognitionEvent) -> None:
        kind = event.kind
        if kind == RecognitionKind.RESULT.value:
            self._handle_result(event)
            return

        with self._lock:
            stopped = self._stopped
            if kind == RecognitionKind.START.value:
                if not stopped:
                    self._transition(SessionState.LISTENING)
                return
            if kind == RecognitionKind.ERROR.value:
                self._last_error = event.message or ERROR_MESSAGES.get(event.code, event.code)
                if not stopped:
                    self._transition(SessionState.ERROR)
                delay = self._restart_after_error_s
            elif kind == RecognitionKind.END.value:
                self._transition(SessionState.STOPPED)
                delay = self._restart_after_end_s
            else:
                return

        if kind == RecognitionKind.ERROR.value:
            # Restarts happen either way; errors a restart cannot cure are logged louder.
            level = logging.INFO if event.retryable else logging.WARNING
            logger.log(level, "Recognizer error %s: %s", event.code, event.message)
            self._emit_error(event.code or ASR_PROTOCOL_ERROR, self._last_error)
        if not stopped:
            self.schedule_restart(delay)

    def _handle_result(self, event: RecognitionEvent) -> None:
        heard = top_transcript(event)
        hits = count_hits(event, self._accumulator.target_canonical)
        if heard:
            with self._lock:
                self._last_heard = heard
            if self._on_heard:
                self._on_heard(heard)
        if hits > 0:
            self._accumulator.increment(hits)

    def _restart(self, generation: int) -> None:
        with self._lock:
            if generation != self._restart_generation:
                return
            self._restart_timer = None
            if self._stopped or self._hidden:
                return
            recognizer = self._recognizer
        if recognizer is None:
            return
        try:
            recognizer.start(self._handle_recognition_event)
        except RecognizerBusyError:
            logger.debug("Restart skipped, recognizer already running")
        except Exception as exc:
            self._handle_recognition_event(
                RecognitionEvent(
                    kind=RecognitionKind.ERROR.value,
                    code=CAPTURE_FAILED,
                    message=str(exc),
                    retryable=True,
                )
            )

    def _cancel_restart_timer(self) -> None:
        timer = self._restart_timer
        if timer is not None:
            timer.cancel()
            self._restart_timer = None
        self._restart_generation += 1

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _safe_stop_recognizer(self, recognizer: Optional[Recognizer]) -> None:
        if recognizer is None:
            return
        try:
            recognizer.stop()
        except Exception as exc:  # pragma: no cover - defensive
            logger.debug("Recognizer stop failed: %s", exc)

    def _transition(self, to_state: SessionState) -> bool:
        from_state = self._state
        if from_state == to_state:
            return True
        if to_state not in _TRANSITIONS[from_state]:
            logger.warning("Ignoring transition %s -> %s", from_state.value, to_state.value)
            return False
        self._state = to_state
        logger.debug("Session %s -> %s", from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
        return True
