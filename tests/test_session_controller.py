from __future__ import annotations

import logging
from typing import Callable, Optional

from errors import (
    AUTH_FAILED,
    CAPTURE_FAILED,
    INSECURE_CONTEXT,
    NETWORK_ERROR,
    PERMISSION_DENIED,
    UNSUPPORTED_PLATFORM,
    RecognizerBusyError,
)
from models import (
    MicrophonePermission,
    ProgressRecord,
    RecognitionAlternative,
    RecognitionEvent,
    RecognitionKind,
    RecognitionResult,
    SessionState,
    User,
)
from progress import ProgressAccumulator
from session_controller import RecognitionSessionController


class FakeRecognizer:
    def __init__(self) -> None:
        self.on_event: Optional[Callable[[RecognitionEvent], None]] = None
        self.start_calls = 0
        self.stop_calls = 0
        self.fail_with: Optional[Exception] = None

    def start(self, on_event: Callable[[RecognitionEvent], None]) -> None:
        self.start_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.on_event = on_event

    def stop(self) -> None:
        self.stop_calls += 1

    def emit(self, event: RecognitionEvent) -> None:
        assert self.on_event is not None
        self.on_event(event)


class FakePlatform:
    def __init__(
        self,
        secure: bool = True,
        available: bool = True,
        permission: MicrophonePermission = MicrophonePermission.GRANTED,
        query_fails: bool = False,
    ) -> None:
        self.secure = secure
        self.available = available
        self.permission = permission
        self.query_fails = query_fails
        self.requests = 0

    def is_secure_context(self) -> bool:
        return self.secure

    def recognizer_available(self) -> bool:
        return self.available

    def request_microphone(self) -> None:
        self.requests += 1

    def query_microphone_permission(self) -> MicrophonePermission:
        if self.query_fails:
            raise LookupError("permissions query unsupported")
        return self.permission


class FakeTimer:
    def __init__(self, delay_s: float, fn: Callable[[], None]) -> None:
        self.delay_s = delay_s
        self.fn = fn
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.fn()


class FakeScheduler:
    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay_s, fn)
        self.timers.append(timer)
        return timer

    def call_every(self, interval_s: float, fn: Callable[[], None]) -> FakeTimer:
        return FakeTimer(interval_s, fn)

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not (t.cancelled or t.fired)]


class FakeStore:
    def __init__(self) -> None:
        self.saves: list[tuple[str, str, int]] = []

    def load_progress(self, user_id: str, term: Optional[str] = None) -> Optional[ProgressRecord]:
        return None

    def save_progress(self, user_id: str, term: str, count: int) -> ProgressRecord:
        self.saves.append((user_id, term, count))
        return ProgressRecord(term=term, count=count)


class FakeIdentity:
    def get_current_user(self) -> Optional[User]:
        return User(id="u1")


class FakeVisibility:
    def __init__(self) -> None:
        self.callbacks: list[Callable[[bool], None]] = []

    def subscribe(self, callback: Callable[[bool], None]) -> None:
        self.callbacks.append(callback)

    def notify(self, visible: bool) -> None:
        for callback in self.callbacks:
            callback(visible)


class Harness:
    def __init__(self, platform: Optional[FakePlatform] = None) -> None:
        self.recognizer = FakeRecognizer()
        self.platform = platform or FakePlatform()
        self.scheduler = FakeScheduler()
        self.store = FakeStore()
        self.accumulator = ProgressAccumulator(store=self.store, identity=FakeIdentity())
        self.accumulator.load()
        self.factory_calls = 0
        self.transitions: list[tuple[SessionState, SessionState]] = []
        self.errors: list[tuple[str, str]] = []
        self.heard: list[str] = []
        self.controller = RecognitionSessionController(
            recognizer_factory=self._factory,
            platform=self.platform,
            accumulator=self.accumulator,
            scheduler=self.scheduler,
            on_state_change=lambda f, t: self.transitions.append((f, t)),
            on_heard=self.heard.append,
            on_error=lambda c, m: self.errors.append((c, m)),
        )

    def _factory(self) -> FakeRecognizer:
        self.factory_calls += 1
        return self.recognizer


def _result_event(*transcripts: str) -> RecognitionEvent:
    result = RecognitionResult(
        alternatives=tuple(RecognitionAlternative(t, 0.5) for t in transcripts)
    )
    return RecognitionEvent(kind=RecognitionKind.RESULT.value, results=(result,))


def _start_listening(h: Harness) -> None:
    assert h.controller.start().started is True
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.START.value))


# ---------------------------------------------------------------
# start / preconditions
# ---------------------------------------------------------------

def test_start_transitions_to_listening() -> None:
    h = Harness()
    _start_listening(h)

    assert h.controller.state == SessionState.LISTENING
    assert h.controller.is_active is True
    assert (SessionState.IDLE, SessionState.STARTING) in h.transitions
    assert (SessionState.STARTING, SessionState.LISTENING) in h.transitions
    assert h.platform.requests == 1


def test_second_start_is_a_no_op() -> None:
    h = Harness()
    h.controller.start()
    result = h.controller.start()

    assert result.started is True
    assert h.factory_calls == 1
    assert h.recognizer.start_calls == 1


def test_insecure_context_fails_without_retry() -> None:
    h = Harness(FakePlatform(secure=False))
    result = h.controller.start()

    assert result.started is False
    assert result.code == INSECURE_CONTEXT
    assert h.controller.state == SessionState.ERROR
    assert h.errors and h.errors[0][0] == INSECURE_CONTEXT
    assert h.scheduler.timers == []
    assert h.factory_calls == 0


def test_unsupported_platform_fails() -> None:
    h = Harness(FakePlatform(available=False))
    result = h.controller.start()

    assert result.code == UNSUPPORTED_PLATFORM
    assert h.controller.is_active is False


def test_denied_permission_fails() -> None:
    h = Harness(FakePlatform(permission=MicrophonePermission.DENIED))
    result = h.controller.start()

    assert result.started is False
    assert result.code == PERMISSION_DENIED
    assert h.scheduler.timers == []


def test_failed_permission_query_is_treated_as_prompt() -> None:
    h = Harness(FakePlatform(query_fails=True))
    assert h.controller.start().started is True


def test_start_after_precondition_failure_can_succeed() -> None:
    platform = FakePlatform(available=False)
    h = Harness(platform)
    h.controller.start()
    platform.available = True

    assert h.controller.start().started is True
    assert h.controller.state == SessionState.STARTING


def test_start_failure_schedules_retry() -> None:
    h = Harness()
    h.recognizer.fail_with = OSError("device busy")
    h.controller.start()

    assert h.controller.state == SessionState.RESTARTING
    assert h.scheduler.pending[0].delay_s == 0.25


# ---------------------------------------------------------------
# results
# ---------------------------------------------------------------

def test_result_hits_increment_immediately() -> None:
    h = Harness()
    _start_listening(h)
    h.recognizer.emit(_result_event("राम जय राम", "राम"))

    assert h.accumulator.count == 2
    assert h.heard == ["राम जय राम"]
    assert h.controller.last_heard == "राम जय राम"


def test_result_without_hits_only_updates_heard() -> None:
    h = Harness()
    _start_listening(h)
    h.recognizer.emit(_result_event("sita"))

    assert h.accumulator.count == 0
    assert h.heard == ["sita"]


def test_term_change_takes_effect_without_restart() -> None:
    h = Harness()
    _start_listening(h)
    h.accumulator.set_term("Hare")
    h.recognizer.emit(_result_event("hare krishna hare"))

    assert h.accumulator.count == 2
    assert h.recognizer.start_calls == 1


# ---------------------------------------------------------------
# restarts
# ---------------------------------------------------------------

def test_end_schedules_restart() -> None:
    h = Harness()
    _start_listening(h)
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.END.value))

    assert h.controller.state == SessionState.RESTARTING
    assert [t.delay_s for t in h.scheduler.pending] == [0.2]

    h.scheduler.pending[0].fire()
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.START.value))
    assert h.recognizer.start_calls == 2
    assert h.controller.state == SessionState.LISTENING


def test_error_reports_and_schedules_restart() -> None:
    h = Harness()
    _start_listening(h)
    h.recognizer.emit(
        RecognitionEvent(
            kind=RecognitionKind.ERROR.value,
            code=NETWORK_ERROR,
            message="connection reset",
            retryable=True,
        )
    )

    assert h.errors == [(NETWORK_ERROR, "connection reset")]
    assert h.controller.last_error == "connection reset"
    assert (SessionState.LISTENING, SessionState.ERROR) in h.transitions
    assert [t.delay_s for t in h.scheduler.pending] == [0.5]


def test_new_restart_replaces_pending_one() -> None:
    h = Harness()
    _start_listening(h)
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.ERROR.value, code=NETWORK_ERROR))
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.END.value))

    assert len(h.scheduler.pending) == 1
    stale = h.scheduler.timers[0]
    stale.fire()
    assert h.recognizer.start_calls == 1


def test_busy_recognizer_on_restart_is_tolerated() -> None:
    h = Harness()
    _start_listening(h)
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.END.value))
    h.recognizer.fail_with = RecognizerBusyError("already running")

    h.scheduler.pending[0].fire()

    assert h.errors == []
    assert h.controller.is_active is True


def test_failed_restart_becomes_capture_error() -> None:
    h = Harness()
    _start_listening(h)
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.END.value))
    h.recognizer.fail_with = OSError("no input device")

    h.scheduler.pending[0].fire()

    assert h.errors[0][0] == CAPTURE_FAILED
    assert [t.delay_s for t in h.scheduler.pending] == [0.5]


# ---------------------------------------------------------------
# stop
# ---------------------------------------------------------------

def test_stop_cancels_pending_restart() -> None:
    h = Harness()
    _start_listening(h)
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.END.value))
    timer = h.scheduler.pending[0]

    h.controller.stop()
    timer.fire()

    assert timer.cancelled is True
    assert h.recognizer.start_calls == 1
    assert h.controller.state == SessionState.STOPPED


def test_events_after_stop_do_not_restart() -> None:
    h = Harness()
    _start_listening(h)
    h.controller.stop()
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.END.value))
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.ERROR.value, code=NETWORK_ERROR))

    assert h.scheduler.pending == []
    assert h.controller.state == SessionState.STOPPED


def test_stop_forces_save_and_is_idempotent() -> None:
    h = Harness()
    _start_listening(h)
    h.recognizer.emit(_result_event("ram ram ram"))

    h.controller.stop()
    h.controller.stop()

    assert h.store.saves == [("u1", "राम", 3)]
    assert h.recognizer.stop_calls == 2
    assert h.controller.is_active is False


def test_start_after_stop_reuses_recognizer() -> None:
    h = Harness()
    _start_listening(h)
    h.controller.stop()
    _start_listening(h)

    assert h.factory_calls == 1
    assert h.recognizer.start_calls == 2
    assert h.controller.state == SessionState.LISTENING


# ---------------------------------------------------------------
# visibility
# ---------------------------------------------------------------

def test_bind_visibility_subscribes_once() -> None:
    h = Harness()
    source = FakeVisibility()
    h.controller.bind_visibility(source)
    h.controller.bind_visibility(source)

    assert len(source.callbacks) == 1


def test_hidden_stops_recognizer_and_suppresses_restarts() -> None:
    h = Harness()
    source = FakeVisibility()
    h.controller.bind_visibility(source)
    _start_listening(h)

    source.notify(False)
    h.recognizer.emit(RecognitionEvent(kind=RecognitionKind.END.value))

    assert h.recognizer.stop_calls == 1
    assert h.controller.state == SessionState.STOPPED
    assert h.scheduler.pending == []


def test_visible_again_restarts() -> None:
    h = Harness()
    source = FakeVisibility()
    h.controller.bind_visibility(source)
    _start_listening(h)

    source.notify(False)
    source.notify(True)

    assert [t.delay_s for t in h.scheduler.pending] == [0.2]
    h.scheduler.pending[0].fire()
    assert h.recognizer.start_calls == 2


def test_visibility_while_not_listening_does_nothing() -> None:
    h = Harness()
    source = FakeVisibility()
    h.controller.bind_visibility(source)

    source.notify(False)
    source.notify(True)

    assert h.scheduler.timers == []
    assert h.recognizer.start_calls == 0
    assert h.controller.state == SessionState.IDLE


def test_non_retryable_error_is_logged_as_warning_and_still_restarts(caplog) -> None:  # noqa: ANN001
    h = Harness()
    _start_listening(h)

    with caplog.at_level(logging.INFO, logger="session_controller"):
        h.recognizer.emit(
            RecognitionEvent(
                kind=RecognitionKind.ERROR.value,
                code=AUTH_FAILED,
                message="No API key configured",
                retryable=False,
            )
        )

    records = [r for r in caplog.records if "Recognizer error" in r.getMessage()]
    assert [r.levelno for r in records] == [logging.WARNING]
    assert [t.delay_s for t in h.scheduler.pending] == [0.5]


def test_retryable_error_is_logged_quietly(caplog) -> None:  # noqa: ANN001
    h = Harness()
    _start_listening(h)

    with caplog.at_level(logging.INFO, logger="session_controller"):
        h.recognizer.emit(
            RecognitionEvent(kind=RecognitionKind.ERROR.value, code=NETWORK_ERROR, retryable=True)
        )

    records = [r for r in caplog.records if "Recognizer error" in r.getMessage()]
    assert [r.levelno for r in records] == [logging.INFO]
