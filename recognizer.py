"""Continuous speech recognizers built on microphone capture.

A recognizer runs one *session* on a worker thread: it captures audio with
``SoundDeviceRecorder``, cuts it into utterances with an energy gate, and
transcribes every utterance. Events follow the browser speech API shape:
``start`` once capture runs, one ``result`` per utterance (``results``
accumulate over the session and ``result_index`` points at the new one),
``error`` when transcription or capture fails, and ``end`` when the session
is over. Sessions end on ``stop()``, after an error, or after
``session_limit_s``; the session controller restarts them.
"""

from __future__ import annotations

import base64
import io
import logging
import os
import threading
import time
import wave
from queue import Empty, Queue
from typing import Callable, Optional

from errors import (
    ASR_PROTOCOL_ERROR,
    AUTH_FAILED,
    CAPTURE_FAILED,
    NETWORK_ERROR,
    RecognizerBusyError,
)
from interfaces import Recorder
from models import (
    AudioFrame,
    RecognitionAlternative,
    RecognitionEvent,
    RecognitionKind,
    RecognitionResult,
)
from recorder import SoundDeviceRecorder

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import speech_recognition as sr
except Exception:  # pragma: no cover
    sr = None  # type: ignore

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)

EventCallback = Callable[[RecognitionEvent], None]


class TranscriptionError(Exception):
    def __init__(self, code: str, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable


def _pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV string."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return base64.b64encode(buf.getvalue()).decode("ascii")


class UtteranceSegmenter:
    """Energy gate turning a PCM frame stream into utterances.

    Frames at or above ``energy_thresh_dbfs`` open or extend an utterance.
    Once ``hangover_ms`` of quiet follows, the utterance is emitted if it
    lasted at least ``min_speech_ms``. Utterances are capped at
    ``max_speech_ms`` so a continuous chant still yields results.
    """

    def __init__(
        self,
        energy_thresh_dbfs: float = -40.0,
        min_speech_ms: int = 200,
        hangover_ms: int = 600,
        max_speech_ms: int = 8000,
    ) -> None:
        self.energy_thresh_dbfs = energy_thresh_dbfs
        self.min_speech_ms = min_speech_ms
        self.hangover_ms = hangover_ms
        self.max_speech_ms = max_speech_ms
        self._current = bytearray()
        self._speech_ms = 0
        self._silence_ms = 0
        self._in_speech = False

    @staticmethod
    def frame_energy_dbfs(pcm: bytes) -> float:
        if not pcm or np is None:
            return -float("inf")
        samples = np.frombuffer(pcm, dtype=np.int16).astype(np.float32)
        rms = float(np.sqrt(np.mean(samples**2)))
        return 20 * float(np.log10(rms / 32768.0 + 1e-12))

    def process(self, frame: AudioFrame) -> list[bytes]:
        frame_ms = len(frame.pcm16_bytes) * 1000 // (2 * frame.channels * frame.sample_rate)
        segments: list[bytes] = []

        if self.frame_energy_dbfs(frame.pcm16_bytes) >= self.energy_thresh_dbfs:
            if not self._in_speech:
                self._reset()
                self._in_speech = True
            self._current.extend(frame.pcm16_bytes)
            self._speech_ms += frame_ms
            self._silence_ms = 0
            if self._speech_ms >= self.max_speech_ms:
                segments.append(bytes(self._current))
                self._reset()
        elif self._in_speech:
            # Trailing quiet stays in the utterance so word endings are kept.
            self._current.extend(frame.pcm16_bytes)
            self._silence_ms += frame_ms
            if self._silence_ms >= self.hangover_ms:
                if self._speech_ms >= self.min_speech_ms:
                    segments.append(bytes(self._current))
                self._reset()
        return segments

    def flush(self) -> list[bytes]:
        segments = []
        if self._in_speech and self._speech_ms >= self.min_speech_ms:
            segments.append(bytes(self._current))
        self._reset()
        return segments

    def _reset(self) -> None:
        self._current.clear()
        self._speech_ms = 0
        self._silence_ms = 0
        self._in_speech = False


class ContinuousRecognizer:
    """Session lifecycle shared by the recognizer backends.

    Subclasses implement ``_transcribe`` and return the alternatives for one
    utterance, best first; an empty list means nothing was understood.
    """

    def __init__(
        self,
        language: str = "hi-IN",
        max_alternatives: int = 5,
        session_limit_s: float = 60.0,
        recorder_factory: Callable[[], Recorder] = SoundDeviceRecorder,
        segmenter_factory: Callable[[], UtteranceSegmenter] = UtteranceSegmenter,
        queue_maxsize: int = 200,
    ) -> None:
        self.language = language
        self.max_alternatives = max_alternatives
        self.session_limit_s = session_limit_s
        self._recorder_factory = recorder_factory
        self._segmenter_factory = segmenter_factory
        self._queue_maxsize = queue_maxsize
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._recorder: Optional[Recorder] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, on_event: EventCallback) -> None:
        with self._lock:
            if self.is_running:
                raise RecognizerBusyError("recognizer is already running")
            self._stop_event = threading.Event()
            self._recorder = self._recorder_factory()
            audio_queue: Queue[AudioFrame | None] = Queue(maxsize=self._queue_maxsize)
            self._thread = threading.Thread(
                target=self._worker,
                args=(self._recorder, audio_queue, self._stop_event, on_event),
                name=type(self).__name__,
                daemon=True,
            )
            self._thread.start()

    def stop(self) -> None:
        with self._lock:
            self._stop_event.set()
            recorder, thread = self._recorder, self._thread
        if recorder is not None:
            try:
                recorder.stop()
            except Exception as exc:  # pragma: no cover - defensive
                logger.debug("Recorder stop failed: %s", exc)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=0.5)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _worker(
        self,
        recorder: Recorder,
        audio_queue: Queue[AudioFrame | None],
        stop_event: threading.Event,
        on_event: EventCallback,
    ) -> None:
        try:
            recorder.start(audio_queue)
        except Exception as exc:
            logger.warning("Capture failed to start: %s", exc)
            on_event(self._error_event(CAPTURE_FAILED, str(exc), retryable=True))
            on_event(RecognitionEvent(kind=RecognitionKind.END.value))
            return

        on_event(RecognitionEvent(kind=RecognitionKind.START.value))
        segmenter = self._segmenter_factory()
        results: list[RecognitionResult] = []
        deadline = time.monotonic() + self.session_limit_s
        sample_rate = 16000
        failed = False

        try:
            while not stop_event.is_set() and not failed:
                if time.monotonic() >= deadline:
                    break
                try:
                    frame = audio_queue.get(timeout=0.2)
                except Empty:
                    continue
                if frame is None:  # Sentinel
                    break
                sample_rate = frame.sample_rate
                for segment in segmenter.process(frame):
                    if not self._recognize(segment, sample_rate, results, on_event):
                        failed = True
                        break
        finally:
            try:
                recorder.stop()
            except Exception as exc:  # pragma: no cover - defensive
                logger.debug("Recorder stop failed: %s", exc)

        if not stop_event.is_set() and not failed:
            for segment in segmenter.flush():
                self._recognize(segment, sample_rate, results, on_event)
        on_event(RecognitionEvent(kind=RecognitionKind.END.value))

    def _recognize(
        self,
        pcm: bytes,
        sample_rate: int,
        results: list[RecognitionResult],
        on_event: EventCallback,
    ) -> bool:
        try:
            alternatives = self._transcribe(pcm, sample_rate)
        except Exception as exc:
            on_event(self._to_error_event(exc))
            return False
        if not alternatives:
            return True
        results.append(RecognitionResult(alternatives=tuple(alternatives[: self.max_alternatives])))
        on_event(
            RecognitionEvent(
                kind=RecognitionKind.RESULT.value,
                results=tuple(results),
                result_index=len(results) - 1,
            )
        )
        return True

    def _transcribe(self, pcm: bytes, sample_rate: int) -> list[RecognitionAlternative]:
        raise NotImplementedError

    def _error_event(self, code: str, message: str, retryable: bool) -> RecognitionEvent:
        return RecognitionEvent(
            kind=RecognitionKind.ERROR.value,
            code=code,
            message=message,
            retryable=retryable,
        )

    def _to_error_event(self, exc: Exception) -> RecognitionEvent:
        """Map a backend/network exception to a standard error event."""
        if isinstance(exc, TranscriptionError):
            return self._error_event(exc.code, str(exc), exc.retryable)
        message = str(exc)
        low = message.lower()
        if "401" in low or "auth" in low or "api key" in low:
            return self._error_event(AUTH_FAILED, message, retryable=False)
        if "timeout" in low or "network" in low or "connection" in low:
            return self._error_event(NETWORK_ERROR, message, retryable=True)
        return self._error_event(ASR_PROTOCOL_ERROR, message, retryable=True)


def parse_google_alternatives(response: object) -> list[RecognitionAlternative]:
    """Alternatives from a ``recognize_google(show_all=True)`` response."""
    if not isinstance(response, dict):
        return []
    alternatives = []
    for item in response.get("alternative", []):
        transcript = str(item.get("transcript", "")).strip()
        if transcript:
            alternatives.append(
                RecognitionAlternative(
                    transcript=transcript,
                    confidence=float(item.get("confidence", 0.0)),
                )
            )
    return alternatives


class GoogleSpeechRecognizer(ContinuousRecognizer):
    """Google Web Speech through the SpeechRecognition package."""

    def _transcribe(self, pcm: bytes, sample_rate: int) -> list[RecognitionAlternative]:
        if sr is None:
            raise TranscriptionError(
                ASR_PROTOCOL_ERROR, "SpeechRecognition is not installed", retryable=False
            )
        audio = sr.AudioData(pcm, sample_rate, 2)
        try:
            response = sr.Recognizer().recognize_google(
                audio, language=self.language, show_all=True
            )
        except sr.UnknownValueError:
            return []
        except sr.RequestError as exc:
            raise TranscriptionError(NETWORK_ERROR, str(exc)) from exc
        return parse_google_alternatives(response)


class DashscopeRecognizer(ContinuousRecognizer):
    """DashScope qwen3-asr-flash; yields a single alternative per utterance."""

    def __init__(
        self,
        api_key: str,
        model: str = "qwen3-asr-flash",
        request_timeout_s: float = 10.0,
        **kwargs: object,
    ) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self._api_key = api_key
        self._model = model
        self._request_timeout_s = request_timeout_s

    def _transcribe(self, pcm: bytes, sample_rate: int) -> list[RecognitionAlternative]:
        if dashscope is None:
            raise TranscriptionError(
                ASR_PROTOCOL_ERROR, "dashscope is not installed", retryable=False
            )
        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            raise TranscriptionError(AUTH_FAILED, "No API key configured", retryable=False)

        response = dashscope.MultiModalConversation.call(
            api_key=api_key,
            model=self._model,
            messages=[
                {"role": "system", "content": [{"text": ""}]},
                {"role": "user", "content": [{"audio": _pcm_to_wav_base64(pcm, sample_rate)}]},
            ],
            result_format="message",
            asr_options={"enable_itn": False},
            stream=True,
            timeout=self._request_timeout_s,
        )
        text = ""
        for chunk in response:
            text = self._extract_text(chunk) or text
        text = text.strip()
        return [RecognitionAlternative(transcript=text, confidence=1.0)] if text else []

    def _extract_text(self, chunk: object) -> str:
        """Pull text from a dashscope streaming chunk dict."""
        if not isinstance(chunk, dict):
            return ""
        choices = chunk.get("output", {}).get("choices", [])
        if not choices:
            return ""
        content = choices[0].get("message", {}).get("content", [])
        if content and isinstance(content[0], dict):
            return str(content[0].get("text", ""))
        return ""


def build_recognizer(
    backend: str,
    language: str = "hi-IN",
    max_alternatives: int = 5,
    api_key: str = "",
) -> ContinuousRecognizer:
    if backend == "google":
        return GoogleSpeechRecognizer(language=language, max_alternatives=max_alternatives)
    if backend == "dashscope":
        return DashscopeRecognizer(api_key=api_key, language=language, max_alternatives=1)
    raise ValueError(f"Unsupported recognizer backend: {backend}")


def backend_available(backend: str) -> bool:
    """Whether the libraries ``backend`` needs are importable."""
    libraries = {"google": sr, "dashscope": dashscope}
    return np is not None and libraries.get(backend) is not None
