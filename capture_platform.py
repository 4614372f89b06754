"""Preconditions for speech capture on the desktop."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

from models import MicrophonePermission
from recognizer import backend_available

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


class DesktopCapturePlatform:
    """Answers the questions the session controller asks before listening.

    Audio and progress leave the machine only through the progress server, so
    a "secure context" means that server is reached over HTTPS or on a
    loopback host. A local-only setup (no server) is always secure.
    """

    def __init__(
        self,
        backend: str,
        server_url: str = "",
        sample_rate: int = 16000,
        device: Optional[str] = None,
    ) -> None:
        self._backend = backend
        self._server_url = server_url
        self._sample_rate = sample_rate
        self._device = device
        self._permission: Optional[MicrophonePermission] = None

    def is_secure_context(self) -> bool:
        if not self._server_url:
            return True
        parsed = urlparse(self._server_url)
        return parsed.scheme == "https" or parsed.hostname in LOOPBACK_HOSTS

    def recognizer_available(self) -> bool:
        if sd is None or not backend_available(self._backend):
            return False
        try:
            sd.query_devices(device=self._device, kind="input")
        except Exception as exc:
            logger.info("No input device: %s", exc)
            return False
        return True

    def request_microphone(self) -> None:
        """Open and immediately release an input stream so the OS prompts."""
        if sd is None:
            raise RuntimeError("sounddevice is not installed")
        try:
            stream = sd.InputStream(
                samplerate=self._sample_rate,
                channels=1,
                dtype="int16",
                device=self._device,
            )
            stream.start()
            stream.stop()
            stream.close()
        except Exception:
            self._permission = MicrophonePermission.DENIED
            raise
        self._permission = MicrophonePermission.GRANTED

    def query_microphone_permission(self) -> MicrophonePermission:
        if self._permission is None:
            raise LookupError("microphone has not been probed")
        return self._permission
