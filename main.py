"""Application entrypoint."""

from __future__ import annotations

import logging
import sys
from typing import Callable, Optional

from capture_platform import DesktopCapturePlatform
from config import JsonConfigStore
from errors import PRECONDITION_CODES
from formatting import format_count, progress_percent
from hotkey import TapHotkey
from identity import HttpIdentity, LocalIdentity
from models import SessionState
from overlay import OverlayWindow
from progress import ProgressAccumulator
from progress_store import HttpProgressStore, SqliteProgressStore, open_http_session
from recognizer import build_recognizer
from scheduler import ThreadingScheduler
from session_controller import RecognitionSessionController

try:
    from PySide6.QtCore import QEvent, QObject, QSize, Qt, Signal
    from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import (
        QApplication,
        QHBoxLayout,
        QInputDialog,
        QLabel,
        QLineEdit,
        QMenu,
        QMessageBox,
        QProgressBar,
        QPushButton,
        QSystemTrayIcon,
        QVBoxLayout,
        QWidget,
    )
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))  # transparent background
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


STATE_COLORS = {
    SessionState.LISTENING: "#FF4444",   # red
    SessionState.STARTING: "#FFBB33",
    SessionState.RESTARTING: "#FFBB33",
    SessionState.ERROR: "#FF8800",       # orange
}
ICON_IDLE = "#888888"  # grey


class UIBridge(QObject):
    count_signal = Signal(int)
    milestone_signal = Signal(int)
    heard_signal = Signal(str)
    error_signal = Signal(str, str)  # code, message
    state_signal = Signal(str, str)  # from_state, to_state
    stopped_signal = Signal()
    shutdown_signal = Signal()


class CounterWindow(QWidget):
    """The counter page; also the visibility source for the controller."""

    def __init__(self, goal: int) -> None:
        super().__init__()
        self.setWindowTitle("Jap Counter")
        self._goal = goal
        self._visibility_callbacks: list[Callable[[bool], None]] = []

        self.term_input = QLineEdit()
        self.term_input.setPlaceholderText('e.g., "राम" or "Ram"')
        self.count_label = QLabel("0")
        self.count_label.setAlignment(Qt.AlignCenter)
        self.count_label.setStyleSheet("font-size: 40px; font-weight: bold;")
        self.progress_bar = QProgressBar()
        self.progress_bar.setRange(0, 100)
        self.goal_label = QLabel()
        self.tap_button = QPushButton("Tap +1")
        self.tap_button.setStyleSheet("font-size: 32px; font-weight: bold; padding: 24px;")
        self.start_button = QPushButton("Start listening")
        self.stop_button = QPushButton("Stop")
        self.stop_button.setEnabled(False)
        self.status_label = QLabel("Status: IDLE")
        self.heard_label = QLabel("")
        for label in (self.status_label, self.heard_label):
            label.setStyleSheet("color: #666; font-size: 11px;")
            label.setWordWrap(True)

        mic_row = QHBoxLayout()
        mic_row.addWidget(self.start_button)
        mic_row.addWidget(self.stop_button)

        layout = QVBoxLayout()
        layout.addWidget(QLabel("Mantra"))
        layout.addWidget(self.term_input)
        layout.addWidget(self.count_label)
        layout.addWidget(self.progress_bar)
        layout.addWidget(self.goal_label)
        layout.addLayout(mic_row)
        layout.addWidget(self.tap_button)
        layout.addWidget(self.status_label)
        layout.addWidget(self.heard_label)
        self.setLayout(layout)
        self.set_count(0)

    def subscribe(self, callback: Callable[[bool], None]) -> None:
        self._visibility_callbacks.append(callback)

    def set_count(self, count: int) -> None:
        self.count_label.setText(format_count(count))
        pct = progress_percent(count, self._goal)
        self.progress_bar.setValue(pct)
        self.goal_label.setText(
            f"{format_count(count)} / {format_count(self._goal)} ({pct}%)"
        )

    def set_status(self, state: str, error: str = "") -> None:
        self.status_label.setText(f"Status: {state}" + (f" — {error}" if error else ""))

    def set_heard(self, text: str) -> None:
        self.heard_label.setText(f"Last heard: “{text}”" if text else "")

    def changeEvent(self, event: QEvent) -> None:  # noqa: N802
        if event.type() == QEvent.WindowStateChange:
            self._notify_visibility(not self.isMinimized())
        super().changeEvent(event)

    def hideEvent(self, event: QEvent) -> None:  # noqa: N802
        self._notify_visibility(False)
        super().hideEvent(event)

    def showEvent(self, event: QEvent) -> None:  # noqa: N802
        self._notify_visibility(not self.isMinimized())
        super().showEvent(event)

    def _notify_visibility(self, visible: bool) -> None:
        for callback in self._visibility_callbacks:
            callback(visible)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        logging.basicConfig(
            level=getattr(logging, self.config_store.get_log_level(), logging.INFO),
            format="%(asctime)s %(levelname)s [%(threadName)s] %(message)s",
            force=True,
        )

        self.ui = UIBridge()
        self.ui.count_signal.connect(self._on_count_ui)
        self.ui.milestone_signal.connect(self._on_milestone_ui)
        self.ui.heard_signal.connect(self._on_heard_ui)
        self.ui.error_signal.connect(self._on_error_ui)
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.stopped_signal.connect(self._on_stopped_ui)
        self.ui.shutdown_signal.connect(self.app.quit)

        server_url = self.config_store.get_server_url()
        if server_url:
            http_session = open_http_session(server_url, self.config_store.get_session_token())
            self.store: HttpProgressStore | SqliteProgressStore = HttpProgressStore(
                server_url, http_session
            )
            identity: HttpIdentity | LocalIdentity = HttpIdentity(server_url, http_session)
        else:
            self.store = SqliteProgressStore(self.config_store.get_db_path()).open()
            identity = LocalIdentity(self.config_store.get_user_id())

        goal = self.config_store.get_goal()
        milestone_size = self.config_store.get_milestone_size()
        self.scheduler = ThreadingScheduler()
        self.accumulator = ProgressAccumulator(
            store=self.store,
            identity=identity,
            goal=goal,
            milestone_size=milestone_size,
            default_term=self.config_store.get_default_term(),
            on_milestone=self.ui.milestone_signal.emit,
            on_change=self.ui.count_signal.emit,
        )

        backend = self.config_store.get_recognizer()
        self.controller = RecognitionSessionController(
            recognizer_factory=lambda: build_recognizer(
                backend,
                language=self.config_store.get_language(),
                max_alternatives=self.config_store.get_max_alternatives(),
                api_key=self.config_store.get_api_key(),
            ),
            platform=DesktopCapturePlatform(backend, server_url=server_url),
            accumulator=self.accumulator,
            scheduler=self.scheduler,
            on_state_change=self._on_state_change,
            on_heard=self.ui.heard_signal.emit,
            on_error=self.ui.error_signal.emit,
        )

        self.window = CounterWindow(goal)
        self.overlay = OverlayWindow(milestone_size, goal)
        self.hotkey: Optional[TapHotkey] = TapHotkey(hotkey_name=self.config_store.get_hotkey())
        self._connect_window()
        self.controller.bind_visibility(self.window)

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Jap Counter — Ready")
        self._setup_menu()
        self.tray.show()

    def _connect_window(self) -> None:
        self.window.term_input.editingFinished.connect(self._on_term_edited)
        self.window.tap_button.clicked.connect(self.accumulator.tap)
        self.window.start_button.clicked.connect(self._start_listening)
        self.window.stop_button.clicked.connect(self._stop_listening)

    def _setup_menu(self) -> None:
        menu = QMenu()

        show_action = QAction("Show Counter", menu)
        show_action.triggered.connect(self.window.showNormal)
        menu.addAction(show_action)

        api_action = QAction("Set API Key", menu)
        api_action.triggered.connect(self._set_api_key)
        menu.addAction(api_action)

        token_action = QAction("Set Session Token", menu)
        token_action.triggered.connect(self._set_session_token)
        menu.addAction(token_action)

        hotkey_action = QAction("Set Tap Hotkey", menu)
        hotkey_action.triggered.connect(self._set_hotkey)
        menu.addAction(hotkey_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "DashScope API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        QMessageBox.information(None, "Saved", "API Key saved. Restart app to apply.")

    def _set_session_token(self) -> None:
        value, ok = QInputDialog.getText(
            None, "Session Token", "rn_session cookie from the signed-in web app"
        )
        if not ok:
            return
        self.config_store.set_session_token(value.strip())
        QMessageBox.information(None, "Saved", "Session token saved. Restart app to apply.")

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(
            None, "Hotkey", "Use pynput key format, e.g. Key.f8"
        )
        if not ok or not value:
            return
        self.config_store.set_hotkey(value)
        QMessageBox.information(None, "Saved", "Hotkey saved. Restart app to apply.")

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_count_ui(self, count: int) -> None:
        self.window.set_count(count)

    def _on_milestone_ui(self, index: int) -> None:
        self.overlay.show_milestone(index)

    def _on_heard_ui(self, text: str) -> None:
        self.window.set_heard(text)

    def _on_error_ui(self, code: str, message: str) -> None:
        self.window.set_status(self.controller.state.value, message)
        if code in PRECONDITION_CODES:
            QMessageBox.warning(self.window, "Microphone", message)

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        state = SessionState(to_state)
        self.window.set_status(to_state, self.controller.last_error)
        self.tray.setIcon(_create_icon(STATE_COLORS.get(state, ICON_IDLE)))
        self.tray.setToolTip(f"Jap Counter — {to_state.title()}")

    def _on_term_edited(self) -> None:
        # Store round-trips; the new count comes back through count_signal.
        self.scheduler.run_in_thread(self.accumulator.set_term, self.window.term_input.text())

    def _start_listening(self) -> None:
        self.window.set_heard("")
        result = self.controller.start()
        if result.started:
            self.window.start_button.setEnabled(False)
            self.window.stop_button.setEnabled(True)

    def _stop_listening(self) -> None:
        # Start stays disabled until the recognizer is joined and progress flushed.
        self.window.start_button.setEnabled(False)
        self.window.stop_button.setEnabled(False)
        self.scheduler.run_in_thread(self._stop_session)

    def _stop_session(self) -> None:
        try:
            self.controller.stop()
        finally:
            self.ui.stopped_signal.emit()

    def _on_stopped_ui(self) -> None:
        self.window.start_button.setEnabled(True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        state = self.accumulator.load()
        self.window.term_input.setText(state.term)
        self.window.set_count(state.count)
        self.accumulator.start_autosave(self.scheduler)
        try:
            self.hotkey.start(on_tap=self.accumulator.tap)
        except Exception as exc:
            logger.warning("Tap hotkey disabled: %s", exc)
            self.hotkey = None
        self.window.show()
        return self.app.exec()

    def quit(self) -> None:
        if self.hotkey is not None:
            self.hotkey.stop()
        self.window.hide()
        self.tray.hide()
        self.scheduler.run_in_thread(self._shutdown)

    def _shutdown(self) -> None:
        try:
            self.controller.stop()
            self.accumulator.stop_autosave()
            self.store.close()
        finally:
            self.ui.shutdown_signal.emit()


def main() -> int:
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
