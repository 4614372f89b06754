"""Milestone celebration overlay."""

from __future__ import annotations

from formatting import format_count, progress_percent

try:
    from PySide6.QtCore import QEasingCurve, QPropertyAnimation, Qt, QTimer
    from PySide6.QtWidgets import QApplication, QLabel, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    QEasingCurve = None  # type: ignore
    QPropertyAnimation = None  # type: ignore
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QVBoxLayout = object  # type: ignore
    QWidget = object  # type: ignore

_PANEL_STYLE = "background: rgba(0,0,0,200); border-radius: 16px;"
_TITLE_STYLE = "color: #FFD54F; font-size: 28px; font-weight: bold;"
_SUBTITLE_STYLE = "color: #EEEEEE; font-size: 14px;"
FADE_MS = 600


def milestone_text(index: int, milestone_size: int) -> str:
    return f"🎉 {format_count(index * milestone_size)} jap complete!"


def goal_text(index: int, milestone_size: int, goal: int) -> str:
    reached = index * milestone_size
    return f"{progress_percent(reached, goal)}% of {format_count(goal)}"


class OverlayWindow(QWidget):
    """Frameless, non-activating banner shown when a milestone is crossed."""

    def __init__(self, milestone_size: int, goal: int) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self._milestone_size = milestone_size
        self._goal = goal
        self.setWindowFlags(Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool)
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setAttribute(Qt.WA_ShowWithoutActivating, True)
        self.setFixedWidth(520)

        panel = QWidget()
        panel.setStyleSheet(_PANEL_STYLE)
        self._title = QLabel("")
        self._title.setStyleSheet(_TITLE_STYLE)
        self._subtitle = QLabel("")
        self._subtitle.setStyleSheet(_SUBTITLE_STYLE)
        inner = QVBoxLayout(panel)
        inner.setContentsMargins(24, 20, 24, 20)
        for label in (self._title, self._subtitle):
            label.setAlignment(Qt.AlignCenter)
            inner.addWidget(label)

        outer = QVBoxLayout()
        outer.setContentsMargins(0, 0, 0, 0)
        outer.addWidget(panel)
        self.setLayout(outer)

        self._hold_timer = QTimer(self)
        self._hold_timer.setSingleShot(True)
        self._hold_timer.timeout.connect(self._fade_out)
        self._fade = QPropertyAnimation(self, b"windowOpacity", self)
        self._fade.setDuration(FADE_MS)
        self._fade.setStartValue(1.0)
        self._fade.setEndValue(0.0)
        self._fade.setEasingCurve(QEasingCurve.InQuad)
        self._fade.finished.connect(self.hide)

    def show_milestone(self, index: int, hold_ms: int = 3000) -> None:
        """Show milestone ``index`` for ``hold_ms``, then fade out."""
        self._title.setText(milestone_text(index, self._milestone_size))
        self._subtitle.setText(goal_text(index, self._milestone_size, self._goal))
        self._fade.stop()
        self.setWindowOpacity(1.0)
        self._place()
        self.show()
        self._hold_timer.start(hold_ms)

    def _fade_out(self) -> None:
        self._fade.start()

    def _place(self) -> None:
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        x = geom.x() + (geom.width() - self.width()) // 2
        y = geom.y() + geom.height() // 3
        self.move(x, y)
