"""Overlay window used as the toast sink and transcript display."""

from __future__ import annotations

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import QApplication, QLabel, QWidget, QVBoxLayout
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QWidget = object  # type: ignore
    QVBoxLayout = object  # type: ignore

TOAST_MS = 3000

_BASE_STYLE = "font-size: 18px; padding: 16px; border-radius: 12px;"
NORMAL_STYLE = "color: white; background: rgba(0,0,0,190);" + _BASE_STYLE
TOAST_STYLE = "color: #FFD166; background: rgba(0,0,0,210);" + _BASE_STYLE


class OverlayWindow(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool)
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(600)

        self._label = QLabel("")
        self._label.setWordWrap(True)
        self._label.setStyleSheet(NORMAL_STYLE)

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._label)
        self.setLayout(layout)

        self._hide_timer = QTimer(self)
        self._hide_timer.setSingleShot(True)
        self._hide_timer.timeout.connect(self.hide)

    def _center_top(self) -> None:
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        self.move(geom.x() + (geom.width() - self.width()) // 2, geom.y() + 40)

    def set_text(self, text: str) -> None:
        """Show text until replaced or hidden."""
        self._hide_timer.stop()
        self._label.setStyleSheet(NORMAL_STYLE)
        self._label.setText(text)
        self._center_top()
        self.show()

    def show_toast(self, text: str, hide_after_ms: int = TOAST_MS) -> None:
        self._hide_timer.stop()
        self._label.setStyleSheet(TOAST_STYLE)
        self._label.setText(text)
        self._center_top()
        self.show()
        self._hide_timer.start(hide_after_ms)

    def hide_with_delay(self, delay_ms: int = 400) -> None:
        self._hide_timer.start(delay_ms)
