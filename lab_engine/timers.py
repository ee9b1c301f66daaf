from __future__ import annotations

from typing import Callable, Protocol

from PyQt6 import QtCore


class ScopedTimer(Protocol):
    """A timer owned by one engine component; started and stopped explicitly."""

    def start(self) -> None:  # pragma: no cover - interface
        ...

    def stop(self) -> None:  # pragma: no cover - interface
        ...

    def is_active(self) -> bool:  # pragma: no cover - interface
        ...


class TimerFactory(Protocol):
    def single_shot(self, interval_ms: int, callback: Callable[[], None]) -> ScopedTimer:  # pragma: no cover
        ...

    def repeating(self, interval_ms: int, callback: Callable[[], None]) -> ScopedTimer:  # pragma: no cover
        ...


class QtScopedTimer:
    """QTimer wrapper. ``start()`` on a running timer restarts it from zero."""

    def __init__(self, interval_ms: int, callback: Callable[[], None], *, single_shot: bool):
        self._timer = QtCore.QTimer()
        self._timer.setInterval(int(interval_ms))
        self._timer.setSingleShot(single_shot)
        self._timer.timeout.connect(callback)

    @property
    def interval_ms(self) -> int:
        return self._timer.interval()

    def start(self) -> None:
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()

    def is_active(self) -> bool:
        return self._timer.isActive()


class QtTimerFactory:
    """Creates timers driven by the running Qt event loop."""

    def single_shot(self, interval_ms: int, callback: Callable[[], None]) -> QtScopedTimer:
        return QtScopedTimer(interval_ms, callback, single_shot=True)

    def repeating(self, interval_ms: int, callback: Callable[[], None]) -> QtScopedTimer:
        return QtScopedTimer(interval_ms, callback, single_shot=False)
