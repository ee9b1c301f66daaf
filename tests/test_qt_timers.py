from __future__ import annotations

from PyQt6 import QtCore

from lab_engine.timers import QtTimerFactory


def _app() -> QtCore.QCoreApplication:
    return QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])


def _spin(ms: int) -> None:
    loop = QtCore.QEventLoop()
    QtCore.QTimer.singleShot(ms, loop.quit)
    loop.exec()


def test_single_shot_timer_fires_once() -> None:
    app = _app()
    fired = []
    timer = QtTimerFactory().single_shot(10, lambda: fired.append(1))
    assert timer.interval_ms == 10

    timer.start()
    assert timer.is_active()
    _spin(150)

    assert fired == [1]
    assert not timer.is_active()
    assert app is not None


def test_stopped_repeating_timer_stays_quiet() -> None:
    app = _app()
    fired = []
    timer = QtTimerFactory().repeating(10, lambda: fired.append(1))

    timer.start()
    _spin(60)
    timer.stop()
    count = len(fired)
    _spin(60)

    assert count >= 1
    assert len(fired) == count
    assert app is not None
