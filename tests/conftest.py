from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class ManualTimer:
    def __init__(self, clock: "ManualTimerFactory", interval_ms: int, callback: Callable[[], None], single_shot: bool):
        self._clock = clock
        self.interval_ms = int(interval_ms)
        self.callback = callback
        self.single_shot = single_shot
        self.due_ms: int | None = None
        self.fired = 0

    def start(self) -> None:
        self.due_ms = self._clock.now_ms + self.interval_ms

    def stop(self) -> None:
        self.due_ms = None

    def is_active(self) -> bool:
        return self.due_ms is not None


class ManualTimerFactory:
    """Timer factory whose clock only moves when a test calls ``advance``."""

    def __init__(self) -> None:
        self.now_ms = 0
        self.timers: List[ManualTimer] = []

    def single_shot(self, interval_ms: int, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self, interval_ms, callback, single_shot=True)
        self.timers.append(timer)
        return timer

    def repeating(self, interval_ms: int, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self, interval_ms, callback, single_shot=False)
        self.timers.append(timer)
        return timer

    def active(self) -> List[ManualTimer]:
        return [timer for timer in self.timers if timer.is_active()]

    def advance(self, ms: int) -> None:
        target = self.now_ms + int(ms)
        while True:
            due = [t for t in self.timers if t.due_ms is not None and t.due_ms <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due_ms)
            self.now_ms = timer.due_ms
            if timer.single_shot:
                timer.due_ms = None
            else:
                timer.due_ms = self.now_ms + timer.interval_ms
            timer.fired += 1
            timer.callback()
        self.now_ms = target


@pytest.fixture()
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()
