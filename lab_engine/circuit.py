from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from runtime_bus import topics

logger = logging.getLogger(__name__)

PLANCK_CONSTANT = 6.62607015e-34
ELEMENTARY_CHARGE = 1.602176634e-19


@dataclass(frozen=True)
class LedProfile:
    color: str
    frequency_hz: float
    threshold_v: float


def threshold_for_frequency(frequency_hz: float) -> float:
    """Ideal LED turn-on voltage ``h·f/e``, rounded to 0.01 V."""
    return round(PLANCK_CONSTANT * frequency_hz / ELEMENTARY_CHARGE, 2)


def led(color: str, frequency_hz: float) -> LedProfile:
    return LedProfile(color=color, frequency_hz=frequency_hz, threshold_v=threshold_for_frequency(frequency_hz))


ThresholdListener = Callable[[float], None]


class ThresholdCircuitModel:
    """Applied voltage across the selected LED.

    In experiment mode the first time the LED lights up for a selection,
    ``threshold_crossed`` listeners receive the voltage once. Selecting an
    item (even the same one) re-arms the detector and resets the voltage.
    """

    def __init__(
        self,
        items: Sequence[LedProfile],
        *,
        experiment_mode: bool = True,
        initial_voltage: float = 0.0,
        selected: int = 0,
        bus=None,
    ):
        if not items:
            raise ValueError("circuit needs at least one item")
        self.items: List[LedProfile] = list(items)
        self.experiment_mode = experiment_mode
        self.initial_voltage = float(initial_voltage)
        self.bus = bus
        self._listeners: List[ThresholdListener] = []
        self.select_item(selected)

    @property
    def item(self) -> LedProfile:
        return self.items[self.selected_index]

    @property
    def threshold(self) -> float:
        return self.item.threshold_v

    @property
    def active(self) -> bool:
        return self.voltage >= self.threshold

    @property
    def crossing_detected(self) -> bool:
        return self._crossed

    def on_threshold_crossed(self, listener: ThresholdListener) -> None:
        self._listeners.append(listener)

    def select_item(self, index: int) -> None:
        if not 0 <= index < len(self.items):
            raise IndexError(f"no circuit item at index {index}")
        self.selected_index = index
        self.voltage = self.initial_voltage
        self._crossed = False

    def set_experiment_mode(self, value: bool) -> None:
        self.experiment_mode = bool(value)

    def set_voltage(self, voltage: float) -> bool:
        """Apply ``voltage``; returns True when this call fired the crossing event."""
        was_active = self.active
        self.voltage = float(voltage)
        if not self.experiment_mode or self._crossed:
            return False
        if self.active and not was_active:
            self._crossed = True
            self._emit(self.voltage)
            return True
        return False

    def sweep(self, voltages: Sequence[float]) -> Optional[float]:
        """Apply each voltage in turn; returns the voltage that fired, if any."""
        fired: Optional[float] = None
        for value in voltages:
            if self.set_voltage(value) and fired is None:
                fired = self.voltage
        return fired

    def close(self) -> None:
        self._listeners.clear()

    def _emit(self, voltage: float) -> None:
        logger.info("threshold crossed item=%s voltage=%.2f", self.item.color, voltage)
        for listener in list(self._listeners):
            listener(voltage)
        if self.bus is not None:
            self.bus.publish(
                topics.LAB_CIRCUIT_THRESHOLD_CROSSED,
                {"item": self.item.color, "index": self.selected_index, "voltage": voltage},
                source="lab_engine.circuit",
            )
