"""Geiger-counter decay simulation.

``DecaySimulator`` is the pure part: expected activity at a time and a noisy
count sampler. ``DecayExperiment`` adds the one-second simulation clock, the
sampling stride and run resets on top of it.

Activities are counts per minute (CPM). Each tick samples the per-second rate
``activity / 60`` and reports the reading back in CPM.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Protocol

import numpy as np

from runtime_bus import topics

from .timers import ScopedTimer, TimerFactory

logger = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60.0


class SimulationConfigError(ValueError):
    """Raised when simulation parameters cannot describe a physical sample."""


@dataclass(frozen=True)
class IsotopeProfile:
    isotope_id: str
    name: str
    half_life_s: float
    initial_activity: float
    background_rate: float = 25.0
    actual_name: str = ""


@dataclass(frozen=True)
class Measurement:
    time: float
    measured: float
    net: float
    counts: int = 0

    def to_dict(self) -> Dict[str, float]:
        return {"time": self.time, "measured": self.measured, "net": self.net, "counts": self.counts}


class CountSampler(Protocol):
    def sample(self, rate: float) -> int:  # pragma: no cover - interface
        ...


class GaussianCountSampler:
    """Normal approximation to a Poisson draw (mean = variance = rate).

    Not exact: it is symmetric where Poisson is skewed and needs clamping at
    zero for small rates. Good enough for classroom count rates; use
    ``PoissonCountSampler`` when the distribution itself matters.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def sample(self, rate: float) -> int:
        if rate <= 0:
            return 0
        z = self._rng.gauss(0.0, 1.0)
        value = rate + math.sqrt(rate) * z
        return max(0, int(math.floor(value + 0.5)))


class PoissonCountSampler:
    def __init__(self, rng: Optional[np.random.Generator] = None):
        self._rng = rng or np.random.default_rng()

    def sample(self, rate: float) -> int:
        if rate <= 0:
            return 0
        return int(self._rng.poisson(rate))


def make_sampler(kind: str, seed: Optional[int] = None) -> CountSampler:
    if kind == "poisson":
        return PoissonCountSampler(np.random.default_rng(seed))
    if kind == "gaussian":
        return GaussianCountSampler(random.Random(seed))
    raise SimulationConfigError(f"unknown sampler: {kind}")


class DecaySimulator:
    def __init__(self, isotope: IsotopeProfile, sampler: Optional[CountSampler] = None):
        if not isotope.half_life_s > 0:
            raise SimulationConfigError(
                f"half-life must be positive for {isotope.isotope_id}: {isotope.half_life_s}"
            )
        if isotope.initial_activity < 0:
            raise SimulationConfigError(
                f"initial activity must not be negative for {isotope.isotope_id}: {isotope.initial_activity}"
            )
        if isotope.background_rate < 0:
            raise SimulationConfigError(
                f"background rate must not be negative for {isotope.isotope_id}: {isotope.background_rate}"
            )
        self.isotope = isotope
        self.sampler = sampler or GaussianCountSampler()
        self.decay_constant = math.log(2) / isotope.half_life_s

    def activity(self, t: float) -> float:
        """Expected count rate (CPM) at ``t`` seconds, background included."""
        if t < 0:
            raise ValueError(f"time must be non-negative: {t}")
        source = self.isotope.initial_activity * math.exp(-self.decay_constant * t)
        return max(0.0, source) + self.isotope.background_rate

    def sample_counts(self, t: float, interval_s: float = 1.0) -> int:
        """Noisy integer count over ``interval_s`` seconds ending at ``t``."""
        rate = self.activity(t) * interval_s / SECONDS_PER_MINUTE
        return self.sampler.sample(rate)


@dataclass
class DecayReading:
    elapsed_s: int
    counts: int
    cpm: float
    net_cpm: float
    total_counts: int


class DecayExperiment:
    """Running Geiger-counter experiment over a table of isotopes."""

    def __init__(
        self,
        isotopes: Mapping[str, IsotopeProfile],
        *,
        timers: Optional[TimerFactory] = None,
        tick_ms: int = 1000,
        sample_stride: int = 5,
        sampler: Optional[CountSampler] = None,
        selected: Optional[str] = None,
        bus=None,
    ):
        if not isotopes:
            raise SimulationConfigError("isotope table is empty")
        if sample_stride <= 0:
            raise SimulationConfigError(f"sample stride must be positive: {sample_stride}")
        self._isotopes = dict(isotopes)
        self._sampler = sampler or GaussianCountSampler()
        self._tick_s = tick_ms / 1000.0
        self.sample_stride = sample_stride
        self.bus = bus
        self._listeners: List[Callable[[DecayReading], None]] = []
        self._clock: Optional[ScopedTimer] = None
        if timers is not None:
            self._clock = timers.repeating(tick_ms, self.tick)
        first = selected or next(iter(self._isotopes))
        self._select(first)

    # --- selection / reset ---------------------------------------------------
    @property
    def isotope(self) -> IsotopeProfile:
        return self.simulator.isotope

    @property
    def isotopes(self) -> Dict[str, IsotopeProfile]:
        return dict(self._isotopes)

    def select_isotope(self, isotope_id: str) -> None:
        if isotope_id not in self._isotopes:
            raise KeyError(f"unknown isotope: {isotope_id}")
        self._select(isotope_id)

    def _select(self, isotope_id: str) -> None:
        self.simulator = DecaySimulator(self._isotopes[isotope_id], self._sampler)
        self.selected_id = isotope_id
        self.reset()

    def reset(self) -> None:
        self.pause()
        self.elapsed_s = 0
        self.total_counts = 0
        self.current_cpm = 0.0
        self.measurements: List[Measurement] = []

    # --- clock ---------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._clock is not None and self._clock.is_active()

    def start(self) -> None:
        if self._clock is None:
            raise RuntimeError("experiment has no clock; drive it with tick()")
        self._clock.start()

    def pause(self) -> None:
        if self._clock is not None:
            self._clock.stop()

    def close(self) -> None:
        self.pause()
        self._listeners.clear()

    def add_listener(self, listener: Callable[[DecayReading], None]) -> None:
        self._listeners.append(listener)

    def tick(self) -> DecayReading:
        """Advance the experiment by one simulated tick."""
        self.elapsed_s += 1
        t = self.elapsed_s * self._tick_s
        counts = self.simulator.sample_counts(t, self._tick_s)
        background = self.isotope.background_rate
        cpm = counts * SECONDS_PER_MINUTE / self._tick_s
        self.current_cpm = cpm
        self.total_counts += counts
        net = max(0.0, cpm - background)
        if self.elapsed_s % self.sample_stride == 0:
            self.measurements.append(Measurement(time=t, measured=cpm, net=net, counts=counts))
        reading = DecayReading(
            elapsed_s=self.elapsed_s,
            counts=counts,
            cpm=cpm,
            net_cpm=net,
            total_counts=self.total_counts,
        )
        for listener in list(self._listeners):
            listener(reading)
        if self.bus is not None:
            self.bus.publish(
                topics.LAB_DECAY_TICK,
                {"isotope_id": self.selected_id, "elapsed_s": self.elapsed_s, "cpm": cpm, "net_cpm": net},
                source="lab_engine.decay",
            )
        return reading

    def run_for(self, ticks: int) -> List[Measurement]:
        for _ in range(max(0, int(ticks))):
            self.tick()
        return list(self.measurements)

    # --- export --------------------------------------------------------------
    def export(self) -> Dict[str, object]:
        rows = [
            {"time": m.time, "total_cpm": m.measured, "net_cpm": m.net, "counts": m.counts}
            for m in self.measurements
        ]
        average = sum(m.measured for m in self.measurements) / len(self.measurements) if self.measurements else 0.0
        return {
            "isotope_id": self.selected_id,
            "selected_isotope": self.isotope.name,
            "background_cpm": self.isotope.background_rate,
            "measurements": rows,
            "total_measurement_time": self.elapsed_s * self._tick_s,
            "average_cpm": round(average, 1),
        }
