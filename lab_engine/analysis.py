from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from .circuit import ELEMENTARY_CHARGE, PLANCK_CONSTANT


@dataclass(frozen=True)
class HalfLifeFit:
    decay_constant: float
    half_life_s: float
    intercept: float
    correlation: float
    points: int


@dataclass(frozen=True)
class PlanckFit:
    slope: float
    intercept: float
    plancks_constant: float
    percent_error: float
    points: int


def _measurement_pairs(rows: Iterable[Mapping[str, object]], x_key: str, y_key: str) -> Tuple[np.ndarray, np.ndarray]:
    xs, ys = [], []
    for row in rows:
        x, y = row.get(x_key), row.get(y_key)
        if isinstance(x, (int, float)) and isinstance(y, (int, float)):
            xs.append(float(x))
            ys.append(float(y))
    return np.asarray(xs), np.asarray(ys)


def fit_half_life(rows: Sequence[Mapping[str, object]], *, net_key: str = "net_cpm") -> Optional[HalfLifeFit]:
    """Linearize ``ln(net) = ln(A0) - λt`` and fit a line.

    Rows with zero net activity cannot be linearized and are skipped. Returns
    None when fewer than two usable points remain or the slope is not a decay.
    """
    times, net = _measurement_pairs(rows, "time", net_key)
    usable = net > 0
    times, net = times[usable], net[usable]
    if times.size < 2 or np.ptp(times) == 0:
        return None
    log_net = np.log(net)
    slope, intercept = np.polyfit(times, log_net, 1)
    if slope >= 0:
        return None
    correlation = float(np.corrcoef(times, log_net)[0, 1])
    decay_constant = float(-slope)
    return HalfLifeFit(
        decay_constant=decay_constant,
        half_life_s=math.log(2) / decay_constant,
        intercept=float(intercept),
        correlation=correlation,
        points=int(times.size),
    )


def fit_plancks_constant(rows: Sequence[Mapping[str, object]]) -> Optional[PlanckFit]:
    """Slope of threshold voltage against frequency gives ``h = e·slope``."""
    freqs, volts = _measurement_pairs(rows, "frequency", "voltage")
    if freqs.size < 2 or np.ptp(freqs) == 0:
        return None
    slope, intercept = np.polyfit(freqs, volts, 1)
    h = float(slope) * ELEMENTARY_CHARGE
    return PlanckFit(
        slope=float(slope),
        intercept=float(intercept),
        plancks_constant=h,
        percent_error=abs(h - PLANCK_CONSTANT) / PLANCK_CONSTANT * 100.0,
        points=int(freqs.size),
    )
