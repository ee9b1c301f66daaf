from __future__ import annotations

import random

import numpy as np
import pytest

from lab_engine.decay import (
    DecayExperiment,
    DecaySimulator,
    GaussianCountSampler,
    IsotopeProfile,
    PoissonCountSampler,
    SimulationConfigError,
    make_sampler,
)
from lab_engine.labs.half_life import ISOTOPES
from runtime_bus import RuntimeBus, topics


def _isotope(**overrides) -> IsotopeProfile:
    values = dict(isotope_id="test", name="Test", half_life_s=30.0, initial_activity=2000.0, background_rate=25.0)
    values.update(overrides)
    return IsotopeProfile(**values)


def test_activity_halves_each_half_life() -> None:
    simulator = DecaySimulator(_isotope())
    assert simulator.activity(0.0) == pytest.approx(2025.0)
    assert simulator.activity(30.0) == pytest.approx(1025.0)
    assert simulator.activity(60.0) == pytest.approx(525.0)


def test_noisy_counts_stay_near_expected_activity() -> None:
    simulator = DecaySimulator(_isotope(), GaussianCountSampler(random.Random(11)))
    # one-minute windows so the sampled count is directly in CPM
    samples = [simulator.sample_counts(30.0, interval_s=60.0) for _ in range(2000)]
    assert np.mean(samples) == pytest.approx(1025.0, abs=5.0)


def test_activity_is_non_increasing_and_floored_at_background() -> None:
    simulator = DecaySimulator(_isotope(half_life_s=45.0, initial_activity=2200.0))
    previous = simulator.activity(0.0)
    for t in range(1, 900):
        current = simulator.activity(float(t))
        assert current <= previous
        assert current >= 25.0
        previous = current


def test_negative_time_is_rejected() -> None:
    with pytest.raises(ValueError):
        DecaySimulator(_isotope()).activity(-1.0)


@pytest.mark.parametrize(
    "overrides",
    [
        {"half_life_s": 0.0},
        {"half_life_s": -5.0},
        {"initial_activity": -1.0},
        {"background_rate": -0.5},
    ],
)
def test_invalid_isotope_fails_fast(overrides) -> None:
    with pytest.raises(SimulationConfigError):
        DecaySimulator(_isotope(**overrides))


def test_configuration_error_is_a_value_error() -> None:
    assert issubclass(SimulationConfigError, ValueError)


def test_gaussian_sampler_mean_converges() -> None:
    sampler = GaussianCountSampler(random.Random(7))
    rate = 12.5
    samples = [sampler.sample(rate) for _ in range(20000)]
    assert all(isinstance(value, int) and value >= 0 for value in samples)
    assert np.mean(samples) == pytest.approx(rate, abs=0.15)


def test_poisson_sampler_mean_converges_for_small_rates() -> None:
    sampler = PoissonCountSampler(np.random.default_rng(3))
    samples = [sampler.sample(0.4) for _ in range(20000)]
    assert all(isinstance(value, int) and value >= 0 for value in samples)
    assert np.mean(samples) == pytest.approx(0.4, abs=0.03)


def test_samplers_return_zero_for_non_positive_rates() -> None:
    assert GaussianCountSampler(random.Random(1)).sample(0.0) == 0
    assert PoissonCountSampler(np.random.default_rng(1)).sample(-3.0) == 0


def test_make_sampler_rejects_unknown_kind() -> None:
    assert isinstance(make_sampler("gaussian", 1), GaussianCountSampler)
    assert isinstance(make_sampler("poisson", 1), PoissonCountSampler)
    with pytest.raises(SimulationConfigError):
        make_sampler("uniform")


def test_experiment_records_every_fifth_tick() -> None:
    experiment = DecayExperiment(ISOTOPES, sampler=GaussianCountSampler(random.Random(5)))
    measurements = experiment.run_for(50)

    assert [m.time for m in measurements] == [5.0 * i for i in range(1, 11)]
    for m in measurements:
        assert m.net == max(0.0, m.measured - 25.0)
    assert experiment.elapsed_s == 50


def test_isotope_change_resets_the_run() -> None:
    experiment = DecayExperiment(ISOTOPES, sampler=GaussianCountSampler(random.Random(5)))
    experiment.run_for(20)
    assert experiment.measurements

    experiment.select_isotope("unknown2")

    assert experiment.measurements == []
    assert experiment.elapsed_s == 0
    assert experiment.total_counts == 0
    assert experiment.isotope.half_life_s == 60.0
    with pytest.raises(KeyError):
        experiment.select_isotope("unknown9")


def test_experiment_clock_drives_ticks(timers) -> None:
    experiment = DecayExperiment(ISOTOPES, timers=timers, sampler=GaussianCountSampler(random.Random(2)))
    readings = []
    experiment.add_listener(readings.append)

    experiment.start()
    assert experiment.running
    timers.advance(5000)

    assert len(readings) == 5
    assert len(experiment.measurements) == 1

    experiment.select_isotope("unknown3")
    assert not experiment.running
    timers.advance(5000)
    assert len(readings) == 5


def test_experiment_without_clock_cannot_start() -> None:
    experiment = DecayExperiment(ISOTOPES)
    with pytest.raises(RuntimeError):
        experiment.start()


def test_experiment_rejects_bad_stride_and_empty_table() -> None:
    with pytest.raises(SimulationConfigError):
        DecayExperiment(ISOTOPES, sample_stride=0)
    with pytest.raises(SimulationConfigError):
        DecayExperiment({})


def test_export_describes_the_run() -> None:
    experiment = DecayExperiment(ISOTOPES, sampler=GaussianCountSampler(random.Random(9)), selected="unknown4")
    experiment.run_for(10)
    export = experiment.export()

    assert export["isotope_id"] == "unknown4"
    assert export["selected_isotope"] == "Unknown Isotope D"
    assert export["background_cpm"] == 25.0
    assert export["total_measurement_time"] == 10.0
    assert len(export["measurements"]) == 2
    assert set(export["measurements"][0]) == {"time", "total_cpm", "net_cpm", "counts"}


def test_ticks_are_published_on_the_bus() -> None:
    bus = RuntimeBus()
    seen = []
    bus.subscribe(topics.LAB_DECAY_TICK, lambda envelope: seen.append(envelope.payload))
    experiment = DecayExperiment(ISOTOPES, sampler=GaussianCountSampler(random.Random(4)), bus=bus)

    experiment.run_for(3)

    assert [payload["elapsed_s"] for payload in seen] == [1, 2, 3]
    assert all(payload["isotope_id"] == "unknown1" for payload in seen)
