"""Tests for sensor sources and value generators."""

import math
from fractions import Fraction

import pytest

from telemetry_generator.catalog import ROCKET_SENSORS, default_sensors
from telemetry_generator.errors import GenerationError
from telemetry_generator.models import ConstantLevel, RandomWalk, SensorSpec, SineWave
from telemetry_generator.sources import (
    SensorSource,
    flight_envelope,
    sample_count,
    timestamp_ns,
)


def make_spec(sensor_id="s1", rate=10, **kwargs):
    return SensorSpec(sensor_id=sensor_id, sensor_type="test", sample_rate=rate, **kwargs)


def test_sample_count_rounds_up():
    """Test that a partial trailing interval still gets a sample."""
    assert sample_count(Fraction(10), Fraction(1)) == 10
    assert sample_count(Fraction(5, 2), Fraction(1)) == 3
    assert sample_count(Fraction(1, 10), Fraction(3)) == 1
    assert sample_count(Fraction(10), Fraction(1000)) == 10_000


def test_timestamps_are_exact_for_rational_rates():
    """Test that timestamps come from the index, not from accumulated periods."""
    rate = Fraction(3)
    assert [timestamp_ns(i, rate) for i in range(4)] == [
        0,
        333_333_333,
        666_666_666,
        1_000_000_000,
    ]
    # 1/3 Hz: one sample every 3 s
    assert timestamp_ns(2, Fraction(1, 3)) == 6_000_000_000
    # No drift after a million samples at 1 kHz
    assert timestamp_ns(1_000_000, Fraction(1000)) == 1_000 * 1_000_000_000


def test_source_yields_expected_samples():
    """Test count, indices and spacing of a source."""
    source = SensorSource(make_spec(rate=1000), Fraction(2))
    samples = list(source)

    assert len(source) == 2_000
    assert len(samples) == 2_000
    assert [s.index for s in samples[:3]] == [0, 1, 2]
    assert samples[0].timestamp_ns == 0
    assert samples[-1].timestamp_ns == 1_999_000_000
    assert all(s.sensor_id == "s1" for s in samples)
    gaps = {b.timestamp_ns - a.timestamp_ns for a, b in zip(samples, samples[1:])}
    assert gaps == {1_000_000}


def test_source_is_restartable():
    """Test that iterating twice replays the identical sequence."""
    spec = make_spec(generator=RandomWalk(step=2.0, noise=0.5))
    source = SensorSource(spec, Fraction(5), seed=7)

    assert list(source) == list(source)
    assert list(SensorSource(spec, Fraction(5), seed=7)) == list(source)


def test_seed_changes_values():
    """Test that a different seed gives a different noisy sequence."""
    spec = make_spec(generator=ConstantLevel(offset=1.0, noise=1.0))
    first = [s.value for s in SensorSource(spec, Fraction(1), seed=1)]
    second = [s.value for s in SensorSource(spec, Fraction(1), seed=2)]

    assert first != second


def test_sensors_with_same_seed_are_independent():
    """Test that two sensors sharing a run seed do not share a noise stream."""
    generator = ConstantLevel(noise=1.0)
    a = [s.value for s in SensorSource(make_spec("a", generator=generator), Fraction(1))]
    b = [s.value for s in SensorSource(make_spec("b", generator=generator), Fraction(1))]

    assert a != b


def test_constant_without_noise():
    spec = make_spec(generator=ConstantLevel(offset=42.0))
    assert {s.value for s in SensorSource(spec, Fraction(1))} == {42.0}


def test_sine_wave_values():
    """Test a 1 Hz sine sampled at 4 Hz."""
    spec = make_spec(rate=4, generator=SineWave(amplitude=2.0, frequency_hz=1.0))
    values = [s.value for s in SensorSource(spec, Fraction(1))]

    assert values[0] == pytest.approx(0.0)
    assert values[1] == pytest.approx(2.0)
    assert values[2] == pytest.approx(0.0, abs=1e-9)
    assert values[3] == pytest.approx(-2.0)


def test_random_walk_starts_at_offset():
    spec = make_spec(generator=RandomWalk(offset=5.0, step=1.0))
    samples = list(SensorSource(spec, Fraction(1)))

    assert samples[0].value == 5.0
    assert len({s.value for s in samples}) > 1


def test_vector_sensor_values():
    """Test that vector sensors yield fixed-width tuples."""
    spec = make_spec(value_width=3, generator=SineWave(amplitude=1.0, frequency_hz=0.0))
    samples = list(SensorSource(spec, Fraction(1)))

    assert spec.is_vector
    assert all(isinstance(s.value, tuple) and len(s.value) == 3 for s in samples)
    # Components are phase-shifted from each other
    assert len(set(samples[0].value)) == 3


def test_non_finite_value_raises_generation_error():
    """Test that an overflowing generator is reported with sensor and index."""
    spec = make_spec(
        "hot",
        rate=4,
        generator=SineWave(offset=1e308, amplitude=1e308, frequency_hz=1.0),
    )

    with pytest.raises(GenerationError) as excinfo:
        list(SensorSource(spec, Fraction(1)))

    assert excinfo.value.sensor_id == "hot"
    assert excinfo.value.index == 1


def test_flight_envelope_shape():
    """Test the throttle envelope: ramp up, full burn, staging gap, cutoff."""
    assert flight_envelope(0.0) == 0.0
    assert flight_envelope(0.3) == 1.0
    assert flight_envelope(0.52) == 0.0
    assert flight_envelope(0.99) < 1.0
    assert all(0.0 <= flight_envelope(p / 100) <= 1.0 for p in range(100))


def test_default_catalog_generates_finite_values():
    """Test that every catalogue sensor produces finite values."""
    specs = default_sensors(Fraction(10))

    assert len(specs) == len(ROCKET_SENSORS)
    assert len({spec.sensor_id for spec in specs}) == len(specs)
    for spec in specs:
        for sample in SensorSource(spec, Fraction(2)):
            values = sample.value if isinstance(sample.value, tuple) else (sample.value,)
            assert all(math.isfinite(v) for v in values)
