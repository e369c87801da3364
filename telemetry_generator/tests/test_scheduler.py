"""Tests for the sensor registry and the time-ordered merge."""

from fractions import Fraction

import pytest

from telemetry_generator.errors import ConfigError
from telemetry_generator.models import RunConfig, SensorSpec
from telemetry_generator.registry import SensorRegistry
from telemetry_generator.scheduler import MergeScheduler
from telemetry_generator.sources import SensorSource


def make_source(sensor_id, rate, duration=1, sensor_type="test"):
    spec = SensorSpec(sensor_id=sensor_id, sensor_type=sensor_type, sample_rate=rate)
    return SensorSource(spec, Fraction(duration))


def test_registry_rejects_duplicate_ids():
    with pytest.raises(ConfigError):
        SensorRegistry([make_source("a", 1), make_source("a", 2)])


def test_registry_peek_and_advance():
    """Test that advance pops the earliest sample and refills its source."""
    registry = SensorRegistry([make_source("b", 2), make_source("a", 1)])

    assert len(registry) == 2
    assert registry.peek_timestamp() == 0
    first = registry.advance()
    assert (first.sensor_id, first.timestamp_ns) == ("a", 0)
    # "a" has a single sample at 1 Hz over 1 s, so only "b" is left
    assert len(registry) == 1
    assert registry.advance().sensor_id == "b"
    assert registry.peek_timestamp() == 500_000_000
    registry.advance()
    assert len(registry) == 0
    assert registry.peek_timestamp() is None
    with pytest.raises(IndexError):
        registry.advance()


def test_merge_order_and_tie_break():
    """Test non-decreasing timestamps with ties in ascending sensor_id order."""
    registry = SensorRegistry(
        [make_source("c", 2), make_source("a", 4), make_source("b", 2)]
    )
    records = list(MergeScheduler(registry))

    assert [(r.timestamp_ns, r.sensor_id) for r in records] == [
        (0, "a"),
        (0, "b"),
        (0, "c"),
        (250_000_000, "a"),
        (500_000_000, "a"),
        (500_000_000, "b"),
        (500_000_000, "c"),
        (750_000_000, "a"),
    ]


def test_merge_is_deterministic():
    def merged():
        registry = SensorRegistry([make_source("x", 7, 3), make_source("y", 5, 3)])
        return [(r.timestamp_ns, r.sensor_id, r.value) for r in MergeScheduler(registry)]

    assert merged() == merged()


def test_mixed_rate_scenario():
    """Test a 1 Hz and a 1 kHz sensor over 10 seconds."""
    registry = SensorRegistry(
        [
            make_source("A", 1, 10, sensor_type="slow"),
            make_source("B", 1000, 10, sensor_type="fast"),
        ]
    )
    records = list(MergeScheduler(registry))
    timestamps = [r.timestamp_ns for r in records]

    assert len(records) == 10_010
    assert timestamps[0] == 0
    assert timestamps == sorted(timestamps)
    assert records[-1].sensor_id == "B"
    assert records[-1].timestamp_ns == 9_999_000_000
    assert {r.sensor_type for r in records} == {"slow", "fast"}
    assert sum(1 for r in records if r.sensor_id == "A") == 10


def test_limit_truncates():
    """Test that a record limit stops the merge and flags truncation."""
    registry = SensorRegistry([make_source("a", 100)])
    scheduler = MergeScheduler(registry, limit=10)
    records = list(scheduler)

    assert len(records) == 10
    assert scheduler.emitted == 10
    assert scheduler.truncated


def test_limit_not_reached():
    registry = SensorRegistry([make_source("a", 5)])
    scheduler = MergeScheduler(registry, limit=10)

    assert len(list(scheduler)) == 5
    assert not scheduler.truncated


def test_registry_from_config_uses_catalog():
    """Test that a config without sensors falls back to the rocket catalogue."""
    config = RunConfig(duration=1, sample_rate_hz=2)
    registry = SensorRegistry.from_config(config)

    assert len(registry) == len(config.sensor_specs())
    assert sum(1 for _ in MergeScheduler(registry)) == config.estimated_records
