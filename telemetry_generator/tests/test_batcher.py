"""Tests for row-group batching."""

import threading
from fractions import Fraction

import pytest

from telemetry_generator.batcher import Batcher
from telemetry_generator.errors import Interrupted
from telemetry_generator.models import SensorSpec
from telemetry_generator.registry import SensorRegistry
from telemetry_generator.scheduler import MergeScheduler
from telemetry_generator.sources import SensorSource


def merged(*rates, duration=1):
    sources = [
        SensorSource(
            SensorSpec(sensor_id=f"s{i}", sensor_type="test", sample_rate=rate),
            Fraction(duration),
        )
        for i, rate in enumerate(rates)
    ]
    return MergeScheduler(SensorRegistry(sources))


def test_batches_are_bounded_and_ordered():
    """Test batch sizes, sequence numbers and that order is preserved."""
    batcher = Batcher(merged(100, 50), row_group_size=40)
    batches = list(batcher)

    assert [len(b) for b in batches] == [40, 40, 40, 30]
    assert [b.sequence for b in batches] == [0, 1, 2, 3]
    assert batcher.peak_resident <= 40
    timestamps = [r.timestamp_ns for b in batches for r in b.records]
    assert timestamps == sorted(timestamps)
    assert batches[0].min_timestamp_ns <= batches[0].max_timestamp_ns <= batches[1].min_timestamp_ns


def test_single_partial_batch():
    batches = list(Batcher(merged(5), row_group_size=100))

    assert len(batches) == 1
    assert len(batches[0]) == 5


def test_routing_keeps_destinations_apart():
    """Test that every batch holds records of one destination only."""
    batcher = Batcher(
        merged(10, 20),
        row_group_size=8,
        route=lambda spec: "even" if spec.sensor_id == "s0" else "odd",
    )
    batches = list(batcher)

    by_destination = {}
    for batch in batches:
        ids = {r.sensor_id for r in batch.records}
        assert len(ids) == 1
        by_destination.setdefault(batch.destination, 0)
        by_destination[batch.destination] += len(batch)
    assert by_destination == {"even": 10, "odd": 20}
    assert all(len(b) <= 8 for b in batches)
    assert batcher.peak_resident <= 8


def test_route_called_once_per_sensor():
    calls = []

    def route(spec):
        calls.append(spec.sensor_id)
        return "all"

    list(Batcher(merged(10, 10), row_group_size=3, route=route))

    assert sorted(calls) == ["s0", "s1"]


def test_cancel_seals_open_batch_then_interrupts():
    """Test that cancellation yields what was pulled and then raises Interrupted."""
    cancel = threading.Event()
    batcher = Batcher(merged(1000), row_group_size=100, cancel=cancel)
    batches = iter(batcher)

    first = next(batches)
    assert len(first) == 100
    cancel.set()
    # Nothing was pulled since the first batch was sealed
    with pytest.raises(Interrupted):
        next(batches)
    assert batcher.records_seen == 100


def test_cancel_before_start():
    cancel = threading.Event()
    cancel.set()
    batcher = Batcher(merged(10), row_group_size=4, cancel=cancel)

    with pytest.raises(Interrupted):
        list(batcher)
    assert batcher.records_seen == 0
    assert batcher.sealed == 0


def test_invalid_row_group_size():
    with pytest.raises(ValueError):
        Batcher(merged(1), row_group_size=0)


def test_total_resident_bounded_across_destinations():
    """Test that records held across all open batches never exceed the row group size."""
    batcher = Batcher(merged(10, 10), row_group_size=8, route=lambda spec: spec.sensor_id)
    batches = list(batcher)

    assert batcher.peak_resident == 8
    assert sum(len(b) for b in batches) == 20
    assert all(len({r.sensor_id for r in b.records}) == 1 for b in batches)
    # The fullest open batch is the one sealed
    assert [(b.destination, len(b)) for b in batches[:2]] == [("s0", 4), ("s1", 6)]


def test_stop_after_last_record_is_not_an_interruption():
    """Test that a stop arriving after the last record was batched still completes."""
    cancel = threading.Event()
    batcher = Batcher(merged(3), row_group_size=3, cancel=cancel)

    batches = []
    for batch in batcher:
        batches.append(batch)
        cancel.set()

    assert [len(b) for b in batches] == [3]
    assert batcher.records_seen == 3
