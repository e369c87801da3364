"""K-way merge of per-sensor sample streams into one time-ordered record stream."""

from dataclasses import dataclass
from typing import Iterator, Optional

from telemetry_generator.models import SensorSpec
from telemetry_generator.registry import SensorRegistry
from telemetry_generator.sources import Sample, Value


@dataclass(frozen=True)
class MergedRecord:
    """A sample tagged with its sensor spec, in global output order."""

    spec: SensorSpec
    sample: Sample

    @property
    def timestamp_ns(self) -> int:
        return self.sample.timestamp_ns

    @property
    def sensor_id(self) -> str:
        return self.spec.sensor_id

    @property
    def sensor_type(self) -> str:
        return self.spec.sensor_type

    @property
    def value(self) -> Value:
        return self.sample.value


class MergeScheduler:
    """
    Iterates the registry in (timestamp, sensor_id) order.

    Output is non-decreasing in timestamp; equal timestamps come out in
    ascending sensor_id order. ``limit`` caps the number of records emitted,
    after which ``truncated`` is set if samples were left over.
    """

    def __init__(self, registry: SensorRegistry, limit: Optional[int] = None) -> None:
        self.registry = registry
        self.limit = limit
        self.emitted = 0
        self.truncated = False

    def __iter__(self) -> Iterator[MergedRecord]:
        registry = self.registry
        limit = self.limit
        while len(registry):
            if limit is not None and self.emitted >= limit:
                self.truncated = True
                return
            sample = registry.advance()
            self.emitted += 1
            yield MergedRecord(registry.spec(sample.sensor_id), sample)
