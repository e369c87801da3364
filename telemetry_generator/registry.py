"""Active sensor sources of a run, each with a one-sample lookahead."""

import heapq
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from telemetry_generator.errors import ConfigError
from telemetry_generator.models import RunConfig, SensorSpec
from telemetry_generator.sources import Sample, SensorSource

logger = logging.getLogger(__name__)

# (timestamp_ns, sensor_id) is unique per entry, so the heap never compares
# the Sample or the iterator.
_Entry = Tuple[int, str, Sample, Iterator[Sample]]


class SensorRegistry:
    """
    Holds the sources of a run and the next pending sample of each.

    The pending samples live in a binary heap keyed by (timestamp, sensor_id):
    peeking is O(1), advancing is O(log S), and memory is one sample per source.
    """

    def __init__(self, sources: Iterable[SensorSource]) -> None:
        self._heap: List[_Entry] = []
        self._specs: Dict[str, SensorSpec] = {}
        for source in sources:
            sensor_id = source.spec.sensor_id
            if sensor_id in self._specs:
                raise ConfigError(f"duplicate sensor_id {sensor_id!r}")
            self._specs[sensor_id] = source.spec
            self._refill(iter(source))

    @classmethod
    def from_config(cls, config: RunConfig) -> "SensorRegistry":
        sources = [
            SensorSource(spec, config.duration, config.seed)
            for spec in config.sensor_specs()
        ]
        logger.debug("Registry built with %d sources", len(sources))
        return cls(sources)

    def _refill(self, samples: Iterator[Sample]) -> None:
        sample = next(samples, None)
        if sample is not None:
            heapq.heappush(self._heap, (sample.timestamp_ns, sample.sensor_id, sample, samples))

    def __len__(self) -> int:
        """Number of sources that still have a pending sample."""
        return len(self._heap)

    def spec(self, sensor_id: str) -> SensorSpec:
        return self._specs[sensor_id]

    @property
    def specs(self) -> List[SensorSpec]:
        return list(self._specs.values())

    def peek_timestamp(self) -> Optional[int]:
        """Earliest pending timestamp across all sources, or None once exhausted."""
        if not self._heap:
            return None
        return self._heap[0][0]

    def advance(self) -> Sample:
        """Pop the earliest pending sample (lowest sensor_id on ties) and refill its source."""
        if not self._heap:
            raise IndexError("advance() on an exhausted registry")
        _, _, sample, samples = self._heap[0]
        nxt = next(samples, None)
        if nxt is None:
            heapq.heappop(self._heap)
        else:
            heapq.heapreplace(self._heap, (nxt.timestamp_ns, nxt.sensor_id, nxt, samples))
        return sample
