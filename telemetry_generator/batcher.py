"""Bounded row-group batching of the merged record stream."""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from telemetry_generator.config import DEFAULT_DESTINATION, DEFAULT_ROW_GROUP_SIZE
from telemetry_generator.errors import Interrupted
from telemetry_generator.models import SensorSpec
from telemetry_generator.scheduler import MergedRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Batch:
    """A sealed, immutable run of records bound for one destination."""

    destination: str
    sequence: int
    records: Tuple[MergedRecord, ...]

    def __len__(self) -> int:
        return len(self.records)

    @property
    def min_timestamp_ns(self) -> int:
        return self.records[0].timestamp_ns

    @property
    def max_timestamp_ns(self) -> int:
        return self.records[-1].timestamp_ns


def _single_destination(spec: SensorSpec) -> str:
    return DEFAULT_DESTINATION


class Batcher:
    """
    Groups merged records into batches of at most ``row_group_size``.

    Each sensor is routed to a destination once, the first time it is seen,
    and every destination keeps its own open batch, so a batch only ever holds
    records of a single destination. The records held across all open batches
    never exceed ``row_group_size``: once they reach it the fullest open batch
    is sealed. Leftovers are sealed when the stream ends.

    When ``cancel`` is set and records remain, batching stops before the next
    one, the open batches are sealed and yielded, then Interrupted is raised.
    """

    def __init__(
        self,
        records: Iterable[MergedRecord],
        row_group_size: int = DEFAULT_ROW_GROUP_SIZE,
        route: Callable[[SensorSpec], str] = _single_destination,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        if row_group_size < 1:
            raise ValueError("row_group_size must be at least 1")
        self.records = records
        self.row_group_size = row_group_size
        self.route = route
        self.cancel = cancel
        self.sealed = 0
        self.peak_resident = 0
        self.records_seen = 0
        self._routes: Dict[str, str] = {}

    def _destination(self, record: MergedRecord) -> str:
        destination = self._routes.get(record.sensor_id)
        if destination is None:
            destination = self._routes[record.sensor_id] = self.route(record.spec)
        return destination

    def _seal(self, destination: str, records: List[MergedRecord]) -> Batch:
        batch = Batch(destination, self.sealed, tuple(records))
        self.sealed += 1
        logger.debug(
            "Sealed batch %d for %s: %d records", batch.sequence, destination, len(batch)
        )
        return batch

    def __iter__(self) -> Iterator[Batch]:
        size = self.row_group_size
        cancel = self.cancel
        open_batches: Dict[str, List[MergedRecord]] = {}
        resident = 0
        cancelled = False
        records = iter(self.records)

        record = next(records, None)
        while record is not None:
            # Only a stop with records left over counts as an interruption
            if cancel is not None and cancel.is_set():
                cancelled = True
                break
            self.records_seen += 1
            open_batches.setdefault(self._destination(record), []).append(record)
            resident += 1
            if resident > self.peak_resident:
                self.peak_resident = resident
            if resident >= size:
                fullest = max(open_batches, key=lambda name: len(open_batches[name]))
                pending = open_batches.pop(fullest)
                resident -= len(pending)
                yield self._seal(fullest, pending)
            record = next(records, None)

        for destination, pending in open_batches.items():
            if pending:
                yield self._seal(destination, pending)

        if cancelled:
            raise Interrupted(f"batching stopped after {self.records_seen} records")
