"""Streaming generation-and-write pipeline.

Generation (registry -> merge scheduler -> batcher) and writing (columnar
writer) run as two asyncio tasks joined by a bounded queue of sealed batches:
- the generation task fills batches in a worker thread and blocks on the full
  queue, so a slow disk throttles generation instead of growing memory
- the writer task drains the queue and appends row groups in a worker thread
- one cancel event stops generation at the next record; open batches are
  sealed, queued batches are written, and every file is finalized
"""

import asyncio
import logging
import os
import signal
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional, Union

from telemetry_generator.batcher import Batch, Batcher
from telemetry_generator.errors import ConfigError, Interrupted, WriteError
from telemetry_generator.models import (
    FileSummary,
    RunConfig,
    RunSummary,
    Termination,
    format_rate,
    load_config,
)
from telemetry_generator.registry import SensorRegistry
from telemetry_generator.scheduler import MergeScheduler
from telemetry_generator.storage import ColumnarWriter, metadata_csv_path, write_metadata_csv

logger = logging.getLogger(__name__)

BatchCallback = Callable[["RunState", Batch], None]

_END = object()

METADATA_HEADERS = (
    "launch_id",
    "launch_time",
    "destination",
    "vehicle_type",
    "engine_type",
    "sample_rates_hz",
    "duration_s",
    "records",
    "row_groups",
    "termination",
)


@dataclass
class RunState:
    """Mutable state scoped to one run; nothing in the pipeline is process-wide."""

    config: RunConfig
    launch_time: Optional[datetime] = None
    cancel: threading.Event = field(default_factory=threading.Event)
    started_at: float = field(default_factory=time.perf_counter)
    records_generated: int = 0
    records_written: int = 0
    batches_written: int = 0
    files: List[FileSummary] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.launch_time is None:
            self.launch_time = self.config.launch_time

    @classmethod
    def for_config(cls, config: RunConfig) -> "RunState":
        return cls(config=config)

    def request_stop(self) -> None:
        """Ask the run to stop early; safe to call from any thread or signal handler."""
        if not self.cancel.is_set():
            logger.info("Stop requested for launch %s", self.config.launch_id)
        self.cancel.set()

    @property
    def stop_requested(self) -> bool:
        return self.cancel.is_set()

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started_at


def prepare_destinations(paths: Iterable[Path]) -> None:
    """Make sure every output path can be written before anything is generated."""
    for path in paths:
        if path.is_dir():
            raise ConfigError(f"output path {path} is a directory")
        parent = path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"cannot create output directory {parent}: {e}") from e
        if not os.access(parent, os.W_OK):
            raise ConfigError(f"output directory {parent} is not writable")
        if path.exists() and not os.access(path, os.W_OK):
            raise ConfigError(f"output path {path} is not writable")


class _CountingRecords:
    """Counts records as they are pulled from the merge scheduler."""

    def __init__(self, scheduler: MergeScheduler, state: RunState) -> None:
        self.scheduler = scheduler
        self.state = state

    def __iter__(self) -> Iterator[Any]:
        state = self.state
        for record in self.scheduler:
            state.records_generated += 1
            yield record


async def _generate(batches: Iterator[Batch], queue: asyncio.Queue) -> bool:
    """
    Pull sealed batches in a worker thread and hand them to the writer.

    Returns:
        bool: True if generation was interrupted
    """
    interrupted = False
    try:
        while True:
            try:
                batch = await asyncio.to_thread(next, batches, None)
            except Interrupted as e:
                logger.info("Generation interrupted: %s", e)
                interrupted = True
                break
            if batch is None:
                break
            await queue.put(batch)
    finally:
        await queue.put(_END)
    return interrupted


async def _drain(
    writer: ColumnarWriter,
    queue: asyncio.Queue,
    state: RunState,
    on_batch_written: Optional[BatchCallback],
) -> None:
    """
    Append queued batches until generation signals the end.

    After a write failure the remaining batches are still taken off the queue
    (and dropped) so generation never blocks on a dead consumer.
    """
    failure: Optional[Exception] = None
    while True:
        batch = await queue.get()
        if batch is _END:
            break
        if failure is not None:
            continue
        try:
            await asyncio.to_thread(writer.append, batch)
            state.records_written += len(batch)
            state.batches_written += 1
            if on_batch_written is not None:
                on_batch_written(state, batch)
        except Exception as e:
            logger.error("Write stage failed, stopping generation: %s", e)
            failure = e
            state.request_stop()
    if failure is not None:
        raise failure


def _log_run_start(config: RunConfig) -> None:
    specs = config.sensor_specs()
    rates = sorted({spec.sample_rate for spec in specs})
    logger.info(
        "Starting launch %s: %d sensors at %s Hz for %s s",
        config.launch_id,
        len(specs),
        ", ".join(format_rate(rate) for rate in rates),
        format_rate(config.duration),
    )
    estimated = config.estimated_records
    logger.info("Estimated number of data-points: %s", f"{estimated:,}")
    if config.max_rows is not None and estimated > config.max_rows:
        logger.warning(
            "Estimated points (%s) exceed max rows (%s); output will be truncated",
            f"{estimated:,}",
            f"{config.max_rows:,}",
        )


def _write_sidecars(config: RunConfig, state: RunState, termination: Termination) -> None:
    specs = config.sensor_specs()
    for summary in state.files:
        rates = sorted(
            {spec.sample_rate for spec in specs if config.destination_for(spec) == summary.destination}
        )
        row = (
            config.launch_id,
            state.launch_time.isoformat(),
            summary.destination,
            config.vehicle_type,
            config.engine_type,
            ";".join(format_rate(rate) for rate in rates),
            format_rate(config.duration),
            summary.records,
            len(summary.row_groups),
            termination.value,
        )
        path = metadata_csv_path(Path(summary.path))
        try:
            write_metadata_csv(path, METADATA_HEADERS, [row])
        except OSError as e:
            raise WriteError(path, str(e)) from e
        logger.debug("Metadata written to %s", path)


async def run_async(
    config: Union[RunConfig, Mapping[str, Any]],
    *,
    state: Optional[RunState] = None,
    on_batch_written: Optional[BatchCallback] = None,
    handle_signals: bool = False,
) -> RunSummary:
    """
    Generate and write one run.

    Returns:
        RunSummary: per-file record counts, wall-clock time and termination

    Raises:
        ConfigError: invalid configuration; no file is created
        GenerationError: a sensor produced a non-finite value
        WriteError: appending or finalizing failed
    """
    config = load_config(config)
    if state is None:
        state = RunState.for_config(config)

    destinations = config.destinations()
    prepare_destinations(destinations.values())
    _log_run_start(config)

    registry = SensorRegistry.from_config(config)
    scheduler = MergeScheduler(registry, limit=config.max_rows)
    batcher = Batcher(
        _CountingRecords(scheduler, state),
        config.row_group_size,
        route=config.destination_for,
        cancel=state.cancel,
    )
    writer = ColumnarWriter.from_config(config, state.launch_time)
    writer.open()

    loop = asyncio.get_running_loop()
    installed = _install_signal_handlers(loop, state) if handle_signals else []

    queue: asyncio.Queue = asyncio.Queue(maxsize=config.channel_capacity)
    producer = asyncio.create_task(_generate(iter(batcher), queue))
    consumer = asyncio.create_task(_drain(writer, queue, state, on_batch_written))
    stages = asyncio.gather(producer, consumer, return_exceptions=True)
    cancelled = False
    close_error: Optional[WriteError] = None
    try:
        while True:
            try:
                outcomes = await asyncio.shield(stages)
                break
            except asyncio.CancelledError:
                if stages.done():
                    raise
                # Both stages wind down through the cancel event, however
                # often the caller cancels
                cancelled = True
                state.request_stop()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        try:
            state.files = writer.close()
        except WriteError as e:
            state.files = writer.summaries()
            close_error = e

    generated, written = outcomes

    if cancelled:
        raise asyncio.CancelledError()
    for outcome in (written, generated):
        if isinstance(outcome, BaseException):
            logger.error("Launch %s failed: %s", config.launch_id, outcome)
            raise outcome
    if close_error is not None:
        raise close_error

    if generated:
        termination = Termination.INTERRUPTED
    elif scheduler.truncated:
        termination = Termination.ROW_LIMIT
    else:
        termination = Termination.COMPLETED

    if config.write_metadata_csv:
        _write_sidecars(config, state, termination)

    summary = RunSummary(
        launch_id=config.launch_id,
        files=state.files,
        records_written=sum(f.records for f in state.files),
        wall_clock_seconds=state.elapsed,
        termination=termination,
    )
    logger.info(
        "Launch %s %s: %s records in %.2fs",
        config.launch_id,
        termination.value,
        f"{summary.records_written:,}",
        summary.wall_clock_seconds,
    )
    return summary


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, state: RunState) -> List[int]:
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, state.request_stop)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            # Only the main thread of a Unix event loop can take signals
            logger.debug("Signal %s not handled: %s", sig, e)
            continue
        installed.append(sig)
    return installed


def run(
    config: Union[RunConfig, Mapping[str, Any]],
    *,
    state: Optional[RunState] = None,
    on_batch_written: Optional[BatchCallback] = None,
) -> RunSummary:
    """Synchronous entry point; SIGINT/SIGTERM end the run early with valid files."""
    return asyncio.run(
        run_async(config, state=state, on_batch_written=on_batch_written, handle_signals=True)
    )


__all__ = [
    "RunState",
    "prepare_destinations",
    "run",
    "run_async",
]
