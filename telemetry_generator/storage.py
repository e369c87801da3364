"""Data storage service for writing telemetry batches as Parquet row groups."""

import csv
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import polars as pl
import pyarrow as pa
import pyarrow.parquet as pq

from telemetry_generator.batcher import Batch
from telemetry_generator.config import (
    METADATA_KEYS,
    METADATA_SUFFIX,
    NS_PER_SECOND,
    PARQUET_COMPRESSION,
    PARTIAL_SUFFIX,
)
from telemetry_generator.errors import WriteError
from telemetry_generator.models import FileSummary, RowGroupStats, RunConfig

logger = logging.getLogger(__name__)

TIMESTAMP_TYPE = pa.timestamp("ns", tz="UTC")
VECTOR_TYPE = pa.list_(pa.float64())
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def epoch_ns(moment: datetime) -> int:
    """Integer nanoseconds since the Unix epoch; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = moment - EPOCH
    return (delta.days * 86_400 + delta.seconds) * NS_PER_SECOND + delta.microseconds * 1_000


def build_schema(vector: bool = False, metadata: Optional[Mapping[str, str]] = None) -> pa.Schema:
    """Arrow schema of an output file; ``value`` is a list column when the file holds a vector sensor."""
    return pa.schema(
        [
            pa.field("timestamp", TIMESTAMP_TYPE, nullable=False),
            pa.field("time_since_launch_ns", pa.int64(), nullable=False),
            pa.field("sensor_type", pa.string(), nullable=False),
            pa.field("sensor_id", pa.string(), nullable=False),
            pa.field("value", VECTOR_TYPE if vector else pa.float64(), nullable=False),
        ],
        metadata=dict(metadata or {}),
    )


def batch_to_table(batch: Batch, schema: pa.Schema, launch_time_ns: int = 0) -> pa.Table:
    """Convert a sealed batch to column-major Arrow arrays."""
    records = batch.records
    offsets = [record.sample.timestamp_ns for record in records]
    value_type = schema.field("value").type
    if pa.types.is_list(value_type):
        values: List[Any] = [
            list(v) if isinstance(v, tuple) else [v]
            for v in (record.sample.value for record in records)
        ]
    else:
        values = [record.sample.value for record in records]

    arrays = [
        pa.array([launch_time_ns + offset for offset in offsets], type=TIMESTAMP_TYPE),
        pa.array(offsets, type=pa.int64()),
        pa.array([record.spec.sensor_type for record in records], type=pa.string()),
        pa.array([record.spec.sensor_id for record in records], type=pa.string()),
        pa.array(values, type=value_type),
    ]
    return pa.Table.from_arrays(arrays, schema=schema)


class OutputFile:
    """
    One Parquet file and the statistics of the row groups appended to it.

    Data goes to ``<path>.partial`` until finalize() writes the footer and
    renames it into place, so the final path never holds a half-written file.
    """

    def __init__(self, destination: str, path: Path, schema: pa.Schema) -> None:
        self.destination = destination
        self.path = Path(path)
        self.partial_path = self.path.with_name(self.path.name + PARTIAL_SUFFIX)
        self.schema = schema
        self.row_groups: List[RowGroupStats] = []
        self.finalized = False
        self._writer: Optional[pq.ParquetWriter] = None

    @property
    def records(self) -> int:
        return sum(group.rows for group in self.row_groups)

    def open(self) -> None:
        """Create the partial file and write the Parquet header."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._writer = pq.ParquetWriter(
                str(self.partial_path), self.schema, compression=PARQUET_COMPRESSION
            )
        except (OSError, pa.ArrowException) as e:
            raise WriteError(self.partial_path, f"cannot open for writing: {e}") from e

    def append(self, batch: Batch, launch_time_ns: int = 0) -> None:
        """Append one sealed batch as exactly one row group."""
        if self._writer is None or self.finalized:
            raise WriteError(self.path, "file is not open for appending")
        table = batch_to_table(batch, self.schema, launch_time_ns)
        try:
            self._writer.write_table(table, row_group_size=len(batch))
        except (OSError, pa.ArrowException) as e:
            raise WriteError(self.partial_path, str(e), row_group=len(self.row_groups)) from e
        self.row_groups.append(
            RowGroupStats(
                rows=len(batch),
                min_timestamp_ns=batch.min_timestamp_ns,
                max_timestamp_ns=batch.max_timestamp_ns,
            )
        )

    def finalize(self) -> None:
        """Write the footer and move the file into place. Runs at most once."""
        if self.finalized:
            return
        self.finalized = True
        if self._writer is None:
            return
        writer, self._writer = self._writer, None
        try:
            writer.close()
            os.replace(self.partial_path, self.path)
        except (OSError, pa.ArrowException) as e:
            self.discard()
            raise WriteError(self.path, f"finalize failed: {e}") from e
        logger.info(
            "Finalized %s: %d records in %d row groups",
            self.path,
            self.records,
            len(self.row_groups),
        )

    def abort(self) -> None:
        """Close without finalizing and remove the partial file."""
        writer, self._writer = self._writer, None
        self.finalized = True
        if writer is not None:
            try:
                writer.close()
            except (OSError, pa.ArrowException) as e:
                logger.debug("Ignoring close failure on abort of %s: %s", self.partial_path, e)
        self.discard()

    def discard(self) -> None:
        """Remove the partial file, leaving nothing unreadable behind."""
        try:
            self.partial_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove %s: %s", self.partial_path, e)

    def summary(self) -> FileSummary:
        return FileSummary(
            destination=self.destination,
            path=str(self.path),
            records=self.records,
            row_groups=list(self.row_groups),
        )


class ColumnarWriter:
    """
    Routes sealed batches to their destination file and finalizes every file once.

    Only the pipeline's writer stage touches a ColumnarWriter, so none of its
    state is locked.
    """

    def __init__(
        self,
        destinations: Mapping[str, Path],
        vector_destinations: Iterable[str] = (),
        metadata: Optional[Mapping[str, str]] = None,
        launch_time_ns: int = 0,
    ) -> None:
        vectors = set(vector_destinations)
        self.launch_time_ns = launch_time_ns
        self.files: Dict[str, OutputFile] = {
            name: OutputFile(name, path, build_schema(name in vectors, metadata))
            for name, path in destinations.items()
        }
        self.closed = False

    @classmethod
    def from_config(cls, config: RunConfig, launch_time: datetime) -> "ColumnarWriter":
        specs = config.sensor_specs()
        vectors = {config.destination_for(spec) for spec in specs if spec.is_vector}
        metadata = {
            METADATA_KEYS["launch_id"]: config.launch_id,
            METADATA_KEYS["launch_time"]: launch_time.isoformat(),
            METADATA_KEYS["seed"]: str(config.seed),
            METADATA_KEYS["duration"]: str(config.duration),
            METADATA_KEYS["vehicle_type"]: config.vehicle_type,
            METADATA_KEYS["engine_type"]: config.engine_type,
            METADATA_KEYS["sensors"]: json.dumps(
                [spec.model_dump(mode="json") for spec in specs], sort_keys=True
            ),
        }
        return cls(config.destinations(), vectors, metadata, epoch_ns(launch_time))

    def open(self) -> None:
        """Open every destination; on failure nothing is left on disk."""
        try:
            for output in self.files.values():
                output.open()
        except WriteError:
            self.abort()
            raise

    def append(self, batch: Batch) -> None:
        self.files[batch.destination].append(batch, self.launch_time_ns)

    def abort(self) -> None:
        """Drop all partial files without finalizing them."""
        for output in self.files.values():
            output.abort()
        self.closed = True

    def close(self) -> List[FileSummary]:
        """
        Finalize every file, even if one of them fails.

        Returns:
            list: one FileSummary per destination

        Raises:
            WriteError: the first finalize failure, after all files were attempted
        """
        first_error: Optional[WriteError] = None
        for output in self.files.values():
            try:
                output.finalize()
            except WriteError as e:
                logger.error("Finalize failed for %s: %s", output.path, e)
                if first_error is None:
                    first_error = e
        self.closed = True
        if first_error is not None:
            raise first_error
        return [output.summary() for output in self.files.values()]

    def summaries(self) -> List[FileSummary]:
        return [output.summary() for output in self.files.values()]

    def __enter__(self) -> "ColumnarWriter":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.closed:
            self.close()


def metadata_csv_path(path: Path) -> Path:
    """``run.parquet`` -> ``run.parquet.metadata.csv``."""
    return path.with_name(path.name + METADATA_SUFFIX)


def write_metadata_csv(path: Path, headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> None:
    """
    Write the run metadata sidecar next to an output file.

    Directories are created as needed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as csvfile:
        writer = csv.writer(csvfile)
        writer.writerow(headers)
        writer.writerows(rows)


def read_records(
    path: Path,
    sensor_id: Optional[str] = None,
    start_ns: Optional[int] = None,
    end_ns: Optional[int] = None,
    limit: Optional[int] = None,
) -> pl.DataFrame:
    """
    Read records back from an output file.

    Filters are applied to a lazy scan so they are pushed down to the Parquet
    reader and row groups outside the time range are skipped.
    """
    lazy = pl.scan_parquet(str(path))

    if sensor_id is not None:
        lazy = lazy.filter(pl.col("sensor_id") == sensor_id)
    if start_ns is not None:
        lazy = lazy.filter(pl.col("time_since_launch_ns") >= start_ns)
    if end_ns is not None:
        lazy = lazy.filter(pl.col("time_since_launch_ns") <= end_ns)
    if limit is not None:
        lazy = lazy.head(limit)

    return lazy.collect()


def read_metadata(path: Path) -> Dict[str, str]:
    """Run metadata stored in the Parquet footer, keyed by short name."""
    raw = pq.read_schema(str(path)).metadata or {}
    by_key = {key.encode(): name for name, key in METADATA_KEYS.items()}
    return {by_key[k]: v.decode() for k, v in raw.items() if k in by_key}
