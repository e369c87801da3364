"""
Canonical exception types for the telemetry generator.

Every error raised by the pipeline derives from TelemetryError so callers can
catch the whole family at once. Interrupted is the odd one out: the pipeline
turns it into a truncated RunSummary instead of surfacing it.
"""

from __future__ import annotations

from typing import Optional


class TelemetryError(Exception):
    """Base class for telemetry generator errors."""


class ConfigError(TelemetryError):
    """Invalid run configuration (e.g., zero frequency, unwritable output path)."""


class GenerationError(TelemetryError):
    """A sensor source produced a non-finite or out-of-domain value."""

    def __init__(self, sensor_id: str, index: int, reason: str = "non-finite value") -> None:
        self.sensor_id = sensor_id
        self.index = index
        self.reason = reason
        super().__init__(f"sensor {sensor_id!r} sample {index}: {reason}")


class WriteError(TelemetryError):
    """I/O failure while appending a row group or finalizing a file."""

    def __init__(self, path: object, reason: str, *, row_group: Optional[int] = None) -> None:
        self.path = str(path)
        self.reason = reason
        self.row_group = row_group
        where = self.path if row_group is None else f"{self.path} (row group {row_group})"
        super().__init__(f"{where}: {reason}")


class Interrupted(TelemetryError):
    """The run was cancelled before every sensor source was exhausted."""


__all__ = [
    "ConfigError",
    "GenerationError",
    "Interrupted",
    "TelemetryError",
    "WriteError",
]
