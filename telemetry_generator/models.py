"""Pydantic models for run configuration and run results."""

import math
from datetime import datetime, timezone
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    computed_field,
    field_serializer,
    field_validator,
    model_validator,
)

from telemetry_generator.config import (
    DATA_DIR,
    DEFAULT_CHANNEL_CAPACITY,
    DEFAULT_DESTINATION,
    DEFAULT_DURATION_SECONDS,
    DEFAULT_ENGINE_TYPE,
    DEFAULT_LAUNCH_ID,
    DEFAULT_LAUNCH_TIME,
    DEFAULT_ROW_GROUP_SIZE,
    DEFAULT_SAMPLE_RATE_HZ,
    DEFAULT_SEED,
    DEFAULT_VEHICLE_TYPE,
    LAUNCH_TIME_NOW,
    MAX_SAMPLE_RATE_HZ,
    PARQUET_SUFFIX,
)
from telemetry_generator.errors import ConfigError


def to_fraction(value: Any) -> Fraction:
    """Coerce an int, float, decimal string or ``"p/q"`` string to an exact Fraction.

    Floats go through their shortest repr so ``0.1`` becomes ``1/10`` rather
    than the nearest binary fraction.
    """
    if isinstance(value, bool):
        raise ValueError("expected a number, got a boolean")
    if isinstance(value, Fraction):
        return value
    if isinstance(value, int):
        return Fraction(value)
    if isinstance(value, float):
        return Fraction(repr(value))
    if isinstance(value, str):
        try:
            return Fraction(value.strip())
        except (ValueError, ZeroDivisionError):
            raise ValueError(f"not a number: {value!r}")
    raise ValueError(f"expected a number, got {type(value).__name__}")


def format_rate(rate: Fraction) -> str:
    """Render a sample rate for file names and logs (``1000``, ``0.5``)."""
    if rate.denominator == 1:
        return str(rate.numerator)
    return f"{float(rate):g}"


class GeneratorKind(str, Enum):
    """Closed set of value generators a sensor can use."""

    SINE = "sine"
    CONSTANT = "constant"
    RANDOM_WALK = "random_walk"
    FLIGHT_PROFILE = "flight_profile"


class _GeneratorParams(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False, extra="forbid")

    offset: float = Field(0.0, description="Baseline level")
    noise: float = Field(0.0, ge=0, description="Std dev of Gaussian noise added per sample")


class SineWave(_GeneratorParams):
    """Periodic waveform; vector components are phase-shifted evenly."""

    kind: Literal["sine"] = "sine"
    amplitude: float = 1.0
    frequency_hz: float = Field(1.0, ge=0)
    phase: float = 0.0


class ConstantLevel(_GeneratorParams):
    """Constant level with Gaussian jitter."""

    kind: Literal["constant"] = "constant"


class RandomWalk(_GeneratorParams):
    """Gaussian random walk starting at ``offset``."""

    kind: Literal["random_walk"] = "random_walk"
    step: float = Field(1.0, ge=0, description="Std dev of each step")


class FlightProfile(_GeneratorParams):
    """Throttle-up, max-Q, burn, staging and cutoff envelope scaled to ``amplitude``."""

    kind: Literal["flight_profile"] = "flight_profile"
    amplitude: float = 1.0


GeneratorSpec = Annotated[
    Union[SineWave, ConstantLevel, RandomWalk, FlightProfile],
    Field(discriminator="kind"),
]


class SensorSpec(BaseModel):
    """One configured sensor: identity, sampling rate and value shape."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    sensor_id: str = Field(..., min_length=1, description="Unique, stable sensor identifier")
    sensor_type: str = Field(..., min_length=1, description="Categorical sensor tag")
    sample_rate: Fraction = Field(..., description="Samples per second")
    value_width: int = Field(1, ge=1, description="1 for scalar, N for a fixed-width vector")
    unit: str = Field("", description="Display unit")
    generator: GeneratorSpec = Field(default_factory=SineWave)
    output: Optional[str] = Field(None, description="Named output destination")

    @field_validator("sample_rate", mode="before")
    @classmethod
    def parse_sample_rate(cls, v: Any) -> Fraction:
        """Accept ints, floats and fraction strings."""
        return to_fraction(v)

    @field_validator("sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: Fraction) -> Fraction:
        """Sample rate must be positive and no denser than one sample per nanosecond."""
        if v <= 0:
            raise ValueError("sample_rate must be positive")
        if v > MAX_SAMPLE_RATE_HZ:
            raise ValueError(f"sample_rate cannot exceed {MAX_SAMPLE_RATE_HZ} Hz")
        return v

    @field_serializer("sample_rate")
    def serialize_sample_rate(self, v: Fraction) -> str:
        return str(v)

    @property
    def is_vector(self) -> bool:
        return self.value_width > 1


class RunConfig(BaseModel):
    """
    Immutable description of one generation run.

    Sensors without their own ``sample_rate`` inherit the run-wide
    ``sample_rate_hz``; when no sensors are listed the default rocket catalogue
    is used at that rate.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    launch_id: str = Field(DEFAULT_LAUNCH_ID, min_length=1)
    duration: Fraction = Field(Fraction(DEFAULT_DURATION_SECONDS), description="Seconds")
    sample_rate_hz: Fraction = Field(Fraction(DEFAULT_SAMPLE_RATE_HZ))
    sensors: List[SensorSpec] = Field(default_factory=list)
    seed: int = DEFAULT_SEED
    launch_time: datetime = Field(
        DEFAULT_LAUNCH_TIME, description='Absolute time of sample 0; "now" uses the wall clock'
    )
    output_dir: Path = Path(DATA_DIR)
    outputs: Dict[str, Path] = Field(default_factory=dict, description="Destination name -> file path")
    partition_by_rate: bool = False
    row_group_size: int = Field(DEFAULT_ROW_GROUP_SIZE, ge=1)
    channel_capacity: int = Field(DEFAULT_CHANNEL_CAPACITY, ge=1)
    max_rows: Optional[int] = Field(None, ge=1)
    vehicle_type: str = DEFAULT_VEHICLE_TYPE
    engine_type: str = DEFAULT_ENGINE_TYPE
    write_metadata_csv: bool = True

    @model_validator(mode="before")
    @classmethod
    def apply_run_wide_rate(cls, data: Any) -> Any:
        """Resolve ``sample_rate_khz`` and hand the run-wide rate to sensors lacking one."""
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        if "sample_rate_khz" in data:
            if "sample_rate_hz" in data:
                raise ValueError("give either sample_rate_hz or sample_rate_khz, not both")
            data["sample_rate_hz"] = to_fraction(data.pop("sample_rate_khz")) * 1000
        rate = data.get("sample_rate_hz", DEFAULT_SAMPLE_RATE_HZ)
        sensors = data.get("sensors")
        if isinstance(sensors, list):
            resolved = []
            for sensor in sensors:
                if isinstance(sensor, Mapping):
                    sensor = dict(sensor)
                    if "sample_rate_khz" in sensor:
                        sensor["sample_rate"] = to_fraction(sensor.pop("sample_rate_khz")) * 1000
                    sensor.setdefault("sample_rate", rate)
                resolved.append(sensor)
            data["sensors"] = resolved
        return data

    @field_validator("launch_time", mode="before")
    @classmethod
    def parse_launch_time(cls, v: Any) -> Any:
        if v == LAUNCH_TIME_NOW:
            return datetime.now(timezone.utc)
        return v

    @field_validator("duration", "sample_rate_hz", mode="before")
    @classmethod
    def parse_fraction(cls, v: Any) -> Fraction:
        return to_fraction(v)

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, v: Fraction) -> Fraction:
        """Duration must be positive."""
        if v <= 0:
            raise ValueError("duration must be positive")
        return v

    @field_validator("sample_rate_hz")
    @classmethod
    def validate_sample_rate(cls, v: Fraction) -> Fraction:
        if v <= 0:
            raise ValueError("sample_rate_hz must be positive")
        if v > MAX_SAMPLE_RATE_HZ:
            raise ValueError(f"sample_rate_hz cannot exceed {MAX_SAMPLE_RATE_HZ} Hz")
        return v

    @model_validator(mode="after")
    def validate_sensors(self) -> "RunConfig":
        """Sensor ids must be unique and named outputs must exist."""
        seen = set()
        for spec in self.sensors:
            if spec.sensor_id in seen:
                raise ValueError(f"duplicate sensor_id {spec.sensor_id!r}")
            seen.add(spec.sensor_id)
            if spec.output is not None and spec.output not in self.outputs:
                raise ValueError(
                    f"sensor {spec.sensor_id!r} names unknown output {spec.output!r}"
                )
        paths = [str(path) for path in self.destinations().values()]
        if len(paths) != len(set(paths)):
            raise ValueError("two output destinations resolve to the same file")
        return self

    @field_serializer("duration", "sample_rate_hz")
    def serialize_fraction(self, v: Fraction) -> str:
        return str(v)

    @property
    def sample_rate_khz(self) -> float:
        return float(self.sample_rate_hz / 1000)

    def sensor_specs(self) -> List[SensorSpec]:
        """Configured sensors, or the default catalogue at the run-wide rate."""
        if self.sensors:
            return list(self.sensors)
        from telemetry_generator.catalog import default_sensors

        return default_sensors(self.sample_rate_hz)

    def samples_for(self, spec: SensorSpec) -> int:
        """Number of samples a sensor produces: ``ceil(duration * sample_rate)``."""
        return math.ceil(self.duration * spec.sample_rate)

    @property
    def estimated_records(self) -> int:
        return sum(self.samples_for(spec) for spec in self.sensor_specs())

    def destination_for(self, spec: SensorSpec) -> str:
        """Destination name a sensor's records are routed to (decided once per sensor)."""
        if spec.output is not None:
            return spec.output
        if self.partition_by_rate:
            return f"{format_rate(spec.sample_rate)}hz"
        return DEFAULT_DESTINATION

    def destinations(self) -> Dict[str, Path]:
        """Destination name -> final Parquet path, in first-use order."""
        rates: Dict[str, set] = {}
        for spec in self.sensor_specs():
            rates.setdefault(self.destination_for(spec), set()).add(spec.sample_rate)

        resolved: Dict[str, Path] = {}
        for name, dest_rates in rates.items():
            if name in self.outputs:
                path = self.outputs[name]
                resolved[name] = path if path.is_absolute() else self.output_dir / path
                continue
            stem = self.launch_id
            if len(dest_rates) == 1:
                stem += f"_{format_rate(next(iter(dest_rates)))}hz"
            stem += f"_{format_rate(self.duration)}s"
            resolved[name] = self.output_dir / f"{stem}{PARQUET_SUFFIX}"
        return resolved


def load_config(data: Union[RunConfig, Mapping[str, Any]]) -> RunConfig:
    """Validate a mapping into a RunConfig, reporting problems as ConfigError."""
    if isinstance(data, RunConfig):
        return data
    try:
        return RunConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid run configuration: {e}") from e


class Termination(str, Enum):
    """How a run ended."""

    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    ROW_LIMIT = "row_limit"


class RowGroupStats(BaseModel):
    """Statistics of one appended row group."""

    rows: int
    min_timestamp_ns: int
    max_timestamp_ns: int


class FileSummary(BaseModel):
    """One finalized output file."""

    destination: str
    path: str
    records: int = Field(..., description="Rows written to this file")
    row_groups: List[RowGroupStats] = Field(default_factory=list)


class RunSummary(BaseModel):
    """Result of a run returned to the caller."""

    launch_id: str
    files: List[FileSummary]
    records_written: int
    wall_clock_seconds: float
    termination: Termination

    @computed_field  # type: ignore[prop-decorator]
    @property
    def terminated_early(self) -> bool:
        return self.termination is not Termination.COMPLETED

    def file(self, destination: str) -> FileSummary:
        for summary in self.files:
            if summary.destination == destination:
                return summary
        raise KeyError(destination)


class RunStatus(str, Enum):
    """Lifecycle of a run submitted through the API."""

    RUNNING = "running"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    ROW_LIMIT = "row_limit"
    FAILED = "failed"


class RunRequest(BaseModel):
    """Request model for starting a run."""

    config: Dict[str, Any] = Field(default_factory=dict, description="Run configuration mapping")


class RunAcceptedResponse(BaseModel):
    """Response model for a started run."""

    run_id: str = Field(..., description="Run identifier")
    status: RunStatus = Field(default=RunStatus.RUNNING)
    estimated_records: int = Field(..., description="Records the run will produce if not cut short")


class RunStatusResponse(BaseModel):
    """Response model for run status queries."""

    run_id: str
    status: RunStatus
    records_generated: int = Field(0, description="Records pulled from the merge scheduler so far")
    records_written: int = Field(0, description="Records durably appended so far")
    summary: Optional[RunSummary] = None
    error: Optional[str] = None


class RecordsResponse(BaseModel):
    """Response model for record read-back."""

    run_id: str
    destination: str
    count: int
    records: List[Dict[str, Any]]
