"""Configuration settings for the telemetry generator."""

from datetime import datetime, timezone
from typing import Dict

# Run defaults
DEFAULT_DURATION_SECONDS = 120
DEFAULT_SAMPLE_RATE_HZ = 1_000  # 1 kHz
DEFAULT_SEED = 1337
DEFAULT_LAUNCH_ID = "SIM-001"
DEFAULT_VEHICLE_TYPE = "Kerbal"
DEFAULT_ENGINE_TYPE = "Narwhal"
# Launch time used when none is given; "now" selects the wall clock
DEFAULT_LAUNCH_TIME = datetime(1970, 1, 1, tzinfo=timezone.utc)
LAUNCH_TIME_NOW = "now"

# Timestamps are integer nanoseconds since launch, so one sample per
# nanosecond is the densest spacing that stays strictly increasing.
NS_PER_SECOND = 1_000_000_000
MAX_SAMPLE_RATE_HZ = NS_PER_SECOND

# Data storage configuration
DATA_DIR = "output"
PARQUET_SUFFIX = ".parquet"
PARTIAL_SUFFIX = ".partial"
METADATA_SUFFIX = ".metadata.csv"
DEFAULT_DESTINATION = "telemetry"
PARQUET_COMPRESSION = "snappy"

# Batch write configuration (bounds peak memory)
DEFAULT_ROW_GROUP_SIZE = 100_000  # Records per Parquet row group
DEFAULT_CHANNEL_CAPACITY = 4  # Sealed batches queued between generation and writing

# Key-value metadata stored in every Parquet footer
METADATA_KEYS: Dict[str, str] = {
    "launch_id": "telemetry.launch_id",
    "launch_time": "telemetry.launch_time",
    "seed": "telemetry.seed",
    "duration": "telemetry.duration_s",
    "vehicle_type": "telemetry.vehicle_type",
    "engine_type": "telemetry.engine_type",
    "sensors": "telemetry.sensors",
}

# API record read-back limits
DEFAULT_RECORD_LIMIT = 1_000
MAX_RECORD_LIMIT = 100_000
