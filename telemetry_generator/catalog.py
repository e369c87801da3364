"""Default rocket sensor catalogue used when a run lists no sensors of its own."""

from fractions import Fraction
from typing import List, NamedTuple

from telemetry_generator.models import (
    ConstantLevel,
    FlightProfile,
    GeneratorSpec,
    RandomWalk,
    SensorSpec,
    SineWave,
)


class CatalogEntry(NamedTuple):
    sensor_id: str
    sensor_type: str
    unit: str
    generator: GeneratorSpec


# Nominal levels: 5 MPa chamber, 1 MN thrust,
# 250/50 kg/s oxidizer/fuel flow, launch from Cape Canaveral.
ROCKET_SENSORS: List[CatalogEntry] = [
    # Flight profile
    CatalogEntry("acc", "acceleration_mps2", "m/s²", FlightProfile(amplitude=15.0, noise=0.05)),
    CatalogEntry("alt", "altitude_m", "meters", RandomWalk(offset=0.0, step=0.01)),
    CatalogEntry("vel", "velocity_mps", "m/s", FlightProfile(amplitude=2_000.0, noise=0.5)),
    # Engine
    CatalogEntry("cmb_pa", "chamber_pressure_pa", "Pa", FlightProfile(amplitude=5_000_000.0, noise=500.0)),
    CatalogEntry("cmb_k", "chamber_temp_k", "K", FlightProfile(offset=288.15, amplitude=3_500.0, noise=0.2)),
    CatalogEntry("ox_pa", "oxidizer_pressure_pa", "Pa", FlightProfile(offset=101_325.0, amplitude=4_000_000.0, noise=500.0)),
    CatalogEntry("Ox_f", "oxidizer_flow_rate_kgps", "kg/s", FlightProfile(amplitude=250.0, noise=0.1)),
    CatalogEntry("Ox_k", "oxidizer_temperature_k", "K", ConstantLevel(offset=288.15, noise=0.2)),
    CatalogEntry("F_pa", "fuel_pressure_pa", "Pa", FlightProfile(offset=101_325.0, amplitude=4_000_000.0, noise=500.0)),
    CatalogEntry("F_f", "fuel_flow_rate_kgps", "kg/s", FlightProfile(amplitude=50.0, noise=0.1)),
    CatalogEntry("F_k", "fuel_temperature_k", "K", ConstantLevel(offset=288.15, noise=1.0)),
    CatalogEntry("Rpm", "turbo_pump_rpm", "RPM", FlightProfile(amplitude=30_000.0, noise=25.0)),
    CatalogEntry("Trst", "thrust_n", "N", FlightProfile(amplitude=1_000_000.0, noise=50.0)),
    CatalogEntry("SI", "specific_impulse_s", "s", FlightProfile(amplitude=300.0, noise=0.25)),
    CatalogEntry("Nz", "nozzle_temperature_k", "K", FlightProfile(offset=288.15, amplitude=1_800.0, noise=2.0)),
    # GNC
    CatalogEntry("RA", "roll_angle_deg", "degrees", RandomWalk(offset=0.0001, step=0.01)),
    CatalogEntry("PA", "pitch_angle_deg", "degrees", SineWave(offset=50.0, amplitude=40.0, frequency_hz=0.005)),
    CatalogEntry("YA", "yaw_angle_deg", "degrees", RandomWalk(offset=0.0001, step=0.01)),
    CatalogEntry("RR", "roll_rate_dps", "degrees/s", ConstantLevel(noise=0.05)),
    CatalogEntry("PR", "pitch_rate_dps", "degrees/s", ConstantLevel(offset=-0.1, noise=0.05)),
    CatalogEntry("YR", "yaw_rate_dps", "degrees/s", ConstantLevel(noise=0.05)),
    CatalogEntry("Lat", "latitude_deg", "degrees", RandomWalk(offset=28.5721, step=0.00001)),
    CatalogEntry("Lng", "longitude_deg", "degrees", RandomWalk(offset=-80.648, step=0.00001)),
    # Vibration
    CatalogEntry("VbX", "vibration_x_g", "g", SineWave(amplitude=0.5, frequency_hz=60.0, noise=0.01)),
    CatalogEntry("VbY", "vibration_y_g", "g", SineWave(amplitude=0.5, frequency_hz=60.0, phase=1.57, noise=0.01)),
    CatalogEntry("VbZ", "vibration_z_g", "g", SineWave(amplitude=0.75, frequency_hz=80.0, noise=0.01)),
    CatalogEntry("Vb_hz", "vibration_freq_hz", "Hz", FlightProfile(offset=20.0, amplitude=60.0, noise=2.5)),
]


def default_sensors(sample_rate: Fraction) -> List[SensorSpec]:
    """Build the rocket catalogue with every sensor at ``sample_rate``."""
    return [
        SensorSpec(
            sensor_id=entry.sensor_id,
            sensor_type=entry.sensor_type,
            sample_rate=sample_rate,
            unit=entry.unit,
            generator=entry.generator,
        )
        for entry in ROCKET_SENSORS
    ]
