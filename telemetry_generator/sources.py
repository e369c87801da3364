"""Per-sensor sample sources and the value generators behind them."""

import math
import random
from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, Iterator, List, Tuple, Type, Union

from telemetry_generator.config import DEFAULT_SEED, NS_PER_SECOND
from telemetry_generator.errors import GenerationError
from telemetry_generator.models import GeneratorKind, SensorSpec

Value = Union[float, Tuple[float, ...]]


@dataclass(frozen=True)
class Sample:
    """One reading of one sensor."""

    sensor_id: str
    index: int
    timestamp_ns: int
    value: Value


def sample_count(duration: Fraction, sample_rate: Fraction) -> int:
    """Samples needed to cover ``duration`` at ``sample_rate``, rounded up."""
    return math.ceil(duration * sample_rate)


def timestamp_ns(index: int, sample_rate: Fraction) -> int:
    """Offset of sample ``index`` from launch, computed exactly so spacing never drifts."""
    return (index * NS_PER_SECOND * sample_rate.denominator) // sample_rate.numerator


class ValueGenerator:
    """Produces one value per call for a sensor of ``width`` components."""

    def __init__(self, params, width: int, rng: random.Random) -> None:
        self.params = params
        self.width = width
        self.rng = rng

    def _noise(self) -> float:
        if self.params.noise:
            return self.rng.gauss(0.0, self.params.noise)
        return 0.0

    def component(self, c: int, t: float, progress: float) -> float:
        raise NotImplementedError

    def next_value(self, t: float, progress: float) -> Value:
        if self.width == 1:
            return self.component(0, t, progress)
        return tuple(self.component(c, t, progress) for c in range(self.width))


class SineValues(ValueGenerator):
    def component(self, c: int, t: float, progress: float) -> float:
        p = self.params
        shift = 2.0 * math.pi * c / self.width
        angle = 2.0 * math.pi * p.frequency_hz * t + p.phase + shift
        return p.offset + p.amplitude * math.sin(angle) + self._noise()


class ConstantValues(ValueGenerator):
    def component(self, c: int, t: float, progress: float) -> float:
        return self.params.offset + self._noise()


class RandomWalkValues(ValueGenerator):
    def __init__(self, params, width: int, rng: random.Random) -> None:
        super().__init__(params, width, rng)
        self._levels: List[float] = [params.offset] * width
        self._started = False

    def next_value(self, t: float, progress: float) -> Value:
        # First sample sits on the starting level
        if self._started:
            step = self.params.step
            self._levels = [level + self.rng.gauss(0.0, step) for level in self._levels]
        self._started = True
        return super().next_value(t, progress)

    def component(self, c: int, t: float, progress: float) -> float:
        return self._levels[c] + self._noise()


def flight_envelope(progress: float) -> float:
    """Engine throttle (0..1) over the flight: ignition, max-Q, burn, staging, second burn, cutoff."""
    if progress < 0.05:
        return progress / 0.05
    if progress < 0.15:
        return 1.0 - 0.2 * ((progress - 0.05) / 0.10)
    if progress < 0.40:
        return 1.0
    if progress < 0.55:
        if progress < 0.45:
            return 1.0
        return max(0.0, 1.0 - (progress - 0.45) / 0.05)
    stage_time = (progress - 0.55) / 0.45
    throttle = min(stage_time / 0.05, 1.0)
    if stage_time > 0.9:
        throttle *= max(0.0, 1.0 - (stage_time - 0.9) / 0.1)
    return throttle


class FlightProfileValues(ValueGenerator):
    def component(self, c: int, t: float, progress: float) -> float:
        p = self.params
        return p.offset + p.amplitude * flight_envelope(progress) + self._noise()


_GENERATORS: Dict[GeneratorKind, Type[ValueGenerator]] = {
    GeneratorKind.SINE: SineValues,
    GeneratorKind.CONSTANT: ConstantValues,
    GeneratorKind.RANDOM_WALK: RandomWalkValues,
    GeneratorKind.FLIGHT_PROFILE: FlightProfileValues,
}


def make_value_generator(spec: SensorSpec, rng: random.Random) -> ValueGenerator:
    """Instantiate the generator variant named by ``spec.generator.kind``."""
    return _GENERATORS[GeneratorKind(spec.generator.kind)](spec.generator, spec.value_width, rng)


class SensorSource:
    """
    Lazy, finite sample sequence for one sensor.

    Every iteration starts over from sample 0 with a freshly seeded RNG, so a
    source (or a new one built from the same spec and seed) always replays the
    identical sequence.
    """

    def __init__(self, spec: SensorSpec, duration: Fraction, seed: int = DEFAULT_SEED) -> None:
        self.spec = spec
        self.duration = duration
        self.seed = seed
        self.total = sample_count(duration, spec.sample_rate)

    def __len__(self) -> int:
        return self.total

    def __repr__(self) -> str:
        return f"<SensorSource {self.spec.sensor_id!r}: {self.total} samples @ {self.spec.sample_rate} Hz>"

    def __iter__(self) -> Iterator[Sample]:
        spec = self.spec
        sensor_id = spec.sensor_id
        rate = spec.sample_rate
        total = self.total
        # String seeds hash deterministically across processes
        values = make_value_generator(spec, random.Random(f"{self.seed}:{sensor_id}"))
        for index in range(total):
            ts = timestamp_ns(index, rate)
            value = values.next_value(ts / NS_PER_SECOND, index / total)
            if not _is_finite(value):
                raise GenerationError(sensor_id, index, f"non-finite value {value!r}")
            yield Sample(sensor_id, index, ts, value)


def _is_finite(value: Value) -> bool:
    if isinstance(value, tuple):
        return all(math.isfinite(v) for v in value)
    return math.isfinite(value)
