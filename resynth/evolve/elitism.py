"""
Elitism strength schedule: a monotonic curve from elapsed cycles to [0, max_strength].
Near zero early in a run, stronger late.
"""
import math
from typing import Callable, Union

from resynth.core.errors import ConfigError

CurveFn = Callable[[float], float]


def _linear(progress: float) -> float:
    return progress


def _logistic(progress: float, steepness: float = 10.0) -> float:
    lo = 1.0 / (1.0 + math.exp(steepness * 0.5))
    hi = 1.0 / (1.0 + math.exp(-steepness * 0.5))
    raw = 1.0 / (1.0 + math.exp(-steepness * (progress - 0.5)))
    return (raw - lo) / (hi - lo)


CURVES = ("linear", "power", "logistic")


def check_monotonic(curve: CurveFn, samples: int = 64) -> None:
    """Raise ConfigError unless curve is non-decreasing on [0, 1] with values in [0, 1]."""
    prev = -math.inf
    for i in range(samples + 1):
        p = i / samples
        value = float(curve(p))
        if not math.isfinite(value) or value < 0.0 or value > 1.0:
            raise ConfigError(f"elitism curve must map [0, 1] into [0, 1], got {value} at {p:.3f}")
        if value < prev - 1e-12:
            raise ConfigError(f"elitism curve must be non-decreasing, dropped at {p:.3f}")
        prev = value


class ElitismSchedule:
    def __init__(
        self,
        curve: Union[str, CurveFn] = "power",
        ramp_cycles: int = 50,
        exponent: float = 2.0,
        max_strength: float = 0.9,
    ):
        if callable(curve):
            self._curve = curve
        elif curve == "linear":
            self._curve = _linear
        elif curve == "power":
            self._curve = lambda p: p ** exponent
        elif curve == "logistic":
            self._curve = _logistic
        else:
            raise ConfigError(f"unknown elitism curve {curve!r}; expected one of {CURVES} or a callable")
        if ramp_cycles < 1:
            raise ConfigError(f"elitism.ramp_cycles must be >= 1, got {ramp_cycles}")
        if not 0.0 <= max_strength <= 1.0:
            raise ConfigError(f"elitism.max_strength must be in [0, 1], got {max_strength}")
        check_monotonic(self._curve)
        self.ramp_cycles = int(ramp_cycles)
        self.max_strength = float(max_strength)

    def strength(self, cycles_elapsed: int) -> float:
        progress = min(1.0, max(0.0, cycles_elapsed / self.ramp_cycles))
        return self.max_strength * float(self._curve(progress))
