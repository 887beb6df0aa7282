"""
Config resolution: deep-merge DEFAULT_CONFIG with incoming params, then validate.
Incoming params override defaults at any nesting level.
Invalid values raise ConfigError before any work starts; unknown keys are
logged and ignored.
"""
import copy
import logging
import math
from typing import Any, Dict, List

from resynth.core.errors import ConfigError
from resynth.core.params import get_param
from resynth.evolve.gene import TRANSFORM_KINDS
from resynth.params.schema import CONFIG_SCHEMA, DEFAULT_CONFIG

logger = logging.getLogger(__name__)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dicts. override values take precedence.
    Returns a new dict (does not mutate inputs).
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            # Recursively merge nested dicts
            result[key] = _deep_merge(result[key], value)
        else:
            # Override (or add new) key
            result[key] = value

    return result


def _flat_keys(params: Dict[str, Any], prefix: str = "") -> List[str]:
    keys = []
    for key, value in params.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict) and dotted != "mutation.weights":
            keys.extend(_flat_keys(value, dotted + "."))
        else:
            keys.append(dotted)
    return keys


def _check_number(name: str, value: Any, entry: Dict[str, Any], integral: bool) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(float(value)):
        raise ConfigError(f"{name} must be finite, got {value!r}")
    if integral and int(value) != value:
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    lo, hi = entry.get("min"), entry.get("max")
    if lo is not None and value < lo:
        raise ConfigError(f"{name} must be >= {lo}, got {value!r}")
    if hi is not None and value > hi:
        raise ConfigError(f"{name} must be <= {hi}, got {value!r}")


def validate_config(config: Dict[str, Any]) -> None:
    """Raise ConfigError with a specific diagnosis for the first invalid option."""
    for name, entry in CONFIG_SCHEMA.items():
        value = get_param(config, name, entry["default"])
        kind = entry["type"]
        if kind in ("int", "float"):
            _check_number(name, value, entry, integral=kind == "int")
        elif kind == "bool":
            if not isinstance(value, bool):
                raise ConfigError(f"{name} must be a bool, got {value!r}")
        elif kind == "str":
            if value not in entry["choices"]:
                raise ConfigError(f"{name} must be one of {entry['choices']}, got {value!r}")
        elif kind == "curve":
            if not callable(value) and value not in entry["choices"]:
                raise ConfigError(f"{name} must be a callable or one of {entry['choices']}, got {value!r}")

    enabled = get_param(config, "mutation.enabled")
    if not isinstance(enabled, (list, tuple)):
        raise ConfigError(f"mutation.enabled must be a list, got {enabled!r}")
    unknown = [k for k in enabled if k not in TRANSFORM_KINDS]
    if unknown:
        raise ConfigError(f"mutation.enabled has unknown transform kinds {unknown}")

    weights = get_param(config, "mutation.weights", {})
    for kind in enabled:
        w = weights.get(kind, 1.0)
        if isinstance(w, bool) or not isinstance(w, (int, float)) or not math.isfinite(w) or w < 0:
            raise ConfigError(f"mutation.weights.{kind} must be a finite number >= 0, got {w!r}")

    gain_range = get_param(config, "mutation.gain_db_range")
    if (
        not isinstance(gain_range, (list, tuple))
        or len(gain_range) != 2
        or not all(isinstance(v, (int, float)) and math.isfinite(v) for v in gain_range)
        or gain_range[0] > gain_range[1]
    ):
        raise ConfigError(f"mutation.gain_db_range must be [low, high] with low <= high, got {gain_range!r}")

    if get_param(config, "fitness.hop_length") > get_param(config, "fitness.n_fft"):
        raise ConfigError("fitness.hop_length must not exceed fitness.n_fft")


def resolve_config(params: Dict[str, Any] = None) -> Dict[str, Any]:
    """
    Resolve config by:
    1. Starting from DEFAULT_CONFIG
    2. Merging incoming params onto it (user params override defaults)
    3. Validating every recognized option

    Returns a new dict; params is not mutated.
    """
    params = params or {}
    known = set(CONFIG_SCHEMA) | {"mutation.weights"}
    ignored = [k for k in _flat_keys(params) if k not in known]
    if ignored:
        logger.warning("Unrecognized config keys ignored: %s", ignored)

    merged = _deep_merge(copy.deepcopy(DEFAULT_CONFIG), params)
    validate_config(merged)
    return merged
