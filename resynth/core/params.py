"""
Param lookup utilities for engine config (nested dict contract).
Dotted keys address nested sections, e.g. "mutation.weights.split".
"""
from typing import Any


def get_param(params: dict, name: str, default: Any = None) -> Any:
    """
    Read a value from params, supporting dotted keys for nested dicts.
    E.g. get_param(p, "population.size", 16) -> p["population"]["size"] or default.
    If any intermediate key is missing or not a dict, returns default.
    """
    if not params or not name:
        return default
    keys = name.split(".")
    current = params
    for key in keys[:-1]:
        next_val = current.get(key)
        if next_val is None or not isinstance(next_val, dict):
            return default
        current = next_val
    return current.get(keys[-1], default)


def ms_to_samples(ms: float, sample_rate: int) -> int:
    return int(round(float(ms) * 1e-3 * sample_rate))
