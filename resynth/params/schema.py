"""
Config schema and defaults.
Every recognized option is listed once in CONFIG_SCHEMA under its dotted key;
DEFAULT_CONFIG is the nested dict built from those entries.
"""
from typing import Any, Dict, Literal, Optional

from resynth.evolve.gene import TRANSFORM_KINDS

# Type definitions
ParamType = Literal["float", "int", "bool", "str", "list", "curve"]
ParamGroup = Literal["run", "population", "mutation", "elitism", "cycle", "fitness", "output"]

# Schema entry structure: type, default, min, max, group, description
ParamSchemaEntry = Dict[str, Any]


def _make_param(
    param_type: ParamType,
    default: Any,
    min_val: Optional[float],
    max_val: Optional[float],
    group: ParamGroup,
    description: str,
    choices: Optional[tuple] = None,
) -> ParamSchemaEntry:
    """Helper to create a schema entry."""
    entry = {
        "type": param_type,
        "default": default,
        "min": min_val,
        "max": max_val,
        "group": group,
        "description": description,
    }
    if choices is not None:
        entry["choices"] = choices
    return entry


CONFIG_SCHEMA: Dict[str, ParamSchemaEntry] = {
    # Run
    "seed": _make_param("int", 0, 0, None, "run", "Root seed for every random stream"),
    "workers": _make_param("int", 4, 1, 256, "run", "Worker threads for mutation and scoring"),
    "section_seconds": _make_param(
        "float", 0.0, 0.0, None, "run", "Target section length in seconds (0 = whole signal)"
    ),
    # Population
    "population.size": _make_param("int", 16, 1, 4096, "population", "Survivors kept per generation"),
    "population.random_delays": _make_param(
        "bool", False, None, None, "population", "Seed individuals at random delays instead of 0"
    ),
    # Mutation
    "mutation.rate": _make_param(
        "float", 1.0, 0.0, 1.0, "mutation", "Probability an offspring gets a new transform"
    ),
    "mutation.delay_rate": _make_param(
        "float", 0.5, 0.0, 1.0, "mutation", "Probability an offspring's delay is mutated"
    ),
    "mutation.delay_reset": _make_param(
        "float", 0.05, 0.0, 1.0, "mutation", "Probability a delay mutation re-seeds uniformly"
    ),
    "mutation.delay_step_ms": _make_param(
        "float", 100.0, 0.0, None, "mutation", "Maximum delay perturbation (ms)"
    ),
    "mutation.cents_range": _make_param(
        "float", 1200.0, 0.0, 4800.0, "mutation", "Resample offsets drawn from +/- this many cents"
    ),
    "mutation.gain_db_range": _make_param(
        "list", [-12.0, 6.0], -60.0, 24.0, "mutation", "Shelf gain draw range (dB)"
    ),
    "mutation.enabled": _make_param(
        "list", list(TRANSFORM_KINDS), None, None, "mutation", "Enabled transform kinds",
        choices=TRANSFORM_KINDS,
    ),
    "mutation.max_transforms": _make_param(
        "int", 16, 1, 256, "mutation", "Longest transform tree, Mix partners included"
    ),
    "mutation.max_retries": _make_param(
        "int", 8, 0, 100, "mutation", "Fresh draws after a failed transform before giving up"
    ),
    "mutation.root_rate": _make_param(
        "float", 0.1, 0.0, 1.0, "mutation", "Share of gene mutations that restart from a library entry not in play"
    ),
    # Elitism
    "elitism.curve": _make_param(
        "curve", "power", None, None, "elitism", "Strength curve name or callable",
        choices=("linear", "power", "logistic"),
    ),
    "elitism.ramp_cycles": _make_param(
        "int", 50, 1, None, "elitism", "Elapsed cycles at which strength reaches its maximum"
    ),
    "elitism.exponent": _make_param("float", 2.0, 0.01, 16.0, "elitism", "Exponent of the power curve"),
    "elitism.max_strength": _make_param("float", 0.9, 0.0, 1.0, "elitism", "Strength ceiling"),
    "elitism.max_fraction": _make_param(
        "float", 0.5, 0.0, 1.0, "elitism", "Share of the population carried as elites at full strength"
    ),
    # Cycle
    "cycle.budget": _make_param("int", 100, 1, None, "cycle", "Cycles per section"),
    "cycle.restart_interval": _make_param(
        "int", 10, 0, None, "cycle", "Reset the seed to the initial population every N cycles (0 = never)"
    ),
    "cycle.max_generations": _make_param(
        "int", 50, 1, None, "cycle", "Generations before a cycle gives up without committing"
    ),
    "cycle.min_improvement": _make_param(
        "float", 0.0, 0.0, None, "cycle", "Margin a cycle must beat the previous committed score by"
    ),
    # Fitness
    "fitness.strategy": _make_param(
        "str", "spectral", None, None, "fitness", "Delay placement: mutated (spectral) or cross-correlation",
        choices=("spectral", "xcorr"),
    ),
    "fitness.silence_rms": _make_param(
        "float", 1e-4, 0.0, 1.0, "fitness", "Candidates below this RMS score -inf"
    ),
    "fitness.n_fft": _make_param("int", 1024, 16, 65536, "fitness", "STFT window length"),
    "fitness.hop_length": _make_param("int", 256, 1, 65536, "fitness", "STFT hop"),
    # Output
    "proximity.min_distance_ms": _make_param(
        "float", 0.0, 0.0, None, "output", "Minimum gap between ranges committed in one generation (ms)"
    ),
    "commit.per_cycle": _make_param("int", 1, 1, 64, "output", "Individuals committed per cycle"),
    "commit.fade_ms": _make_param("float", 0.0, 0.0, 1000.0, "output", "Boundary fades on committed fragments (ms)"),
    "render.cache_size": _make_param("int", 256, 0, None, "output", "Rendered genes kept in memory"),
}


def _nest(flat: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for dotted, value in flat.items():
        keys = dotted.split(".")
        current = out
        for key in keys[:-1]:
            current = current.setdefault(key, {})
        current[keys[-1]] = value
    return out


DEFAULT_CONFIG: Dict[str, Any] = _nest({name: entry["default"] for name, entry in CONFIG_SCHEMA.items()})
# Per-kind weights are a section of their own; every enabled kind defaults to 1.0.
DEFAULT_CONFIG["mutation"]["weights"] = {kind: 1.0 for kind in TRANSFORM_KINDS}
