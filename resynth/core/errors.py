"""
Engine exception types.
ConfigError is fatal and raised before any generation runs.
TransformError is recovered locally by the mutation operator.
"""


class ResynthError(Exception):
    """Base class for engine errors."""


class ConfigError(ResynthError, ValueError):
    """Invalid configuration, empty library or mismatched sample rates."""


class TransformError(ResynthError, ValueError):
    """A transform cannot be applied with the given parameters or input."""
