"""
Engine configuration schema and resolution.
Defaults: single source is schema.CONFIG_SCHEMA; use resolve_config({}) for resolved defaults.
"""
from resynth.params.schema import CONFIG_SCHEMA, DEFAULT_CONFIG
from resynth.params.resolve import resolve_config, validate_config

__all__ = ["CONFIG_SCHEMA", "DEFAULT_CONFIG", "resolve_config", "validate_config"]
