from probewatch.registry.registry import (
    Check,
    CheckKind,
    CheckRegistry,
    ConfigError,
    load,
    parse_duration,
)

__all__ = [
    "Check",
    "CheckKind",
    "CheckRegistry",
    "ConfigError",
    "load",
    "parse_duration",
]
