"""
htcontrol_config - Layered configuration

Bounded Context: Startup configuration
Responsibilities:
  - Built-in defaults for broker, topics and transport tools
  - YAML config file loading (home directory expansion)
  - Environment / CLI override merging
  - Immutable Settings handed to every component

Precedence: defaults < config file < environment < CLI flags
"""

from .resolver import (
    DEFAULTS,
    ConfigurationError,
    Settings,
    environment_overrides,
    load_yaml_config,
    resolve,
)

__all__ = [
    "DEFAULTS",
    "ConfigurationError",
    "Settings",
    "environment_overrides",
    "load_yaml_config",
    "resolve",
]
