"""
Configuration loader.

App config: reads config.yaml, applies environment overrides.
"""

from config.loader import (
    AlertingConfig,
    AppConfig,
    ConfigError,
    EngineConfig,
    JournalConfig,
    StoreConfig,
    load_config,
)

__all__ = [
    "AlertingConfig",
    "AppConfig",
    "ConfigError",
    "EngineConfig",
    "JournalConfig",
    "StoreConfig",
    "load_config",
]
