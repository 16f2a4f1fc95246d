"""
Converge Config - Configuration management.
"""

from converge.config.loader import get_config, load_config, reset_config, save_config
from converge.config.models import (
    Config,
    EngineConfig,
    GeneralConfig,
    RetryConfig,
    StateConfig,
)

__all__ = [
    "Config",
    "EngineConfig",
    "GeneralConfig",
    "RetryConfig",
    "StateConfig",
    "get_config",
    "load_config",
    "reset_config",
    "save_config",
]
