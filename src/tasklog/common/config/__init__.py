"""Configuration package."""

from tasklog.common.config.settings import (
    Config,
    Environment,
    LogLevel,
    TierName,
    get_config,
    reset_config,
)

__all__ = [
    "Config",
    "Environment",
    "LogLevel",
    "TierName",
    "get_config",
    "reset_config",
]
