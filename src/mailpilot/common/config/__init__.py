"""Configuration module - environment-driven settings."""

from mailpilot.common.config.settings import (
    Config,
    Environment,
    LogLevel,
    ActionStoreType,
    MemoryStoreType,
    ProviderType,
    get_config,
    reset_config,
)

__all__ = [
    "Config",
    "Environment",
    "LogLevel",
    "ActionStoreType",
    "MemoryStoreType",
    "ProviderType",
    "get_config",
    "reset_config",
]
