"""
Pydantic configuration system.
"""

from .models import (
    Environment,
    WriteOperation,
    DatabaseConfig,
    ProducerConfig,
    ConsumerConfig,
    ChannelConfig,
    CheckpointConfig,
    AppConfig,
)
from .loader import ConfigLoader, load_config


def get_config(env_file=None, overrides=None) -> AppConfig:
    """
    Load the application configuration from the environment (and .env).

    Args:
        env_file: Optional .env path
        overrides: Section -> field overrides, typically from the CLI

    Returns:
        AppConfig: Fully configured application settings
    """
    return load_config(env_file=env_file, overrides=overrides)


__all__ = [
    "Environment",
    "WriteOperation",
    "DatabaseConfig",
    "ProducerConfig",
    "ConsumerConfig",
    "ChannelConfig",
    "CheckpointConfig",
    "AppConfig",
    "ConfigLoader",
    "load_config",
    "get_config",
]
