"""
Configuration loader with environment variable mapping.

Every setting has an environment variable; the CLI overrides individual
values after loading.
"""

from typing import Any, Dict, Optional
import json
import os
import logging
from dotenv import load_dotenv

from ...utils.misc import get_max_workers

from .models import (
    AppConfig,
    ChannelConfig,
    CheckpointConfig,
    ConsumerConfig,
    DatabaseConfig,
    Environment,
    ProducerConfig,
)

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    return float(raw) if raw else None


class ConfigLoader:
    """Configuration loader with environment variable mapping and validation."""

    def __init__(self, env_file: Optional[str] = None):
        """
        Args:
            env_file: Path to .env file (defaults to .env in current directory)
        """
        self.env_file = env_file or ".env"
        self._loaded_config: Optional[AppConfig] = None

    def load_configuration(self, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> AppConfig:
        """
        Load configuration from environment variables.

        Args:
            overrides: Section name -> {field: value} applied on top of the
                environment (values of None are ignored)

        Returns:
            Validated AppConfig instance
        """
        self._load_env_file()

        sections = {
            "database": self._load_database_config(),
            "producer": self._load_producer_config(),
            "consumer": self._load_consumer_config(),
            "channel": self._load_channel_config(),
            "checkpoint": self._load_checkpoint_config(),
        }

        for section, values in (overrides or {}).items():
            if section not in sections:
                raise ValueError(f"Unknown configuration section: {section}")
            sections[section].update({k: v for k, v in values.items() if v is not None})

        config = AppConfig(
            environment=self._load_environment(),
            database=DatabaseConfig(**sections["database"]),
            producer=ProducerConfig(**sections["producer"]),
            consumer=ConsumerConfig(**sections["consumer"]),
            channel=ChannelConfig(**sections["channel"]),
            checkpoint=CheckpointConfig(**sections["checkpoint"]),
        )

        self._loaded_config = config
        return config

    def get_loaded_config(self) -> Optional[AppConfig]:
        """Get the currently loaded configuration."""
        return self._loaded_config

    def _load_env_file(self):
        """Load environment variables from .env file."""
        if os.path.exists(self.env_file):
            load_dotenv(self.env_file, override=False)
            logger.debug(f"Loaded environment variables from {self.env_file}")
        else:
            logger.debug(f"Environment file {self.env_file} not found")

    def _load_environment(self) -> Environment:
        env_str = os.getenv("ENVIRONMENT", "development").lower()
        if env_str in [member.value for member in Environment]:
            return Environment(env_str)
        logger.warning(f"Unknown ENVIRONMENT '{env_str}', using development")
        return Environment.DEVELOPMENT

    def _load_database_config(self) -> Dict[str, Any]:
        shard_dsns_raw = os.getenv("SHARD_DSNS", "")
        try:
            shard_dsns = json.loads(shard_dsns_raw) if shard_dsns_raw else {}
        except json.JSONDecodeError as e:
            raise ValueError(f"SHARD_DSNS is not valid JSON: {e}") from e

        return {
            "host": os.getenv("POSTGRES_HOST", "localhost"),
            "port": int(os.getenv("POSTGRES_PORT", "5432")),
            "user": os.getenv("POSTGRES_USER", "postgres"),
            "password": os.getenv("POSTGRES_PASSWORD", "postgres"),
            "database_name": os.getenv("POSTGRES_DBNAME", "shardload"),
            "schema_name": os.getenv("POSTGRES_SCHEMA", "public"),
            "pool_size": int(os.getenv("POSTGRES_POOL_SIZE", "20")),
            "max_overflow": int(os.getenv("POSTGRES_MAX_OVERFLOW", "10")),
            "shard_dsns": shard_dsns,
        }

    def _load_producer_config(self) -> Dict[str, Any]:
        return {
            "files": _env_list("LOAD_FILES"),
            "block_size": int(os.getenv("LOAD_BLOCK_SIZE", "5000")),
            "separator": os.getenv("LOAD_SEPARATOR", ","),
            "encoding": os.getenv("LOAD_ENCODING", "utf-8"),
            "has_header": _env_bool("LOAD_HAS_HEADER", "false"),
            "null_value": os.getenv("LOAD_NULL_VALUE", "\\N"),
            "parse_error_policy": os.getenv("LOAD_PARSE_ERROR_POLICY", "skip"),
            "workers": int(os.getenv("LOAD_PRODUCER_WORKERS", "4")),
        }

    def _load_consumer_config(self) -> Dict[str, Any]:
        columns = _env_list("LOAD_COLUMNS")
        return {
            "tables": _env_list("LOAD_TABLES"),
            "columns": columns or None,
            "operation": os.getenv("LOAD_OPERATION", "insert"),
            "workers": int(os.getenv("LOAD_CONSUMER_WORKERS") or get_max_workers()),
            "batch_size": int(os.getenv("LOAD_BATCH_SIZE", "500")),
            "max_retries": int(os.getenv("LOAD_MAX_RETRIES", "3")),
            "retry_min_wait_seconds": float(os.getenv("LOAD_RETRY_MIN_WAIT_SECONDS", "0.5")),
            "retry_max_wait_seconds": float(os.getenv("LOAD_RETRY_MAX_WAIT_SECONDS", "10")),
            "write_timeout_seconds": int(os.getenv("LOAD_WRITE_TIMEOUT_SECONDS", "60")),
        }

    def _load_channel_config(self) -> Dict[str, Any]:
        return {
            "capacity": int(os.getenv("CHANNEL_CAPACITY", "1024")),
            "publish_timeout_seconds": _env_optional_float("CHANNEL_PUBLISH_TIMEOUT_SECONDS"),
            "claim_poll_seconds": float(os.getenv("CHANNEL_CLAIM_POLL_SECONDS", "0.2")),
        }

    def _load_checkpoint_config(self) -> Dict[str, Any]:
        return {
            "path": os.getenv("CHECKPOINT_PATH", "shardload.checkpoint.json"),
            "interval_seconds": float(os.getenv("CHECKPOINT_INTERVAL_SECONDS", "60")),
            "initial_delay_seconds": float(os.getenv("CHECKPOINT_INITIAL_DELAY_SECONDS", "30")),
            "force_drain_timeout_seconds": float(os.getenv("CHECKPOINT_FORCE_DRAIN_TIMEOUT_SECONDS", "300")),
            "resume": _env_bool("CHECKPOINT_RESUME", "true"),
        }


def load_config(env_file: Optional[str] = None,
                overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> AppConfig:
    """Convenience function to load configuration."""
    return ConfigLoader(env_file=env_file).load_configuration(overrides=overrides)
