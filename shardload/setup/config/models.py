"""
Pydantic configuration models with validation.

Configuration Architecture:
==========================

DatabaseConfig: Coordinator database holding the logical schema and the shard catalog
ProducerConfig: Input files and how they are cut into blocks and parsed
ConsumerConfig: Target tables, write operation, batching and retry budget
ChannelConfig: Capacity and wait limits of the event channel
CheckpointConfig: Checkpoint file location and progress scan schedule
AppConfig: Top-level application configuration (combines all of the above)
"""

from pydantic import (
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from enum import Enum
from typing import Literal, Optional, Dict, List
from pathlib import Path

from ...utils.misc import get_max_workers


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class WriteOperation(str, Enum):
    """Row-batch write applied to every shard."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class DatabaseConfig(BaseModel):
    """Coordinator database connection configuration."""

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, ge=1, le=65535, description="Database port")
    user: str = Field(default="postgres", description="Database username")
    password: str = Field(default="postgres", description="Database password")
    database_name: str = Field(default="shardload", description="Database name")
    schema_name: str = Field(default="public", description="Schema holding the logical tables")
    pool_size: int = Field(default=20, ge=1, le=200, description="Connections kept per engine")
    max_overflow: int = Field(default=10, ge=0, le=200, description="Extra connections per engine")

    # Shard connection name -> DSN. Names missing here use the coordinator database.
    shard_dsns: Dict[str, str] = Field(default_factory=dict, description="Shard connection DSNs")

    @field_validator('host')
    @classmethod
    def validate_host(cls, v):
        if not v.strip():
            raise ValueError('Host cannot be empty')
        return v.strip()

    def get_connection_string(self, db_name: Optional[str] = None) -> str:
        """Get PostgreSQL connection string."""
        target_db = db_name or self.database_name
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{target_db}"


class ProducerConfig(BaseModel):
    """Input files and block production settings."""

    files: List[Path] = Field(default_factory=list, description="Ordered input files")
    block_size: int = Field(default=5000, ge=1, le=10_000_000, description="Records per block")
    separator: str = Field(default=",", description="Field separator (one character)")
    encoding: str = Field(default="utf-8", description="Text encoding of the input files")
    has_header: bool = Field(default=False, description="Skip the first record of every file")
    null_value: Optional[str] = Field(default="\\N", description="Field value loaded as NULL")
    parse_error_policy: Literal["skip", "abort"] = Field(
        default="skip",
        description="What a malformed record does: skip-and-log or abort the run"
    )
    workers: int = Field(default=4, ge=1, le=64, description="Concurrent file producers")

    @field_validator('separator')
    @classmethod
    def validate_separator(cls, v):
        if len(v) != 1:
            raise ValueError('Separator must be exactly one character')
        return v

    @field_validator('encoding')
    @classmethod
    def validate_encoding(cls, v):
        import codecs
        try:
            codecs.lookup(v)
        except LookupError:
            raise ValueError(f'Unknown encoding: {v}')
        return v


class ConsumerConfig(BaseModel):
    """Routing consumer settings."""

    tables: List[str] = Field(default_factory=list, description="Target logical tables")
    columns: Optional[List[str]] = Field(
        default=None,
        description="Explicit column order of the input files (single table only)"
    )
    operation: WriteOperation = Field(default=WriteOperation.INSERT, description="Write operation")
    workers: int = Field(default_factory=get_max_workers, ge=1, le=128, description="Consumer worker threads")
    batch_size: int = Field(default=500, ge=1, le=100_000, description="Rows per batched write")
    max_retries: int = Field(default=3, ge=1, le=10, description="Attempts per batched write")
    retry_min_wait_seconds: float = Field(default=0.5, ge=0.0, le=60.0)
    retry_max_wait_seconds: float = Field(default=10.0, ge=0.0, le=600.0)
    write_timeout_seconds: int = Field(
        default=60, ge=1, le=3600,
        description="Statement timeout of a batched write"
    )

    @model_validator(mode='after')
    def validate_columns(self):
        if self.columns is not None and len(self.tables) != 1:
            raise ValueError('An explicit column list requires exactly one table')
        if self.retry_min_wait_seconds > self.retry_max_wait_seconds:
            raise ValueError('retry_min_wait_seconds cannot exceed retry_max_wait_seconds')
        return self


class ChannelConfig(BaseModel):
    """Bounded event channel settings."""

    capacity: int = Field(default=1024, ge=1, le=1_000_000, description="Slots in the channel")
    publish_timeout_seconds: Optional[float] = Field(
        default=None, gt=0,
        description="Give up publishing after this wait (None waits forever)"
    )
    claim_poll_seconds: float = Field(default=0.2, gt=0, le=10.0)


class CheckpointConfig(BaseModel):
    """Checkpoint persistence and progress scan schedule."""

    path: Path = Field(default=Path("shardload.checkpoint.json"), description="Checkpoint file")
    interval_seconds: float = Field(default=60.0, gt=0, description="Delay between progress scans")
    initial_delay_seconds: float = Field(default=30.0, ge=0, description="Delay before the first scan")
    force_drain_timeout_seconds: float = Field(
        default=300.0, gt=0,
        description="Upper bound on waiting for in-flight blocks at shutdown"
    )
    resume: bool = Field(default=True, description="Seed producers from an existing checkpoint")


class AppConfig(BaseModel):
    """Main application configuration combining all sections."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Application environment mode")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    producer: ProducerConfig = Field(default_factory=ProducerConfig)
    consumer: ConsumerConfig = Field(default_factory=ConsumerConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)

    def is_development_mode(self) -> bool:
        return self.environment == Environment.DEVELOPMENT
