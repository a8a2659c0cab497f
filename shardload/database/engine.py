import threading
from typing import Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy import pool

from ..setup.config import DatabaseConfig
from ..setup.logging import logger


class Database:
    """
    Represents a database connection and its associated SQLAlchemy Base.
    Provides a method to create all tables for its Base.
    """

    def __init__(self, engine, base):
        self.engine = engine
        self.base = base

    def create_tables(self):
        """Create all tables for the associated Base in this database."""
        self.base.metadata.create_all(self.engine)

    def dispose(self):
        self.engine.dispose()

    def __repr__(self):
        return f"Database(engine={self.engine}, base={self.base})"


# Create the pooled database engine
def create_database_instance(uri, base, pool_size: int = 20, max_overflow: int = 10):
    engine = create_engine(
        uri,
        poolclass=pool.QueuePool,  # Use connection pooling
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=3600,  # Periodically recycle connections
        pool_pre_ping=True,
    )
    return Database(engine=engine, base=base)


class ShardEngineRegistry:
    """
    Pooled engines of the shard databases, keyed by connection name.

    Engines are created lazily on first use. A connection name with no DSN in
    the configuration (including the empty name) resolves to the coordinator.
    """

    def __init__(self, database_config: DatabaseConfig, coordinator: Database):
        self.database_config = database_config
        self.coordinator = coordinator
        self._engines: Dict[str, Engine] = {}
        self._lock = threading.Lock()

    def engine_for(self, connection_name: Optional[str]) -> Engine:
        dsn = self.database_config.shard_dsns.get(connection_name or "")
        if dsn is None:
            return self.coordinator.engine

        with self._lock:
            engine = self._engines.get(connection_name)
            if engine is None:
                logger.info(f"[ShardEngineRegistry] Opening pool for shard connection '{connection_name}'")
                engine = create_engine(
                    dsn,
                    poolclass=pool.QueuePool,
                    pool_size=self.database_config.pool_size,
                    max_overflow=self.database_config.max_overflow,
                    pool_recycle=3600,
                    pool_pre_ping=True,
                )
                self._engines[connection_name] = engine
            return engine

    def dispose(self) -> None:
        with self._lock:
            for name, engine in self._engines.items():
                logger.debug(f"[ShardEngineRegistry] Disposing pool '{name}'")
                engine.dispose()
            self._engines.clear()

    def __len__(self) -> int:
        return len(self._engines)
