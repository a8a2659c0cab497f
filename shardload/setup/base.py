from typing import Union

import sqlalchemy.exc
from psycopg2 import OperationalError
from sqlalchemy import text
from sqlalchemy_utils import database_exists

from .config import DatabaseConfig
from ..database.engine import create_database_instance as create_db_engine, Database
from .logging import logger


def init_database(database_config: DatabaseConfig, base) -> Union[Database, None]:
    """
    Connects to the coordinator database and checks it is reachable.
    Returns a Database object with engine and base.
    Catalog table creation is done via Database.create_tables().

    Args:
        database_config: Database configuration object.
        base: The SQLAlchemy declarative base (CatalogBase).

    Returns:
        Database: A Database object for the connection.
        None: If the database does not exist or cannot be reached.
    """
    db_uri = database_config.get_connection_string()
    database_obj = create_db_engine(
        db_uri, base,
        pool_size=database_config.pool_size,
        max_overflow=database_config.max_overflow,
    )

    try:
        if not database_exists(db_uri):
            logger.error(f'Database "{database_config.database_name}" does not exist')
            database_obj.dispose()
            return None
        with database_obj.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            logger.info(
                f'Connection to database "{database_config.database_name}" established!'
            )
    except (OperationalError, sqlalchemy.exc.OperationalError) as e:
        logger.error(f"Error connecting to the database: {e}")
        database_obj.dispose()
        return None
    return database_obj
