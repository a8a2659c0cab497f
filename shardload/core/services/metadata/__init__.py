from .repository import SqlMetadataRepository
from .service import MetadataResolver, table_for_file

__all__ = ["MetadataResolver", "SqlMetadataRepository", "table_for_file"]
