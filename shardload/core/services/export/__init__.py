from .service import DdlExportService

__all__ = ["DdlExportService"]
