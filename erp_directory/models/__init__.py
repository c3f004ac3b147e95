"""
models/__init__.py
------------------
Re-export all models so create_tables.py (and Alembic's env.py) can import
Base and discover all tables via a single import:

    from erp_directory.models import Base
"""

from erp_directory.db.base import Base
from erp_directory.models.company import Company, CompanyModule, Module
from erp_directory.models.company_directory import CompanyDirectory
from erp_directory.models.directory import DIRECTORY_TYPES, Directory, DirectoryField
from erp_directory.models.record import DirectoryRecord, DirectoryValue

__all__ = [
    "Base",
    "Company",
    "CompanyModule",
    "Module",
    "CompanyDirectory",
    "DIRECTORY_TYPES",
    "Directory",
    "DirectoryField",
    "DirectoryRecord",
    "DirectoryValue",
]
