"""
Database engines for dbstage.

This module provides the database command engine contract, its SQL Server
implementation and the SqlPackage export/import wrapper.
"""

from dbstage.database.base import BackupOptions, DatabaseEngine, ConnectionCheckResult, RestoreOptions
from dbstage.database.package_engine import PackageResult, SqlPackageEngine

__all__ = [
    "BackupOptions",
    "DatabaseEngine",
    "ConnectionCheckResult",
    "RestoreOptions",
    "PackageResult",
    "SqlPackageEngine",
]
