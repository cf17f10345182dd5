"""
dbstage: move SQL Server databases between servers through blob storage.

A batch of declarative operation records drives export, staging, import
and cleanup, one record at a time.
"""

__version__ = "0.1.0"
__author__ = "dbstage team"

from dbstage.core.exceptions import DbStageError
from dbstage.models.config import OperationRecord, RunnerSettings
from dbstage.models.session import BatchSummary, OperationResult

__all__ = [
    "__version__",
    "DbStageError",
    "OperationRecord",
    "RunnerSettings",
    "BatchSummary",
    "OperationResult",
]
