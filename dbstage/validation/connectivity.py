"""
Live reachability checks run during preflight.

Each check returns a ``ConnectivityCheck`` instead of raising so that every
check runs and the results can be aggregated.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import psutil

from dbstage.core.exceptions import (
    ConnectivityError,
    ConnectivityTimeoutError,
    DbStageError,
    ResourceError,
)
from dbstage.database.base import DatabaseEngine
from dbstage.models.config import SqlCredential
from dbstage.storage.base import BlobStorage
from dbstage.utils.helpers import format_bytes, nearest_existing_dir

logger = logging.getLogger(__name__)

FIREWALL_REMEDIATION = (
    "Add this machine's public IP address to the server firewall allow-list "
    "(or the Managed Instance NSG rule) and retry"
)


class ValidationResult(Enum):
    """Validation result status"""
    SUCCESS = "success"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"


@dataclass
class ConnectivityCheck:
    """Result of a connectivity check"""
    name: str
    result: ValidationResult
    message: str
    details: Optional[Dict[str, Any]] = None
    remediation: Optional[str] = None
    error: Optional[Exception] = None
    
    @property
    def failed(self) -> bool:
        return self.result == ValidationResult.FAILED


def _failure(name: str, error: Exception) -> ConnectivityCheck:
    remediation = None
    if isinstance(error, ConnectivityTimeoutError):
        remediation = FIREWALL_REMEDIATION
    return ConnectivityCheck(
        name=name,
        result=ValidationResult.FAILED,
        message=str(error),
        remediation=remediation,
        error=error,
    )


class ConnectivityValidator:
    """
    Checks the source and destination servers, the storage container and
    the local disk.
    """
    
    def __init__(self, db_engine: DatabaseEngine, min_free_disk_gb: float = 10.0):
        self.db_engine = db_engine
        self.min_free_disk_gb = min_free_disk_gb
    
    def check_database(
        self,
        role: str,
        server: str,
        database: str,
        credential: SqlCredential,
        must_exist: bool
    ) -> ConnectivityCheck:
        """
        Check a server through its administrative database.
        
        Args:
            role: "source" or "destination", used in the check name
            server: Fully qualified server address
            database: Database the check looks up
            credential: SQL login
            must_exist: Whether a missing database fails the check
        
        Returns:
            ConnectivityCheck result
        """
        name = f"{role.title()} database {server}/{database}"
        try:
            outcome = self.db_engine.check_connectivity(server, database, credential)
        except DbStageError as e:
            logger.debug(f"{name} check failed: {e}")
            return _failure(name, e)
        except Exception as e:
            return _failure(name, ConnectivityError(f"Unexpected error checking {server}: {e}", target=server))
        
        if outcome.database_exists:
            if must_exist:
                return ConnectivityCheck(
                    name=name,
                    result=ValidationResult.SUCCESS,
                    message=f"Connected; database state {outcome.state or 'unknown'}",
                    details={"state": outcome.state},
                )
            return ConnectivityCheck(
                name=name,
                result=ValidationResult.WARNING,
                message=f"Database {database} already exists on {server}",
                details={"state": outcome.state},
                remediation="Import into an existing database fails unless it is empty; drop it first",
            )
        
        if must_exist:
            error = ConnectivityError(f"Database {database} not found on {server}", target=server)
            check = _failure(name, error)
            check.remediation = "Check the database name for typos"
            return check
        return ConnectivityCheck(
            name=name,
            result=ValidationResult.SUCCESS,
            message="Connected; database will be created",
        )
    
    def check_storage(self, storage: BlobStorage, container: str) -> ConnectivityCheck:
        """Confirm the storage container is reachable with the given key."""
        name = f"Storage container {storage.account_name}/{container}"
        try:
            storage.check_container(container)
        except DbStageError as e:
            return _failure(name, e)
        except Exception as e:
            return _failure(name, ConnectivityError(f"Unexpected storage error: {e}", target=name))
        return ConnectivityCheck(
            name=name,
            result=ValidationResult.SUCCESS,
            message="Container accessible",
        )
    
    def check_disk_space(self, target_file: Union[str, Path]) -> ConnectivityCheck:
        """Check free space on the volume that will hold the local artifact."""
        directory = nearest_existing_dir(Path(target_file).parent)
        name = f"Disk space at {directory}"
        required = int(self.min_free_disk_gb * 1024 ** 3)
        try:
            usage = psutil.disk_usage(str(directory))
        except OSError as e:
            return _failure(name, ResourceError(f"Cannot read disk usage of {directory}: {e}"))
        
        details = {"free_bytes": usage.free, "required_bytes": required}
        if usage.free < required:
            return ConnectivityCheck(
                name=name,
                result=ValidationResult.FAILED,
                message=(
                    f"Only {format_bytes(usage.free)} free, "
                    f"{format_bytes(required)} required"
                ),
                details=details,
                remediation="Free disk space or point Local_Backup_File_Path at a larger volume",
                error=ResourceError(
                    f"Insufficient disk space at {directory}: {format_bytes(usage.free)} free"
                ),
            )
        return ConnectivityCheck(
            name=name,
            result=ValidationResult.SUCCESS,
            message=f"{format_bytes(usage.free)} free",
            details=details,
        )
    
    def check_memory_optimized(
        self,
        server: str,
        database: str,
        credential: SqlCredential
    ) -> ConnectivityCheck:
        """Warn when the source holds memory-optimized objects."""
        name = f"Memory-optimized objects in {database}"
        try:
            objects = self.db_engine.list_memory_optimized_objects(server, database, credential)
        except DbStageError as e:
            return ConnectivityCheck(
                name=name,
                result=ValidationResult.WARNING,
                message=f"Could not inspect memory-optimized objects: {e}",
            )
        
        if objects:
            return ConnectivityCheck(
                name=name,
                result=ValidationResult.WARNING,
                message=f"Found {len(objects)}: {', '.join(objects[:5])}",
                details={"objects": objects},
                remediation=(
                    "Restoring this backup to a General Purpose Managed Instance fails; "
                    "remove the objects first or target Business Critical"
                ),
            )
        return ConnectivityCheck(name=name, result=ValidationResult.SUCCESS, message="None found")
