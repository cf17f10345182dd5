"""
Database command engine contract.

Every call blocks until the engine reports a terminal status. Failures are
raised as ``ConnectivityError`` (cannot connect) or ``ExternalEngineError``
(the command itself failed), the latter carrying the engine's messages
verbatim.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from dbstage.models.config import BackupKind, SqlCredential


@dataclass
class ConnectionCheckResult:
    """Outcome of a successful connectivity check."""
    server: str
    database: str
    database_exists: bool
    state: Optional[str] = None


@dataclass
class BackupOptions:
    """Options for a native backup."""
    kind: BackupKind = BackupKind.FULL
    compression: bool = False
    copy_only: bool = False
    checksum: bool = True


@dataclass
class RestoreOptions:
    """Options for a native restore."""
    data_file_location: Optional[str] = None
    log_file_location: Optional[str] = None
    replace: bool = False
    verify_headers: bool = True


class DatabaseEngine(ABC):
    """Abstract database command engine."""
    
    @abstractmethod
    def check_connectivity(
        self,
        server: str,
        database: str,
        credential: SqlCredential
    ) -> ConnectionCheckResult:
        """Connect to the administrative database and look up ``database``."""
        pass
    
    @abstractmethod
    def run_backup(
        self,
        server: str,
        database: str,
        credential: SqlCredential,
        destination: str,
        options: BackupOptions
    ) -> str:
        """Back up ``database`` to a disk path or URL; returns the destination."""
        pass
    
    @abstractmethod
    def run_restore(
        self,
        server: str,
        database: str,
        credential: SqlCredential,
        source: str,
        options: RestoreOptions
    ) -> None:
        """Restore ``database`` from a disk path or URL."""
        pass
    
    @abstractmethod
    def ensure_url_credential(
        self,
        server: str,
        credential: SqlCredential,
        container_url: str,
        sas_token: str
    ) -> None:
        """Create or replace the server credential used for backup/restore to URL."""
        pass
    
    @abstractmethod
    def list_memory_optimized_objects(
        self,
        server: str,
        database: str,
        credential: SqlCredential
    ) -> List[str]:
        """Names of memory-optimized tables and filegroups in ``database``."""
        pass
