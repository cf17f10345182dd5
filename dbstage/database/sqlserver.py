"""
SQL Server implementation of the database command engine.

Talks to Azure SQL Database, Managed Instance and SQL Server over ODBC
(pyodbc). Backup and restore statements run in autocommit mode and every
result set is drained, so the call returns only once the server reports the
task finished.
"""

import logging
from typing import List, Optional, Sequence, Tuple

try:
    import pyodbc
    PYODBC_AVAILABLE = True
except ImportError:
    pyodbc = None
    PYODBC_AVAILABLE = False

from dbstage.core.exceptions import (
    ConnectivityError,
    ConnectivityTimeoutError,
    ExternalEngineError,
)
from dbstage.database.base import (
    BackupOptions,
    DatabaseEngine,
    ConnectionCheckResult,
    RestoreOptions,
)
from dbstage.models.config import BackupKind, SqlCredential

logger = logging.getLogger(__name__)

ADMIN_DATABASE = "master"
TIMEOUT_SQLSTATES = {"HYT00", "HYT01"}
TIMEOUT_HINT = (
    "Connection timed out; this is commonly a firewall or allow-list "
    "misconfiguration for the client IP address"
)


def quote_identifier(name: str) -> str:
    """Bracket-quote a SQL Server identifier."""
    return "[" + name.replace("]", "]]") + "]"


def quote_literal(value: str) -> str:
    """N-quoted SQL Server string literal."""
    return "N'" + value.replace("'", "''") + "'"


def _media_clause(location: str) -> str:
    kind = "URL" if location.lower().startswith(("https://", "http://")) else "DISK"
    return f"{kind} = {quote_literal(location)}"


def build_backup_statement(database: str, destination: str, options: BackupOptions) -> str:
    """Compose the BACKUP statement for the requested kind and options."""
    verb = "LOG" if options.kind == BackupKind.LOG else "DATABASE"
    with_options = []
    if options.kind == BackupKind.DIFFERENTIAL:
        with_options.append("DIFFERENTIAL")
    if options.copy_only:
        with_options.append("COPY_ONLY")
    if options.compression:
        with_options.append("COMPRESSION")
    if options.checksum:
        with_options.append("CHECKSUM")
    if not destination.lower().startswith(("https://", "http://")):
        with_options.append("INIT")
    with_options.append("STATS = 10")
    
    return (
        f"BACKUP {verb} {quote_identifier(database)} TO {_media_clause(destination)} "
        f"WITH {', '.join(with_options)}"
    )


def build_restore_statement(
    database: str,
    source: str,
    moves: Sequence[Tuple[str, str]] = (),
    replace: bool = False
) -> str:
    """Compose the RESTORE DATABASE statement, with optional MOVE clauses."""
    statement = f"RESTORE DATABASE {quote_identifier(database)} FROM {_media_clause(source)}"
    with_options = [
        f"MOVE {quote_literal(logical)} TO {quote_literal(physical)}"
        for logical, physical in moves
    ]
    if replace:
        with_options.append("REPLACE")
    if with_options:
        statement += " WITH " + ", ".join(with_options)
    return statement


def plan_file_moves(
    file_list: Sequence[Tuple[str, str, str]],
    database: str,
    data_file_location: Optional[str],
    log_file_location: Optional[str]
) -> List[Tuple[str, str]]:
    """
    Map RESTORE FILELISTONLY rows (logical name, physical name, type) to MOVE targets.
    
    Files whose type has no configured location keep their original path.
    """
    moves = []
    for index, (logical_name, physical_name, file_type) in enumerate(file_list):
        extension = physical_name.rsplit(".", 1)[-1] if "." in physical_name else ""
        if file_type == "L" and log_file_location:
            target_dir = log_file_location
        elif file_type != "L" and data_file_location:
            target_dir = data_file_location
        else:
            continue
        suffix = f"_{index}" if index else ""
        file_name = f"{database}{suffix}.{extension or ('ldf' if file_type == 'L' else 'mdf')}"
        separator = "\\" if "\\" in target_dir else "/"
        moves.append((logical_name, target_dir.rstrip("\\/") + separator + file_name))
    return moves


class SqlServerEngine(DatabaseEngine):
    """
    Database command engine backed by pyodbc.
    """
    
    def __init__(
        self,
        driver: str = "ODBC Driver 18 for SQL Server",
        connection_timeout: int = 30,
        trust_server_certificate: bool = False
    ):
        self.driver = driver
        self.connection_timeout = connection_timeout
        self.trust_server_certificate = trust_server_certificate
    
    def build_connection_string(self, server: str, database: str, credential: SqlCredential) -> str:
        return (
            f"DRIVER={{{self.driver}}};"
            f"SERVER=tcp:{server};"
            f"DATABASE={database};"
            f"UID={credential.username};"
            f"PWD={{{credential.password.replace('}', '}}')}}};"
            f"Encrypt=yes;"
            f"TrustServerCertificate={'yes' if self.trust_server_certificate else 'no'};"
            f"Connection Timeout={self.connection_timeout};"
        )
    
    def _connect(self, server: str, database: str, credential: SqlCredential, autocommit: bool = False):
        if not PYODBC_AVAILABLE:
            raise ConnectivityError(
                "pyodbc is required for SQL Server connections. Install with: pip install pyodbc",
                target=server
            )
        
        try:
            return pyodbc.connect(
                self.build_connection_string(server, database, credential),
                timeout=self.connection_timeout,
                autocommit=autocommit
            )
        except pyodbc.Error as e:
            raise self._classify_connect_error(e, server, database) from e
    
    @staticmethod
    def _classify_connect_error(error: Exception, server: str, database: str) -> ConnectivityError:
        sqlstate = error.args[0] if error.args else ""
        text = str(error)
        target = f"{server}/{database}"
        if sqlstate in TIMEOUT_SQLSTATES or "timeout" in text.lower():
            return ConnectivityTimeoutError(f"{TIMEOUT_HINT}: {target}: {text}", target=target)
        return ConnectivityError(f"Cannot connect to {target}: {text}", target=target)
    
    @staticmethod
    def _drain(cursor) -> List[str]:
        """Consume every result set; returns informational messages."""
        messages = []
        while True:
            for _, text in getattr(cursor, "messages", None) or []:
                messages.append(str(text))
            if not cursor.nextset():
                break
        return messages
    
    def check_connectivity(
        self,
        server: str,
        database: str,
        credential: SqlCredential
    ) -> ConnectionCheckResult:
        connection = self._connect(server, ADMIN_DATABASE, credential)
        try:
            cursor = connection.cursor()
            cursor.execute("SELECT name, state_desc FROM sys.databases WHERE name = ?", database)
            row = cursor.fetchone()
        except pyodbc.Error as e:
            raise self._classify_connect_error(e, server, database) from e
        finally:
            connection.close()
        
        return ConnectionCheckResult(
            server=server,
            database=database,
            database_exists=row is not None,
            state=row[1] if row is not None else None,
        )
    
    def run_backup(
        self,
        server: str,
        database: str,
        credential: SqlCredential,
        destination: str,
        options: BackupOptions
    ) -> str:
        statement = build_backup_statement(database, destination, options)
        logger.info(f"Backing up {database} on {server} ({options.kind.value}) to {destination}")
        
        connection = self._connect(server, ADMIN_DATABASE, credential, autocommit=True)
        try:
            cursor = connection.cursor()
            cursor.execute(statement)
            messages = self._drain(cursor)
        except pyodbc.Error as e:
            raise ExternalEngineError(
                f"Backup of {database} on {server} failed",
                diagnostics=str(e)
            ) from e
        finally:
            connection.close()
        
        for message in messages:
            logger.debug(message)
        return destination
    
    def run_restore(
        self,
        server: str,
        database: str,
        credential: SqlCredential,
        source: str,
        options: RestoreOptions
    ) -> None:
        connection = self._connect(server, ADMIN_DATABASE, credential, autocommit=True)
        try:
            cursor = connection.cursor()
            
            if options.verify_headers:
                cursor.execute(f"RESTORE HEADERONLY FROM {_media_clause(source)}")
                cursor.fetchall()
                self._drain(cursor)
            
            moves: List[Tuple[str, str]] = []
            if options.data_file_location or options.log_file_location:
                cursor.execute(f"RESTORE FILELISTONLY FROM {_media_clause(source)}")
                file_list = [(row[0], row[1], row[2]) for row in cursor.fetchall()]
                self._drain(cursor)
                moves = plan_file_moves(
                    file_list, database, options.data_file_location, options.log_file_location
                )
            
            logger.info(f"Restoring {database} on {server} from {source}")
            cursor.execute(build_restore_statement(database, source, moves, options.replace))
            for message in self._drain(cursor):
                logger.debug(message)
        except pyodbc.Error as e:
            raise ExternalEngineError(
                f"Restore of {database} on {server} from {source} failed",
                diagnostics=str(e)
            ) from e
        finally:
            connection.close()
    
    def ensure_url_credential(
        self,
        server: str,
        credential: SqlCredential,
        container_url: str,
        sas_token: str
    ) -> None:
        name = container_url.strip()
        secret = sas_token.lstrip("?")
        connection = self._connect(server, ADMIN_DATABASE, credential, autocommit=True)
        try:
            cursor = connection.cursor()
            cursor.execute("SELECT 1 FROM sys.credentials WHERE name = ?", name)
            if cursor.fetchone() is not None:
                cursor.execute(f"DROP CREDENTIAL {quote_identifier(name)}")
            cursor.execute(
                f"CREATE CREDENTIAL {quote_identifier(name)} "
                f"WITH IDENTITY = 'SHARED ACCESS SIGNATURE', SECRET = {quote_literal(secret)}"
            )
        except pyodbc.Error as e:
            raise ExternalEngineError(
                f"Failed to create storage credential on {server}",
                diagnostics=str(e)
            ) from e
        finally:
            connection.close()
        logger.info(f"Storage credential for {name} configured on {server}")
    
    def list_memory_optimized_objects(
        self,
        server: str,
        database: str,
        credential: SqlCredential
    ) -> List[str]:
        connection = self._connect(server, database, credential)
        try:
            cursor = connection.cursor()
            cursor.execute("SELECT name FROM sys.tables WHERE is_memory_optimized = 1")
            objects = [f"table:{row[0]}" for row in cursor.fetchall()]
            cursor.execute(
                "SELECT name FROM sys.filegroups WHERE type_desc = 'MEMORY_OPTIMIZED_DATA_FILEGROUP'"
            )
            objects.extend(f"filegroup:{row[0]}" for row in cursor.fetchall())
        except pyodbc.Error as e:
            raise ExternalEngineError(
                f"Failed to inspect memory-optimized objects in {database}",
                diagnostics=str(e)
            ) from e
        finally:
            connection.close()
        return objects
