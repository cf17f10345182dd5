"""
SqlPackage wrapper for BACPAC export and import.

The executable is invoked as a blocking child process with a fixed argument
contract; the exit status and captured output are returned unchanged.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from dbstage.core.exceptions import ExternalEngineError
from dbstage.models.config import SqlCredential

logger = logging.getLogger(__name__)

_SECRET_ARGS = ("/SourcePassword:", "/TargetPassword:")


@dataclass
class PackageResult:
    """Exit status and captured output of one SqlPackage run."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    
    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0
    
    @property
    def diagnostics(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


def mask_arguments(args: List[str]) -> List[str]:
    """Replace password values for logging."""
    masked = []
    for arg in args:
        for prefix in _SECRET_ARGS:
            if arg.startswith(prefix):
                arg = prefix + "****"
                break
        masked.append(arg)
    return masked


def _bool_arg(value: bool) -> str:
    return "True" if value else "False"


class SqlPackageEngine:
    """Runs the SqlPackage executable."""
    
    def __init__(
        self,
        executable: str = "sqlpackage",
        timeout: Optional[int] = None,
        trust_server_certificate: bool = False
    ):
        self.executable = executable
        self.timeout = timeout
        self.trust_server_certificate = trust_server_certificate
    
    def export_args(
        self,
        server: str,
        database: str,
        credential: SqlCredential,
        target_file: Union[str, Path]
    ) -> List[str]:
        return [
            "/Action:Export",
            f"/SourceServerName:{server}",
            f"/SourceDatabaseName:{database}",
            f"/SourceUser:{credential.username}",
            f"/SourcePassword:{credential.password}",
            f"/SourceTrustServerCertificate:{_bool_arg(self.trust_server_certificate)}",
            f"/TargetFile:{target_file}",
        ]
    
    def import_args(
        self,
        source_file: Union[str, Path],
        server: str,
        database: str,
        credential: SqlCredential
    ) -> List[str]:
        return [
            "/Action:Import",
            f"/SourceFile:{source_file}",
            f"/TargetServerName:{server}",
            f"/TargetDatabaseName:{database}",
            f"/TargetUser:{credential.username}",
            f"/TargetPassword:{credential.password}",
            f"/TargetTrustServerCertificate:{_bool_arg(self.trust_server_certificate)}",
        ]
    
    def export(
        self,
        server: str,
        database: str,
        credential: SqlCredential,
        target_file: Union[str, Path]
    ) -> PackageResult:
        """Export ``database`` to a BACPAC file."""
        return self._run(self.export_args(server, database, credential, target_file))
    
    def import_package(
        self,
        source_file: Union[str, Path],
        server: str,
        database: str,
        credential: SqlCredential
    ) -> PackageResult:
        """Import a BACPAC file into ``database``."""
        return self._run(self.import_args(source_file, server, database, credential))
    
    def _run(self, args: List[str]) -> PackageResult:
        command = [self.executable] + args
        logger.debug(f"Running: {' '.join([self.executable] + mask_arguments(args))}")
        
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False
            )
        except FileNotFoundError as e:
            raise ExternalEngineError(
                f"SqlPackage executable not found: {self.executable}",
                diagnostics=str(e)
            ) from e
        except subprocess.TimeoutExpired as e:
            partial = "\n".join(
                part.decode(errors="replace") if isinstance(part, bytes) else part
                for part in (e.stdout, e.stderr) if part
            )
            raise ExternalEngineError(
                f"SqlPackage did not finish within {self.timeout}s",
                diagnostics=partial
            ) from e
        
        result = PackageResult(
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        logger.debug(f"SqlPackage exited with code {result.exit_code}")
        return result
