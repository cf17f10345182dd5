"""
Preflight validation for one operation record.

This module provides the PreflightValidator, which runs field validation
and then every applicable reachability check, aggregating the results
into a PreflightReport with Rich-formatted display.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from dbstage.core.exceptions import ConnectivityError, DbStageError
from dbstage.database.base import DatabaseEngine
from dbstage.models.config import ArtifactFormat, DeploymentType, OperationRecord, RunnerSettings
from dbstage.storage.base import BlobStorage, StorageFactory
from dbstage.utils.naming import derive_server_address, resolve_local_artifact_path
from dbstage.validation.connectivity import ConnectivityCheck, ConnectivityValidator, ValidationResult
from dbstage.validation.fields import validate_fields

logger = logging.getLogger(__name__)


@dataclass
class PreflightReport:
    """Aggregated preflight check results for one record."""
    operation_id: str
    checks: List[ConnectivityCheck] = field(default_factory=list)
    
    @property
    def passed(self) -> bool:
        return not any(check.failed for check in self.checks)
    
    @property
    def failures(self) -> List[ConnectivityCheck]:
        return [c for c in self.checks if c.result == ValidationResult.FAILED]
    
    @property
    def warnings(self) -> List[ConnectivityCheck]:
        return [c for c in self.checks if c.result == ValidationResult.WARNING]
    
    def first_error(self) -> Optional[Exception]:
        for check in self.failures:
            if check.error is not None:
                return check.error
        return None
    
    def summary(self) -> str:
        if self.passed:
            return f"{len(self.checks)} check(s) passed"
        return "; ".join(f"{c.name}: {c.message}" for c in self.failures)


class PreflightValidator:
    """
    Runs the reachability checks that apply to a record's enabled actions.
    
    Checks are independent: all of them run and a single failure marks the
    whole preflight as failed.
    """
    
    def __init__(
        self,
        db_engine: DatabaseEngine,
        settings: Optional[RunnerSettings] = None,
        console: Optional[Console] = None
    ):
        self.settings = settings or RunnerSettings()
        self.connectivity = ConnectivityValidator(db_engine, self.settings.min_free_disk_gb)
        self.console = console or Console()
    
    def validate(self, record: OperationRecord, storage_factory: StorageFactory) -> PreflightReport:
        """
        Run field validation, then live checks.
        
        Args:
            record: Operation record
            storage_factory: Builds the blob storage client for the record's account
        
        Returns:
            PreflightReport with every check result
        
        Raises:
            ValidationError: If required fields are missing; no check runs
        """
        validate_fields(record)
        return self.run_checks(record, storage_factory(record.storage))
    
    def run_checks(self, record: OperationRecord, storage: Optional[BlobStorage]) -> PreflightReport:
        """Run the live checks for an already field-validated record."""
        report = PreflightReport(operation_id=record.operation_id or "")
        suffix = self.settings.server_suffix
        
        if record.export_enabled:
            source_server = derive_server_address(record.source_server, suffix)
            source_check = self.connectivity.check_database(
                "source", source_server, record.database_name,
                record.source_credential, must_exist=True
            )
            report.checks.append(source_check)
            
            if (
                not source_check.failed
                and record.deployment == DeploymentType.AZURE_MI
                and record.backup_format == ArtifactFormat.BAK
            ):
                report.checks.append(self.connectivity.check_memory_optimized(
                    source_server, record.database_name, record.source_credential
                ))
        
        if record.import_enabled:
            report.checks.append(self.connectivity.check_database(
                "destination",
                derive_server_address(record.destination_server, suffix),
                record.database_name,
                record.destination_credential,
                must_exist=False
            ))
        
        if record.has_action:
            if storage is None:
                report.checks.append(ConnectivityCheck(
                    name="Storage container",
                    result=ValidationResult.FAILED,
                    message="No storage location configured",
                    error=ConnectivityError("No storage location configured"),
                ))
            else:
                report.checks.append(
                    self.connectivity.check_storage(storage, record.storage_container)
                )
        
        if record.export_enabled:
            try:
                local_path = resolve_local_artifact_path(
                    record.local_artifact_path, record.database_name, record.operation_id
                )
            except DbStageError as e:
                report.checks.append(ConnectivityCheck(
                    name="Local artifact path",
                    result=ValidationResult.FAILED,
                    message=str(e),
                    error=e,
                ))
            else:
                report.checks.append(self.connectivity.check_disk_space(local_path))
        
        for check in report.checks:
            logger.debug(f"[{report.operation_id}] {check.name}: {check.result.value} - {check.message}")
        
        return report
    
    def display_report(self, report: PreflightReport):
        """Display a preflight report as a Rich table."""
        table = Table(
            title=f"Preflight {report.operation_id}",
            show_header=True,
            header_style="bold magenta"
        )
        table.add_column("Check", style="cyan")
        table.add_column("Result", justify="center")
        table.add_column("Message")
        table.add_column("Remediation", style="dim")
        
        colors = {
            ValidationResult.SUCCESS: "green",
            ValidationResult.FAILED: "red",
            ValidationResult.WARNING: "yellow",
            ValidationResult.SKIPPED: "dim",
        }
        for check in report.checks:
            color = colors[check.result]
            table.add_row(
                check.name,
                f"[{color}]{check.result.value}[/{color}]",
                check.message,
                check.remediation or ""
            )
        
        self.console.print(table)
