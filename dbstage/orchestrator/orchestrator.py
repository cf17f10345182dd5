"""
Operation pipeline and batch runner.

This module provides the OperationPipeline, the per-record state machine
that sequences field validation, preflight, export, upload, locate and
download, import and cleanup, and the BatchRunner that drives it over a
sequence of records. A failure ends the current record only; the batch
always runs to completion.
"""

import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional

from rich.console import Console
from rich.table import Table

from dbstage.backup.dispatcher import ExportDispatcher, ImportDispatcher
from dbstage.backup.strategies import StrategyContext
from dbstage.core.error_handler import ErrorContext, ErrorHandler
from dbstage.core.exceptions import ConnectivityError, NotFoundError
from dbstage.database.base import DatabaseEngine
from dbstage.database.package_engine import SqlPackageEngine
from dbstage.models.config import ArtifactFormat, OperationRecord, RunnerSettings
from dbstage.models.session import (
    FAILURE_STATES,
    Artifact,
    BatchSummary,
    OperationResult,
    Outcome,
    PipelineStage,
    TerminalState,
)
from dbstage.storage.base import BlobStorage, StorageFactory
from dbstage.storage.locator import BackupArtifactLocator
from dbstage.utils.helpers import format_duration
from dbstage.utils.logging import LoggingReporter, Reporter
from dbstage.utils.naming import derive_blob_name, resolve_local_artifact_path, with_artifact_extension
from dbstage.validation.engine import PreflightValidator
from dbstage.validation.fields import validate_fields

logger = logging.getLogger(__name__)


class StageFailed(Exception):
    """Carries the stage an error occurred in up to the pipeline."""
    
    def __init__(self, stage: PipelineStage, error: Exception, message: Optional[str] = None):
        super().__init__(message or str(error))
        self.stage = stage
        self.error = error
        self.message = message or str(error)


class _RecordRun:
    """Mutable per-record state, private to one pipeline run."""
    
    def __init__(self, record: OperationRecord):
        self.record = record
        self.operation_id = record.operation_id or "?"
        self.warnings: List[str] = []
        self.uploaded_blob: Optional[str] = None
        self.imported_from: Optional[str] = None
        self.local_artifact: Optional[str] = None  # local file owned by this run, removed at cleanup


class OperationPipeline:
    """
    State machine for one operation record.
    
    Collaborators are injected so the pipeline can be exercised with mocks:
    the database engine, the SqlPackage engine, a factory building a blob
    storage client from a record's storage location, and the reporter that
    receives every stage event.
    """
    
    def __init__(
        self,
        settings: RunnerSettings,
        db_engine: DatabaseEngine,
        package_engine: SqlPackageEngine,
        storage_factory: StorageFactory,
        reporter: Optional[Reporter] = None,
        error_handler: Optional[ErrorHandler] = None,
        clock: Callable[[], datetime] = datetime.now,
        timer: Callable[[], float] = time.monotonic,
        preflight: Optional[PreflightValidator] = None
    ):
        self.settings = settings
        self.db_engine = db_engine
        self.package_engine = package_engine
        self.storage_factory = storage_factory
        self.reporter = reporter or LoggingReporter()
        self.error_handler = error_handler or ErrorHandler()
        self.clock = clock
        self.timer = timer
        self.preflight = preflight or PreflightValidator(db_engine, settings)
    
    def _emit(self, stage: PipelineStage, operation_id: str, outcome: Outcome, message: str):
        self.reporter.emit(stage, operation_id, outcome, message)
    
    @contextmanager
    def _stage(self, run: _RecordRun, stage: PipelineStage, description: str) -> Iterator[None]:
        """Report a stage and convert any error raised inside it into StageFailed."""
        self._emit(stage, run.operation_id, Outcome.STARTED, description)
        try:
            yield
        except StageFailed:
            raise
        except Exception as e:
            raise StageFailed(stage, e) from e
        self._emit(stage, run.operation_id, Outcome.SUCCEEDED, f"{stage.value} completed")
    
    def _warn(self, run: _RecordRun, stage: PipelineStage, message: str):
        run.warnings.append(message)
        self._emit(stage, run.operation_id, Outcome.WARNING, message)
    
    def run(self, record: OperationRecord) -> OperationResult:
        """
        Process one record to a terminal state.
        
        Args:
            record: Operation record
        
        Returns:
            OperationResult; never raises for a record-level failure
        """
        started = self.timer()
        run = _RecordRun(record)
        self._emit(PipelineStage.START, run.operation_id, Outcome.STARTED, record.describe())
        
        if not record.has_action:
            self._emit(
                PipelineStage.DONE, run.operation_id, Outcome.SKIPPED,
                "Export and import are both disabled"
            )
            return self._result(run, TerminalState.SKIPPED_NO_ACTION, started, message="No action requested")
        
        try:
            self._execute(run)
        except StageFailed as failure:
            return self._failed_result(run, failure, started)
        
        self._emit(PipelineStage.DONE, run.operation_id, Outcome.SUCCEEDED, "Operation completed")
        return self._result(run, TerminalState.DONE, started, message="Completed")
    
    def _execute(self, run: _RecordRun):
        record = run.record
        
        with self._stage(run, PipelineStage.FIELD_VALIDATION, "Checking required fields"):
            validate_fields(record)
            local_path = resolve_local_artifact_path(
                record.local_artifact_path, record.database_name, record.operation_id
            )
        
        storage = self._preflight(run)
        context = StrategyContext(
            settings=self.settings,
            db_engine=self.db_engine,
            package_engine=self.package_engine,
            storage=storage,
            clock=self.clock,
        )
        
        artifact: Optional[Artifact] = None
        if record.export_enabled:
            artifact = self._export(run, context, local_path)
            run.local_artifact = artifact.location
            self._upload(run, storage, artifact)
            # With import also enabled the artifact is handed over and cleaned up after import.
            if not record.import_enabled:
                self._cleanup(run, run.local_artifact)
        
        if record.import_enabled:
            dispatcher = ImportDispatcher(context)
            if artifact is None:
                artifact = self._acquire_for_import(run, dispatcher, storage, local_path)
            with self._stage(run, PipelineStage.IMPORT, f"Importing {artifact.location}"):
                dispatcher.import_artifact(record, artifact)
            run.imported_from = artifact.location
            self._cleanup(run, run.local_artifact)
    
    def _preflight(self, run: _RecordRun) -> BlobStorage:
        record = run.record
        with self._stage(run, PipelineStage.PREFLIGHT, "Checking reachability"):
            storage = self.storage_factory(record.storage)
            report = self.preflight.run_checks(record, storage)
            for check in report.warnings:
                self._warn(run, PipelineStage.PREFLIGHT, f"{check.name}: {check.message}")
            if not report.passed:
                error = report.first_error() or ConnectivityError(report.summary())
                raise StageFailed(PipelineStage.PREFLIGHT, error, message=report.summary())
        return storage
    
    def _export(self, run: _RecordRun, context: StrategyContext, local_path: str) -> Artifact:
        record = run.record
        dispatcher = ExportDispatcher(context)
        artifact_format = dispatcher.select_format(record)
        if artifact_format != record.backup_format:
            self._warn(
                run, PipelineStage.EXPORT,
                f"{record.backup_format.value} is not available for {record.deployment_type}; "
                f"exporting {artifact_format.value}"
            )
        
        with self._stage(run, PipelineStage.EXPORT, f"Exporting {record.database_name} as {artifact_format.value}"):
            artifact = dispatcher.export(record, local_path)
        logger.info(f"[{run.operation_id}] Exported {artifact.location}")
        return artifact
    
    def _upload(self, run: _RecordRun, storage: BlobStorage, artifact: Artifact):
        record = run.record
        if artifact.is_staged:
            run.uploaded_blob = artifact.blob_name
            self._emit(
                PipelineStage.UPLOAD, run.operation_id, Outcome.SKIPPED,
                f"Artifact already staged as {artifact.blob_name}"
            )
            return
        
        blob_name = derive_blob_name(record.operation_id, record.database_name, self.clock(), artifact.format)
        with self._stage(run, PipelineStage.UPLOAD, f"Uploading to {record.storage_container}/{blob_name}"):
            url = storage.upload(record.storage_container, blob_name, artifact.location)
        artifact.blob_name = blob_name
        artifact.blob_url = url
        run.uploaded_blob = blob_name
    
    def _acquire_for_import(
        self,
        run: _RecordRun,
        dispatcher: ImportDispatcher,
        storage: BlobStorage,
        local_path: Optional[str]
    ) -> Artifact:
        """Use the local artifact when it exists, otherwise locate and download one."""
        record = run.record
        existing = self._existing_local_artifact(dispatcher, record, local_path)
        if existing is not None:
            self._emit(
                PipelineStage.LOCATE, run.operation_id, Outcome.SKIPPED,
                f"Using existing local artifact {existing}"
            )
            run.local_artifact = existing
            return Artifact(
                format=ArtifactFormat.from_extension(existing),
                location=existing,
                logical_name=record.database_name,
                size_bytes=os.path.getsize(existing),
            )
        
        with self._stage(run, PipelineStage.IMPORT, "Resolving importable formats"):
            formats = dispatcher.acceptable_formats(record)
        
        with self._stage(run, PipelineStage.LOCATE, f"Searching {record.storage_container} for {record.database_name}"):
            located = BackupArtifactLocator(storage).locate(
                record.storage_container, record.database_name, record.operation_id, formats
            )
            if located is None:
                raise NotFoundError(
                    f"No {'/'.join(f.value for f in formats)} artifact for {record.database_name} "
                    f"in container {record.storage_container}"
                )
            strategy = dispatcher.get_strategy(record, located.format, located.location)
        
        if strategy.restores_from_url:
            self._emit(
                PipelineStage.DOWNLOAD, run.operation_id, Outcome.SKIPPED,
                f"{located.blob_name} is restored directly from {record.storage_container}"
            )
            return located
        
        download_path = with_artifact_extension(
            local_path or self._staging_path(record, located.format), located.format
        )
        with self._stage(run, PipelineStage.DOWNLOAD, f"Downloading {located.blob_name} to {download_path}"):
            storage.download(record.storage_container, located.blob_name, download_path)
        
        located.location = download_path
        run.local_artifact = download_path
        return located
    
    def _existing_local_artifact(
        self,
        dispatcher: ImportDispatcher,
        record: OperationRecord,
        local_path: Optional[str]
    ) -> Optional[str]:
        """The derived local path, with the extension of an importable format, if that file exists."""
        if not local_path:
            return None
        for artifact_format in dispatcher.local_formats(record):
            candidate = with_artifact_extension(local_path, artifact_format)
            if os.path.isfile(candidate):
                return candidate
        return None
    
    def _staging_path(self, record: OperationRecord, artifact_format: ArtifactFormat) -> str:
        file_name = f"{record.operation_id}_{record.database_name}{artifact_format.extension}"
        return os.path.join(os.path.expanduser(self.settings.staging_dir), file_name)
    
    def _cleanup(self, run: _RecordRun, path: Optional[str]):
        """Remove a local artifact; failures are warnings."""
        if path is None:
            self._emit(PipelineStage.CLEANUP, run.operation_id, Outcome.SKIPPED, "No local artifact to remove")
            return
        
        if not run.record.remove_temp_file:
            self._emit(PipelineStage.CLEANUP, run.operation_id, Outcome.SKIPPED, f"Retaining {path}")
            return
        
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.debug(f"[{run.operation_id}] {path} already removed")
        except OSError as e:
            self._warn(run, PipelineStage.CLEANUP, f"Could not remove {path}: {e}")
            return
        self._emit(PipelineStage.CLEANUP, run.operation_id, Outcome.SUCCEEDED, f"Removed {path}")
    
    def _result(
        self,
        run: _RecordRun,
        state: TerminalState,
        started: float,
        **kwargs
    ) -> OperationResult:
        return OperationResult(
            operation_id=run.operation_id,
            database_name=run.record.database_name,
            state=state,
            success=not state.is_failure,
            duration=self.timer() - started,
            warnings=list(run.warnings),
            uploaded_blob=run.uploaded_blob,
            imported_from=run.imported_from,
            **kwargs
        )
    
    def _failed_result(self, run: _RecordRun, failure: StageFailed, started: float) -> OperationResult:
        info = self.error_handler.categorize_error(
            failure.error,
            ErrorContext(operation_id=run.operation_id, stage=failure.stage.value)
        )
        message = failure.message
        if info.diagnostics:
            message = f"{message}\n{info.diagnostics}"
        self._emit(failure.stage, run.operation_id, Outcome.FAILED, message)
        logger.debug(info.traceback_str)
        
        return self._result(
            run,
            FAILURE_STATES[failure.stage],
            started,
            failure_stage=failure.stage,
            severity=info.severity.value,
            message=failure.message,
            diagnostics=info.diagnostics,
            remediation_steps=info.remediation_steps,
        )


class BatchRunner:
    """Runs the pipeline over records one at a time, in order."""
    
    def __init__(self, pipeline: OperationPipeline, console: Optional[Console] = None):
        self.pipeline = pipeline
        self.console = console or Console()
    
    def run(self, records: Iterable[OperationRecord]) -> BatchSummary:
        """
        Process every record and aggregate the results.
        
        Args:
            records: Parsed operation records, in order
        
        Returns:
            BatchSummary with one result per record
        """
        summary = BatchSummary()
        for index, record in enumerate(records, 1):
            logger.info(f"Record {index}: {record.describe()}")
            result = self.pipeline.run(record)
            summary.add(result)
            logger.info(
                f"Record {index} finished as {result.state.value} "
                f"in {format_duration(result.duration)}"
            )
        summary.finish()
        return summary
    
    def display_summary(self, summary: BatchSummary):
        """Display the batch summary as a Rich table."""
        table = Table(title="Operation Summary", show_header=True, header_style="bold magenta")
        table.add_column("Operation", style="cyan", no_wrap=True)
        table.add_column("Database")
        table.add_column("State")
        table.add_column("Duration", justify="right")
        table.add_column("Details", overflow="fold")
        
        for result in summary.results:
            if result.state == TerminalState.DONE:
                state = f"[green]{result.state.value}[/green]"
            elif result.state == TerminalState.SKIPPED_NO_ACTION:
                state = f"[dim]{result.state.value}[/dim]"
            else:
                state = f"[red]{result.state.value}[/red]"
            details = result.message
            if result.uploaded_blob:
                details = f"{details} (blob {result.uploaded_blob})"
            table.add_row(
                result.operation_id,
                result.database_name or "",
                state,
                format_duration(result.duration),
                details
            )
        
        self.console.print(table)
        self.console.print(
            f"[bold]Total:[/bold] {summary.total}  "
            f"[green]Succeeded:[/green] {summary.succeeded}  "
            f"[dim]Skipped:[/dim] {summary.skipped}  "
            f"[red]Failed:[/red] {summary.failed}  "
            f"[bold]Duration:[/bold] {format_duration(summary.total_duration)}"
        )
        
        for result in summary.results:
            if result.success:
                continue
            self.console.print(f"\n[red]{result.operation_id}[/red] failed at {result.failure_stage.value} ({result.severity} severity): {result.message}")
            if result.diagnostics:
                self.console.print(result.diagnostics, markup=False, highlight=False)
            for step in result.remediation_steps:
                self.console.print(f"  • {step}")
