"""
Runtime models for dbstage.

This module defines Pydantic models for artifacts, per-record results and the
batch-level summary, plus the pipeline stage and terminal state enums.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from dbstage.models.config import ArtifactFormat


class PipelineStage(str, Enum):
    """Stages of the operation pipeline, in execution order."""
    START = "Start"
    FIELD_VALIDATION = "FieldValidation"
    PREFLIGHT = "Preflight"
    EXPORT = "Export"
    UPLOAD = "Upload"
    LOCATE = "Locate"
    DOWNLOAD = "Download"
    IMPORT = "Import"
    CLEANUP = "Cleanup"
    DONE = "Done"


class TerminalState(str, Enum):
    """Terminal states a record can reach."""
    DONE = "Done"
    SKIPPED_NO_ACTION = "SkippedNoAction"
    FAILED_VALIDATION = "FailedValidation"
    FAILED_PREFLIGHT = "FailedPreflight"
    FAILED_EXPORT = "FailedExport"
    FAILED_UPLOAD = "FailedUpload"
    FAILED_LOCATE = "FailedLocate"
    FAILED_DOWNLOAD = "FailedDownload"
    FAILED_IMPORT = "FailedImport"

    @property
    def is_failure(self) -> bool:
        return self.value.startswith("Failed")


FAILURE_STATES: Dict[PipelineStage, TerminalState] = {
    PipelineStage.FIELD_VALIDATION: TerminalState.FAILED_VALIDATION,
    PipelineStage.PREFLIGHT: TerminalState.FAILED_PREFLIGHT,
    PipelineStage.EXPORT: TerminalState.FAILED_EXPORT,
    PipelineStage.UPLOAD: TerminalState.FAILED_UPLOAD,
    PipelineStage.LOCATE: TerminalState.FAILED_LOCATE,
    PipelineStage.DOWNLOAD: TerminalState.FAILED_DOWNLOAD,
    PipelineStage.IMPORT: TerminalState.FAILED_IMPORT,
}


class Outcome(str, Enum):
    """Outcome attached to each reported pipeline event."""
    STARTED = "started"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    WARNING = "warning"
    FAILED = "failed"


class Artifact(BaseModel):
    """A backup payload, either on local disk or in a storage container."""
    format: ArtifactFormat
    location: str
    logical_name: Optional[str] = None
    size_bytes: Optional[int] = None
    last_modified: Optional[datetime] = None
    blob_name: Optional[str] = None  # set once the artifact is staged in storage
    blob_url: Optional[str] = None

    @property
    def is_staged(self) -> bool:
        return self.blob_name is not None


class OperationResult(BaseModel):
    """Outcome of one pipeline run over one operation record."""
    operation_id: str
    database_name: Optional[str] = None
    state: TerminalState
    success: bool
    failure_stage: Optional[PipelineStage] = None
    severity: Optional[str] = None  # error severity of a failure
    duration: float = 0.0  # seconds
    message: str = ""
    diagnostics: str = ""
    remediation_steps: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    uploaded_blob: Optional[str] = None
    imported_from: Optional[str] = None


class BatchSummary(BaseModel):
    """Append-only aggregate of the results of a batch run."""
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    results: List[OperationResult] = Field(default_factory=list)

    def add(self, result: OperationResult):
        """Append a record result."""
        self.results.append(result)

    def finish(self):
        self.finished_at = datetime.now()

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.state == TerminalState.DONE)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.state == TerminalState.SKIPPED_NO_ACTION)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def total_duration(self) -> float:
        return sum(r.duration for r in self.results)

    def failures_by_stage(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for result in self.results:
            if result.failure_stage is not None:
                key = result.failure_stage.value
                counts[key] = counts.get(key, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the summary for the JSON report."""
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "total_duration": round(self.total_duration, 3),
            "failures_by_stage": self.failures_by_stage(),
            "results": [r.model_dump(mode="json") for r in self.results],
        }
