"""
Data models for dbstage.

This module contains Pydantic models for operation records, settings,
artifacts and pipeline results.
"""

from dbstage.models.config import (
    ArtifactFormat,
    BackupKind,
    DeploymentType,
    Direction,
    OperationRecord,
    RunnerSettings,
    SqlCredential,
    StorageLocation,
    SUPPORTED_FORMATS,
)
from dbstage.models.session import (
    Artifact,
    BatchSummary,
    OperationResult,
    Outcome,
    PipelineStage,
    TerminalState,
)

__all__ = [
    "ArtifactFormat",
    "BackupKind",
    "DeploymentType",
    "Direction",
    "OperationRecord",
    "RunnerSettings",
    "SqlCredential",
    "StorageLocation",
    "SUPPORTED_FORMATS",
    "Artifact",
    "BatchSummary",
    "OperationResult",
    "Outcome",
    "PipelineStage",
    "TerminalState",
]
