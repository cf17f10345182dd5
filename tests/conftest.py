"""
Pytest configuration and fixtures for the dbstage tests.

Every external collaborator (database engine, SqlPackage, blob storage) is
replaced with a mock; nothing here touches the network or a real executable.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Tuple
from unittest.mock import MagicMock

import pytest

from dbstage.database.base import DatabaseEngine, ConnectionCheckResult
from dbstage.database.package_engine import PackageResult, SqlPackageEngine
from dbstage.models.config import OperationRecord, RunnerSettings
from dbstage.orchestrator.orchestrator import OperationPipeline
from dbstage.storage.base import BlobStorage

FIXED_NOW = datetime(2024, 6, 1, 12, 30, 45)


class RecordingReporter:
    """Reporter that keeps every emitted event."""
    
    def __init__(self):
        self.events: List[Tuple[str, str, str, str]] = []
    
    def emit(self, stage, operation_id, outcome, message):
        self.events.append((
            getattr(stage, "value", stage),
            operation_id,
            getattr(outcome, "value", outcome),
            message,
        ))
    
    def outcomes(self, stage: str) -> List[str]:
        return [outcome for s, _, outcome, _ in self.events if s == stage]


@pytest.fixture
def record_data(tmp_path: Path) -> Dict[str, Any]:
    """CSV-style column values for an export+import AzurePaaS record."""
    return {
        "Operation_Id": "001",
        "Database_Name": "Sales",
        "Type": "AzurePaaS",
        "Export": "True",
        "Import": "True",
        "Remove_Tempfile": "True",
        "Source_Server": "src-server",
        "Source_User": "src_admin",
        "Source_Password": "src-secret",
        "Destination_Server": "dst-server",
        "Destination_User": "dst_admin",
        "Destination_Password": "dst-secret",
        "Storage_Account": "stagingacct",
        "Storage_Container": "backups",
        "Storage_Access_Key": "a2V5",
        "Local_Backup_File_Path": str(tmp_path / "artifacts" / "Sales.bacpac"),
    }


@pytest.fixture
def make_record(record_data):
    """Build an OperationRecord from the default columns plus overrides."""
    def _make(**overrides) -> OperationRecord:
        data = dict(record_data)
        data.update(overrides)
        return OperationRecord.model_validate(data)
    return _make


@pytest.fixture
def settings(tmp_path: Path) -> RunnerSettings:
    return RunnerSettings(staging_dir=str(tmp_path / "staging"), min_free_disk_gb=0)


@pytest.fixture
def db_engine() -> MagicMock:
    engine = MagicMock(spec=DatabaseEngine)
    engine.check_connectivity.side_effect = lambda server, database, credential: ConnectionCheckResult(
        server=server, database=database, database_exists=True, state="ONLINE"
    )
    engine.list_memory_optimized_objects.return_value = []
    engine.run_backup.side_effect = lambda server, database, credential, destination, options: destination
    return engine


@pytest.fixture
def package_engine() -> MagicMock:
    engine = MagicMock(spec=SqlPackageEngine)
    
    def export(server, database, credential, target_file):
        os.makedirs(os.path.dirname(str(target_file)), exist_ok=True)
        Path(target_file).write_bytes(b"bacpac")
        return PackageResult(exit_code=0, stdout="Successfully exported database.")
    
    engine.export.side_effect = export
    engine.import_package.return_value = PackageResult(exit_code=0, stdout="Successfully imported database.")
    return engine


@pytest.fixture
def storage() -> MagicMock:
    blob_storage = MagicMock(spec=BlobStorage)
    blob_storage.account_name = "stagingacct"
    blob_storage.list_blobs.return_value = []
    blob_storage.blob_url.side_effect = lambda container, name: f"https://stagingacct.blob.core.windows.net/{container}/{name}"
    blob_storage.upload.side_effect = lambda container, name, path: f"https://stagingacct.blob.core.windows.net/{container}/{name}"
    blob_storage.generate_container_sas.return_value = "sv=2023&sig=abc"
    
    def download(container, name, local_path):
        Path(local_path).parent.mkdir(parents=True, exist_ok=True)
        Path(local_path).write_bytes(b"artifact")
        return Path(local_path)
    
    blob_storage.download.side_effect = download
    return blob_storage


@pytest.fixture
def storage_factory(storage) -> MagicMock:
    return MagicMock(return_value=storage)


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def pipeline(settings, db_engine, package_engine, storage_factory, reporter) -> OperationPipeline:
    return OperationPipeline(
        settings=settings,
        db_engine=db_engine,
        package_engine=package_engine,
        storage_factory=storage_factory,
        reporter=reporter,
        clock=lambda: FIXED_NOW,
    )


