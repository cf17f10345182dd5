"""
Tests for the operation pipeline and the batch runner.
"""

import os
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from dbstage.core.exceptions import ConnectivityError, ConnectivityTimeoutError, TransferError
from dbstage.database.package_engine import PackageResult
from dbstage.models.session import BatchSummary, PipelineStage, TerminalState
from dbstage.orchestrator.orchestrator import BatchRunner, OperationPipeline
from dbstage.storage.base import BlobInfo


def _blob(name, modified):
    return BlobInfo(name=name, last_modified=modified, size=2048)


def _external_calls(db_engine, package_engine, storage_factory, storage):
    return (
        len(db_engine.method_calls)
        + len(package_engine.method_calls)
        + storage_factory.call_count
        + len(storage.method_calls)
    )


class TestSkipLaw:
    
    def test_no_action_is_skipped_without_external_calls(
        self, pipeline, make_record, db_engine, package_engine, storage_factory, storage
    ):
        result = pipeline.run(make_record(Export="False", Import="False"))
        
        assert result.state == TerminalState.SKIPPED_NO_ACTION
        assert result.success is True
        assert result.failure_stage is None
        assert _external_calls(db_engine, package_engine, storage_factory, storage) == 0
    
    def test_skip_happens_before_field_validation(self, pipeline, make_record):
        result = pipeline.run(make_record(Export="False", Import="False", Storage_Access_Key=""))
        assert result.state == TerminalState.SKIPPED_NO_ACTION


class TestScenarios:
    
    def test_export_only_paas_uploads_canonical_blob(self, pipeline, make_record, storage, package_engine, tmp_path):
        record = make_record(Import="False")
        
        result = pipeline.run(record)
        
        assert result.state == TerminalState.DONE
        assert result.success
        assert result.uploaded_blob == "001_Sales_20240601_123045.bacpac"
        storage.upload.assert_called_once()
        container, blob_name, local_path = storage.upload.call_args[0]
        assert container == "backups"
        assert blob_name == "001_Sales_20240601_123045.bacpac"
        assert local_path == str(tmp_path / "artifacts" / "001_Sales.bacpac")
        # Remove_Tempfile defaults to true.
        assert not os.path.exists(local_path)
    
    def test_import_only_picks_newest_blob(self, pipeline, make_record, storage, package_engine, tmp_path):
        storage.list_blobs.return_value = [
            _blob("001_Sales_20240101_0000.bacpac", datetime(2024, 1, 1)),
            _blob("Sales_20240601_0000.bacpac", datetime(2024, 6, 1)),
        ]
        
        result = pipeline.run(make_record(Export="False"))
        
        assert result.state == TerminalState.DONE
        container, blob_name, download_path = storage.download.call_args[0]
        assert blob_name == "Sales_20240601_0000.bacpac"
        assert download_path == str(tmp_path / "artifacts" / "001_Sales.bacpac")
        assert package_engine.import_package.call_args[0][0] == download_path
        assert result.imported_from == download_path
    
    def test_missing_access_key_fails_validation_without_network_calls(
        self, pipeline, make_record, db_engine, package_engine, storage_factory, storage
    ):
        result = pipeline.run(make_record(Import="False", Storage_Access_Key=""))
        
        assert result.state == TerminalState.FAILED_VALIDATION
        assert result.failure_stage == PipelineStage.FIELD_VALIDATION
        assert "Storage_Access_Key" in result.message
        assert _external_calls(db_engine, package_engine, storage_factory, storage) == 0


class TestCouplingLaw:
    
    def test_failed_export_skips_upload_and_import(self, pipeline, make_record, package_engine, storage):
        package_engine.export.side_effect = None
        package_engine.export.return_value = PackageResult(exit_code=1, stderr="*** Could not connect")
        
        result = pipeline.run(make_record())
        
        assert result.state == TerminalState.FAILED_EXPORT
        assert result.failure_stage == PipelineStage.EXPORT
        assert result.severity == "critical"
        assert "*** Could not connect" in result.diagnostics
        assert result.remediation_steps
        assert package_engine.import_package.call_count == 0
        assert storage.upload.call_count == 0
        assert storage.list_blobs.call_count == 0
        assert storage.download.call_count == 0
    
    def test_export_and_import_hand_off_the_artifact(self, pipeline, make_record, package_engine, storage, tmp_path):
        result = pipeline.run(make_record())
        
        assert result.state == TerminalState.DONE
        exported = str(tmp_path / "artifacts" / "001_Sales.bacpac")
        assert package_engine.import_package.call_args[0][0] == exported
        storage.list_blobs.assert_not_called()
        storage.download.assert_not_called()
        # Cleanup waits for the import and then removes the file.
        assert not os.path.exists(exported)
    
    def test_failed_import_keeps_exported_artifact(self, pipeline, make_record, package_engine, tmp_path):
        package_engine.import_package.return_value = PackageResult(exit_code=1, stderr="denied")
        
        result = pipeline.run(make_record())
        
        assert result.state == TerminalState.FAILED_IMPORT
        assert result.uploaded_blob == "001_Sales_20240601_123045.bacpac"
        assert os.path.exists(tmp_path / "artifacts" / "001_Sales.bacpac")


class TestPipelineStages:
    
    def test_preflight_failure(self, pipeline, make_record, db_engine, package_engine, reporter):
        db_engine.check_connectivity.side_effect = ConnectivityTimeoutError("Login timeout expired")
        
        result = pipeline.run(make_record())
        
        assert result.state == TerminalState.FAILED_PREFLIGHT
        assert "Login timeout expired" in result.message
        assert result.severity == "high"
        assert any("firewall" in step for step in result.remediation_steps)
        package_engine.export.assert_not_called()
        assert "failed" in reporter.outcomes("Preflight")
    
    def test_upload_failure(self, pipeline, make_record, storage, package_engine):
        storage.upload.side_effect = TransferError("403 AuthorizationFailure")
        
        result = pipeline.run(make_record())
        
        assert result.state == TerminalState.FAILED_UPLOAD
        package_engine.import_package.assert_not_called()
    
    def test_nothing_to_locate(self, pipeline, make_record, storage, package_engine):
        storage.list_blobs.return_value = [_blob("Other.bacpac", datetime(2024, 1, 1))]
        
        result = pipeline.run(make_record(Export="False"))
        
        assert result.state == TerminalState.FAILED_LOCATE
        storage.download.assert_not_called()
        package_engine.import_package.assert_not_called()
    
    def test_download_failure(self, pipeline, make_record, storage, package_engine):
        storage.list_blobs.return_value = [_blob("Sales.bacpac", datetime(2024, 1, 1))]
        storage.download.side_effect = TransferError("connection reset")
        
        result = pipeline.run(make_record(Export="False"))
        
        assert result.state == TerminalState.FAILED_DOWNLOAD
        package_engine.import_package.assert_not_called()
    
    def test_existing_local_artifact_skips_locate(self, pipeline, make_record, storage, package_engine, tmp_path):
        local = tmp_path / "artifacts" / "001_Sales.bacpac"
        local.parent.mkdir(parents=True)
        local.write_bytes(b"local")
        
        result = pipeline.run(make_record(Export="False", Remove_Tempfile="False"))
        
        assert result.state == TerminalState.DONE
        storage.list_blobs.assert_not_called()
        storage.download.assert_not_called()
        assert package_engine.import_package.call_args[0][0] == str(local)
        assert local.exists()
    
    def test_unprefixed_local_file_is_not_used(self, pipeline, make_record, storage, tmp_path):
        unprefixed = tmp_path / "artifacts" / "Sales.bacpac"
        unprefixed.parent.mkdir(parents=True)
        unprefixed.write_bytes(b"local")
        storage.list_blobs.return_value = [_blob("Sales_1.bacpac", datetime(2024, 1, 1))]
        
        pipeline.run(make_record(Export="False"))
        
        storage.download.assert_called_once()
    
    def test_located_managed_instance_bak_is_restored_in_place(
        self, pipeline, make_record, storage, db_engine, reporter, tmp_path
    ):
        storage.list_blobs.return_value = [_blob("Sales_20240601.bak", datetime(2024, 6, 1))]
        
        result = pipeline.run(make_record(Type="AzureMI", Export="False"))
        
        assert result.state == TerminalState.DONE
        assert result.imported_from == "Sales_20240601.bak"
        # The restore reads the blob URL, so neither a download nor an upload happens.
        storage.download.assert_not_called()
        storage.upload.assert_not_called()
        assert db_engine.run_restore.call_args[0][3].endswith("/backups/Sales_20240601.bak")
        assert reporter.outcomes("Download") == ["skipped"]
        assert reporter.outcomes("Cleanup") == ["skipped"]
        assert not (tmp_path / "artifacts").exists()
    
    def test_download_extension_follows_located_format(self, pipeline, make_record, storage, package_engine, tmp_path):
        storage.list_blobs.return_value = [_blob("Sales_20240601.bacpac", datetime(2024, 6, 1))]
        
        result = pipeline.run(make_record(
            Export="False", Local_Backup_File_Path=str(tmp_path / "artifacts" / "Sales")
        ))
        
        assert result.state == TerminalState.DONE
        download_path = storage.download.call_args[0][2]
        assert download_path == str(tmp_path / "artifacts" / "001_Sales.bacpac")
        assert package_engine.import_package.call_args[0][0] == download_path
    
    def test_retained_export_without_extension_is_reused(self, pipeline, make_record, storage, package_engine, tmp_path):
        columns = dict(Local_Backup_File_Path=str(tmp_path / "artifacts" / "Sales"), Remove_Tempfile="False")
        exported = pipeline.run(make_record(Import="False", **columns))
        assert exported.state == TerminalState.DONE
        
        result = pipeline.run(make_record(Export="False", **columns))
        
        assert result.state == TerminalState.DONE
        local = str(tmp_path / "artifacts" / "001_Sales.bacpac")
        assert result.imported_from == local
        assert package_engine.import_package.call_args[0][0] == local
        storage.list_blobs.assert_not_called()
        storage.download.assert_not_called()
    
    def test_retained_managed_instance_bak_is_reused(self, pipeline, make_record, storage, db_engine, tmp_path):
        local = tmp_path / "artifacts" / "001_Sales.bak"
        local.parent.mkdir(parents=True)
        local.write_bytes(b"bak")
        
        result = pipeline.run(make_record(
            Type="AzureMI", Backup_Format="BAK", Export="False", Remove_Tempfile="False"
        ))
        
        assert result.state == TerminalState.DONE
        assert result.imported_from == str(local)
        storage.list_blobs.assert_not_called()
        storage.download.assert_not_called()
        container, blob_name, path = storage.upload.call_args[0]
        assert (container, blob_name, path) == ("backups", "001_Sales_20240601_123045.bak", str(local))
        db_engine.run_restore.assert_called_once()
        assert local.exists()
    
    def test_download_without_local_path_uses_staging_dir(self, pipeline, make_record, storage, settings):
        storage.list_blobs.return_value = [_blob("Sales.bacpac", datetime(2024, 1, 1))]
        
        pipeline.run(make_record(Export="False", Local_Backup_File_Path=""))
        
        download_path = storage.download.call_args[0][2]
        assert download_path == os.path.join(settings.staging_dir, "001_Sales.bacpac")
    
    def test_iaas_import_fails_before_locate(self, pipeline, make_record, storage):
        result = pipeline.run(make_record(Type="AzureIaaS", Export="False"))
        
        assert result.state == TerminalState.FAILED_IMPORT
        storage.list_blobs.assert_not_called()
    
    def test_iaas_export_is_reported_as_failed_export(self, pipeline, make_record):
        result = pipeline.run(make_record(Type="AzureIaaS", Import="False"))
        assert result.state == TerminalState.FAILED_EXPORT
        assert "not implemented" in result.message
    
    def test_managed_instance_bak_export_is_not_uploaded_twice(self, pipeline, make_record, storage, reporter):
        storage.exists.return_value = True
        
        result = pipeline.run(make_record(Type="AzureMI", Backup_Format="BAK", Import="False"))
        
        assert result.state == TerminalState.DONE
        assert result.uploaded_blob == "001_Sales_20240601_123045.bak"
        storage.upload.assert_not_called()
        assert "skipped" in reporter.outcomes("Upload")
    
    def test_paas_bak_request_warns(self, pipeline, make_record):
        result = pipeline.run(make_record(Backup_Format="BAK", Import="False"))
        assert result.state == TerminalState.DONE
        assert any("exporting BACPAC" in warning for warning in result.warnings)
    
    def test_cleanup_failure_is_a_warning(self, pipeline, make_record):
        with patch("dbstage.orchestrator.orchestrator.os.remove", side_effect=PermissionError("locked")):
            result = pipeline.run(make_record(Import="False"))
        
        assert result.state == TerminalState.DONE
        assert result.success
        assert any("locked" in warning for warning in result.warnings)
    
    def test_retained_artifact(self, pipeline, make_record, tmp_path, reporter):
        result = pipeline.run(make_record(Import="False", Remove_Tempfile="False"))
        assert result.state == TerminalState.DONE
        assert (tmp_path / "artifacts" / "001_Sales.bacpac").exists()
        assert "skipped" in reporter.outcomes("Cleanup")
    
    def test_stage_events_are_reported_in_order(self, pipeline, make_record, reporter):
        pipeline.run(make_record(Import="False"))
        
        started = [stage for stage, _, outcome, _ in reporter.events if outcome == "started"]
        assert started == ["Start", "FieldValidation", "Preflight", "Export", "Upload"]
        assert reporter.events[-1][0] == "Done"
        assert all(operation_id == "001" for _, operation_id, _, _ in reporter.events)
    
    def test_duration_uses_timer(self, settings, db_engine, package_engine, storage_factory, reporter, make_record):
        ticks = iter([100.0, 102.5])
        pipeline = OperationPipeline(
            settings, db_engine, package_engine, storage_factory,
            reporter=reporter, timer=lambda: next(ticks)
        )
        result = pipeline.run(make_record(Export="False", Import="False"))
        assert result.duration == pytest.approx(2.5)
    
    def test_unexpected_error_is_contained(self, pipeline, make_record, storage_factory):
        storage_factory.side_effect = RuntimeError("boom")
        
        result = pipeline.run(make_record())
        
        assert result.state == TerminalState.FAILED_PREFLIGHT
        assert result.message == "boom"


class TestBatchRunner:
    
    def test_failure_does_not_block_following_records(self, pipeline, make_record, db_engine):
        def check(server, database, credential):
            if database == "Broken":
                raise ConnectivityError("unreachable")
            return MagicMock(database_exists=True, state="ONLINE")
        db_engine.check_connectivity.side_effect = check
        
        records = [
            make_record(Operation_Id="1", Import="False"),
            make_record(Operation_Id="2", Database_Name="Broken", Import="False"),
            make_record(Operation_Id="3", Import="False"),
            make_record(Operation_Id="4", Export="False", Import="False"),
        ]
        summary = BatchRunner(pipeline, console=MagicMock()).run(records)
        
        assert [r.state for r in summary.results] == [
            TerminalState.DONE,
            TerminalState.FAILED_PREFLIGHT,
            TerminalState.DONE,
            TerminalState.SKIPPED_NO_ACTION,
        ]
        assert summary.total == 4
        assert summary.succeeded == 2
        assert summary.failed == 1
        assert summary.skipped == 1
        assert summary.failures_by_stage() == {"Preflight": 1}
        assert summary.finished_at is not None
    
    def test_display_summary(self, pipeline, make_record):
        console = MagicMock()
        runner = BatchRunner(pipeline, console=console)
        summary = runner.run([make_record(Storage_Access_Key="")])
        runner.display_summary(summary)
        assert console.print.call_count >= 3
    
    def test_summary_to_dict(self):
        summary = BatchSummary()
        summary.finish()
        data = summary.to_dict()
        assert data["total"] == 0
        assert data["results"] == []
