"""
Tests for the strategy dispatch table, the strategies and the dispatchers.
"""

import os
from datetime import datetime
from pathlib import Path

import pytest

from dbstage.backup.dispatcher import ExportDispatcher, ImportDispatcher
from dbstage.backup.factory import StrategyFactory
from dbstage.backup.strategies import (
    BacpacExportStrategy,
    BacpacImportStrategy,
    ManagedInstanceBakExportStrategy,
    ManagedInstanceBakImportStrategy,
    StrategyContext,
    UnimplementedExportStrategy,
    UnimplementedImportStrategy,
)
from dbstage.core.exceptions import ExternalEngineError, UnsupportedError
from dbstage.database.package_engine import PackageResult
from dbstage.models.config import ArtifactFormat, BackupKind, DeploymentType, Direction
from dbstage.models.session import Artifact

NOW = datetime(2024, 6, 1, 12, 30, 45)


@pytest.fixture
def context(settings, db_engine, package_engine, storage):
    return StrategyContext(
        settings=settings,
        db_engine=db_engine,
        package_engine=package_engine,
        storage=storage,
        clock=lambda: NOW,
    )


class TestStrategyFactory:
    
    @pytest.mark.parametrize("deployment,direction,artifact_format,expected", [
        (DeploymentType.AZURE_PAAS, Direction.EXPORT, ArtifactFormat.BACPAC, BacpacExportStrategy),
        (DeploymentType.AZURE_MI, Direction.EXPORT, ArtifactFormat.BACPAC, BacpacExportStrategy),
        (DeploymentType.AZURE_MI, Direction.EXPORT, ArtifactFormat.BAK, ManagedInstanceBakExportStrategy),
        (DeploymentType.AZURE_IAAS, Direction.EXPORT, ArtifactFormat.BAK, UnimplementedExportStrategy),
        (None, Direction.EXPORT, ArtifactFormat.BACPAC, BacpacExportStrategy),
        (DeploymentType.AZURE_PAAS, Direction.IMPORT, ArtifactFormat.BACPAC, BacpacImportStrategy),
        (DeploymentType.AZURE_MI, Direction.IMPORT, ArtifactFormat.BAK, ManagedInstanceBakImportStrategy),
        (DeploymentType.AZURE_IAAS, Direction.IMPORT, ArtifactFormat.BACPAC, UnimplementedImportStrategy),
        (None, Direction.IMPORT, ArtifactFormat.BACPAC, BacpacImportStrategy),
    ])
    def test_dispatch_table(self, deployment, direction, artifact_format, expected):
        assert StrategyFactory.get_strategy_class(deployment, direction, artifact_format) is expected
    
    def test_no_bak_for_paas(self):
        assert StrategyFactory.get_strategy_class(DeploymentType.AZURE_PAAS, Direction.IMPORT, ArtifactFormat.BAK) is None
        assert StrategyFactory.get_strategy_class(None, Direction.EXPORT, ArtifactFormat.BAK) is None
    
    def test_every_deployment_has_an_export_and_import(self):
        for deployment in list(DeploymentType) + [None]:
            for direction in Direction:
                assert StrategyFactory.registered_formats(deployment, direction)


class TestExportDispatcher:
    
    def test_paas_bacpac_export(self, context, make_record, package_engine, tmp_path):
        record = make_record()
        target = str(tmp_path / "out" / "001_Sales.bacpac")
        
        artifact = ExportDispatcher(context).export(record, target)
        
        assert artifact.format == ArtifactFormat.BACPAC
        assert artifact.location == target
        assert artifact.size_bytes == len(b"bacpac")
        assert not artifact.is_staged
        server, database, credential, target_file = package_engine.export.call_args[0]
        assert server == "src-server.database.windows.net"
        assert database == "Sales"
        assert credential.username == "src_admin"
    
    def test_paas_forces_bacpac(self, context, make_record, tmp_path):
        record = make_record(Backup_Format="BAK")
        dispatcher = ExportDispatcher(context)
        assert dispatcher.select_format(record) == ArtifactFormat.BACPAC
        
        artifact = dispatcher.export(record, str(tmp_path / "001_Sales.bak"))
        assert artifact.location.endswith("001_Sales.bacpac")
    
    def test_unrecognized_type_uses_default_entry(self, context, make_record, package_engine, tmp_path):
        record = make_record(Type="OnPremCluster")
        artifact = ExportDispatcher(context).export(record, str(tmp_path / "001_Sales.bacpac"))
        assert artifact.format == ArtifactFormat.BACPAC
        package_engine.export.assert_called_once()
    
    def test_iaas_is_unimplemented(self, context, make_record, package_engine, tmp_path):
        with pytest.raises(UnsupportedError, match="not implemented"):
            ExportDispatcher(context).export(make_record(Type="AzureIaaS"), str(tmp_path / "a.bacpac"))
        package_engine.export.assert_not_called()
    
    def test_non_zero_exit_carries_diagnostics(self, context, make_record, package_engine, tmp_path):
        package_engine.export.side_effect = None
        package_engine.export.return_value = PackageResult(
            exit_code=1, stdout="Connecting...", stderr="*** Error exporting database: login failed"
        )
        with pytest.raises(ExternalEngineError) as exc_info:
            ExportDispatcher(context).export(make_record(), str(tmp_path / "a.bacpac"))
        assert exc_info.value.exit_code == 1
        assert "*** Error exporting database: login failed" in exc_info.value.diagnostics
        assert "Connecting..." in exc_info.value.diagnostics
    
    def test_missing_output_file_fails(self, context, make_record, package_engine, tmp_path):
        package_engine.export.side_effect = None
        package_engine.export.return_value = PackageResult(exit_code=0, stdout="done")
        with pytest.raises(ExternalEngineError, match="does not exist"):
            ExportDispatcher(context).export(make_record(), str(tmp_path / "a.bacpac"))
    
    def test_managed_instance_bak_export(self, context, make_record, db_engine, storage, tmp_path):
        record = make_record(Type="AzureMI", Backup_Format="BAK", Backup_Type="Full", Compression="True")
        storage.exists.return_value = True
        target = str(tmp_path / "001_Sales.bacpac")
        
        artifact = ExportDispatcher(context).export(record, target)
        
        expected_blob = "001_Sales_20240601_123045.bak"
        assert artifact.format == ArtifactFormat.BAK
        assert artifact.location == str(tmp_path / "001_Sales.bak")
        assert artifact.blob_name == expected_blob
        assert artifact.is_staged
        
        db_engine.ensure_url_credential.assert_called_once()
        server, _, container_url, sas = db_engine.ensure_url_credential.call_args[0]
        assert server == "src-server.database.windows.net"
        assert container_url == "https://stagingacct.blob.core.windows.net/backups"
        assert sas == "sv=2023&sig=abc"
        
        server, database, _, destination, options = db_engine.run_backup.call_args[0]
        assert destination.endswith("/backups/" + expected_blob)
        assert options.kind == BackupKind.FULL
        assert options.copy_only is True
        assert options.compression is True
        storage.download.assert_called_once_with("backups", expected_blob, artifact.location)
    
    def test_managed_instance_log_backup_is_not_copy_only(self, context, make_record, db_engine, storage, tmp_path):
        storage.exists.return_value = True
        record = make_record(Type="AzureMI", Backup_Format="BAK", Backup_Type="Log")
        ExportDispatcher(context).export(record, str(tmp_path / "a.bak"))
        options = db_engine.run_backup.call_args[0][4]
        assert options.kind == BackupKind.LOG
        assert options.copy_only is False
    
    def test_managed_instance_bak_missing_blob_fails(self, context, make_record, storage, tmp_path):
        storage.exists.return_value = False
        with pytest.raises(ExternalEngineError, match="not in backups"):
            ExportDispatcher(context).export(make_record(Type="AzureMI", Backup_Format="BAK"), str(tmp_path / "a.bak"))
        storage.download.assert_not_called()


class TestImportDispatcher:
    
    def _artifact(self, path, **kwargs):
        return Artifact(format=ArtifactFormat.from_extension(path) or ArtifactFormat.BACPAC, location=path, **kwargs)
    
    def test_paas_bacpac_import(self, context, make_record, package_engine):
        ImportDispatcher(context).import_artifact(make_record(), self._artifact("/tmp/001_Sales.bacpac"))
        package_engine.import_package.assert_called_once()
        source, server, database, credential = package_engine.import_package.call_args[0]
        assert source == "/tmp/001_Sales.bacpac"
        assert server == "dst-server.database.windows.net"
        assert credential.username == "dst_admin"
    
    def test_import_failure_carries_diagnostics(self, context, make_record, package_engine):
        package_engine.import_package.return_value = PackageResult(exit_code=5, stderr="Error SQL72014: denied")
        with pytest.raises(ExternalEngineError) as exc_info:
            ImportDispatcher(context).import_artifact(make_record(), self._artifact("/tmp/a.bacpac"))
        assert exc_info.value.diagnostics == "Error SQL72014: denied"
    
    def test_bak_on_paas_is_unsupported(self, context, make_record, package_engine):
        with pytest.raises(UnsupportedError):
            ImportDispatcher(context).import_artifact(make_record(), self._artifact("/tmp/a.bak"))
        package_engine.import_package.assert_not_called()
    
    def test_unknown_extension_is_unsupported(self, context, make_record):
        with pytest.raises(UnsupportedError, match="Unrecognized artifact extension"):
            ImportDispatcher(context).import_artifact(
                make_record(Type="AzureMI"), self._artifact("/tmp/a.zip")
            )
    
    def test_managed_instance_bak_without_storage_fails_fast(self, context, make_record, db_engine, storage):
        record = make_record(
            Type="AzureMI", Storage_Account="", Storage_Container="", Storage_Access_Key=""
        )
        with pytest.raises(UnsupportedError, match="requires a storage account"):
            ImportDispatcher(context).import_artifact(record, self._artifact("/tmp/001_Sales.bak"))
        db_engine.run_restore.assert_not_called()
        storage.upload.assert_not_called()
    
    def test_managed_instance_bak_uploads_then_restores(self, context, make_record, db_engine, storage):
        record = make_record(Type="AzureMI", Data_File_Location="F:\\data", Log_File_Location="G:\\log")
        ImportDispatcher(context).import_artifact(record, self._artifact("/tmp/001_Sales.bak"))
        
        storage.upload.assert_called_once_with("backups", "001_Sales_20240601_123045.bak", "/tmp/001_Sales.bak")
        server, database, _, source, options = db_engine.run_restore.call_args[0]
        assert server == "dst-server.database.windows.net"
        assert source == "https://stagingacct.blob.core.windows.net/backups/001_Sales_20240601_123045.bak"
        assert options.data_file_location == "F:\\data"
        assert options.log_file_location == "G:\\log"
        assert db_engine.ensure_url_credential.call_args[0][0] == "dst-server.database.windows.net"
    
    def test_managed_instance_staged_bak_is_not_uploaded_again(self, context, make_record, db_engine, storage):
        artifact = self._artifact(
            "/tmp/001_Sales.bak",
            blob_name="001_Sales_20240101_000000.bak",
            blob_url="https://stagingacct.blob.core.windows.net/backups/001_Sales_20240101_000000.bak",
        )
        ImportDispatcher(context).import_artifact(make_record(Type="AzureMI"), artifact)
        storage.upload.assert_not_called()
        assert db_engine.run_restore.call_args[0][3] == artifact.blob_url
    
    def test_intermediate_server_is_unsupported(self, context, make_record, package_engine):
        with pytest.raises(UnsupportedError, match="intermediate server"):
            ImportDispatcher(context).import_artifact(
                make_record(Type="AzureMI", Intermediate_Server="gp-cleanup"),
                self._artifact("/tmp/a.bacpac")
            )
        package_engine.import_package.assert_not_called()
    
    def test_iaas_import_is_unimplemented(self, context, make_record):
        with pytest.raises(UnsupportedError, match="not implemented"):
            ImportDispatcher(context).import_artifact(make_record(Type="AzureIaaS"), self._artifact("/tmp/a.bacpac"))
    
    @pytest.mark.parametrize("deployment_type,expected", [
        ("AzurePaaS", [ArtifactFormat.BACPAC]),
        ("AzureMI", [ArtifactFormat.BACPAC, ArtifactFormat.BAK]),
        ("Unknown", [ArtifactFormat.BACPAC]),
    ])
    def test_acceptable_formats(self, context, make_record, deployment_type, expected):
        assert ImportDispatcher(context).acceptable_formats(make_record(Type=deployment_type)) == expected
    
    def test_acceptable_formats_unimplemented(self, context, make_record):
        with pytest.raises(UnsupportedError):
            ImportDispatcher(context).acceptable_formats(make_record(Type="AzureIaaS"))
    
    @pytest.mark.parametrize("deployment_type,backup_format,expected", [
        ("AzurePaaS", "BACPAC", [ArtifactFormat.BACPAC]),
        ("AzureMI", "BACPAC", [ArtifactFormat.BACPAC, ArtifactFormat.BAK]),
        ("AzureMI", "BAK", [ArtifactFormat.BAK, ArtifactFormat.BACPAC]),
    ])
    def test_local_formats_prefer_configured_format(self, context, make_record, deployment_type, backup_format, expected):
        record = make_record(Type=deployment_type, Backup_Format=backup_format)
        assert ImportDispatcher(context).local_formats(record) == expected
    
    def test_only_managed_instance_bak_restores_from_url(self):
        assert ManagedInstanceBakImportStrategy.restores_from_url
        assert not BacpacImportStrategy.restores_from_url
        assert not UnimplementedImportStrategy.restores_from_url
