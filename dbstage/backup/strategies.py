"""
Export and import strategies.

Each strategy implements one (deployment type, direction, format) cell of
the dispatch table. Strategies raise on failure; they never return a
partial result.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from dbstage.core.exceptions import ExternalEngineError, UnsupportedError
from dbstage.database.base import BackupOptions, DatabaseEngine, RestoreOptions
from dbstage.database.package_engine import PackageResult, SqlPackageEngine
from dbstage.models.config import (
    ArtifactFormat,
    BackupKind,
    DeploymentType,
    Direction,
    OperationRecord,
    RunnerSettings,
)
from dbstage.models.session import Artifact
from dbstage.storage.base import BlobStorage
from dbstage.utils.naming import container_url, derive_blob_name, derive_server_address

from .factory import register_strategy

logger = logging.getLogger(__name__)


@dataclass
class StrategyContext:
    """Collaborators shared by the strategies of one record."""
    settings: RunnerSettings
    db_engine: DatabaseEngine
    package_engine: SqlPackageEngine
    storage: Optional[BlobStorage] = None
    clock: Callable[[], datetime] = field(default=datetime.now)
    
    def server_address(self, name: str) -> str:
        return derive_server_address(name, self.settings.server_suffix)
    
    def container_url(self, record: OperationRecord) -> str:
        return container_url(
            record.storage_account, record.storage_container, self.settings.blob_endpoint_suffix
        )
    
    def configure_url_credential(self, server: str, record: OperationRecord, credential) -> None:
        """Create the server-side SAS credential for the record's container."""
        sas_token = self.storage.generate_container_sas(
            record.storage_container, timedelta(hours=self.settings.sas_expiry_hours)
        )
        self.db_engine.ensure_url_credential(server, credential, self.container_url(record), sas_token)


def _check_package_result(result: PackageResult, action: str, database: str) -> None:
    if not result.succeeded:
        raise ExternalEngineError(
            f"SqlPackage {action} of {database} failed with exit code {result.exit_code}",
            diagnostics=result.diagnostics,
            exit_code=result.exit_code
        )


class ExportStrategy(ABC):
    """Abstract base class for export strategies."""
    
    implemented = True
    
    def __init__(self, context: StrategyContext):
        self.context = context
    
    @abstractmethod
    def export(self, record: OperationRecord, target_path: str) -> Artifact:
        """Export the record's source database to ``target_path``."""
        pass


class ImportStrategy(ABC):
    """Abstract base class for import strategies."""
    
    implemented = True
    # True when a staged artifact is read from its blob URL, so no download is needed.
    restores_from_url = False
    
    def __init__(self, context: StrategyContext):
        self.context = context
    
    @abstractmethod
    def import_artifact(self, record: OperationRecord, artifact: Artifact) -> None:
        """Import a local artifact into the record's destination database."""
        pass


@register_strategy(None, Direction.EXPORT, ArtifactFormat.BACPAC)
@register_strategy(DeploymentType.AZURE_PAAS, Direction.EXPORT, ArtifactFormat.BACPAC)
@register_strategy(DeploymentType.AZURE_MI, Direction.EXPORT, ArtifactFormat.BACPAC)
class BacpacExportStrategy(ExportStrategy):
    """Export to BACPAC with SqlPackage."""
    
    def export(self, record: OperationRecord, target_path: str) -> Artifact:
        server = self.context.server_address(record.source_server)
        os.makedirs(os.path.dirname(os.path.abspath(target_path)), exist_ok=True)
        
        logger.info(f"Exporting {record.database_name} from {server} to {target_path}")
        result = self.context.package_engine.export(
            server, record.database_name, record.source_credential, target_path
        )
        _check_package_result(result, "export", record.database_name)
        
        if not os.path.isfile(target_path):
            raise ExternalEngineError(
                f"SqlPackage reported success but {target_path} does not exist",
                diagnostics=result.diagnostics,
                exit_code=result.exit_code
            )
        
        return Artifact(
            format=ArtifactFormat.BACPAC,
            location=target_path,
            logical_name=record.database_name,
            size_bytes=os.path.getsize(target_path),
        )


@register_strategy(DeploymentType.AZURE_MI, Direction.EXPORT, ArtifactFormat.BAK)
class ManagedInstanceBakExportStrategy(ExportStrategy):
    """
    Native backup from a Managed Instance.
    
    The instance can only back up to URL, so the backup lands in the
    record's container under the canonical blob name and is then
    downloaded to the local artifact path. The returned artifact is
    already staged.
    """
    
    def export(self, record: OperationRecord, target_path: str) -> Artifact:
        storage = self.context.storage
        if storage is None or record.storage is None:
            raise UnsupportedError("Managed Instance BAK export requires a storage location")
        
        server = self.context.server_address(record.source_server)
        credential = record.source_credential
        container = record.storage_container
        blob_name = derive_blob_name(
            record.operation_id, record.database_name, self.context.clock(), ArtifactFormat.BAK
        )
        url = storage.blob_url(container, blob_name)
        
        self.context.configure_url_credential(server, record, credential)
        options = BackupOptions(
            kind=record.backup_kind,
            compression=record.compression,
            copy_only=record.backup_kind == BackupKind.FULL,
        )
        self.context.db_engine.run_backup(server, record.database_name, credential, url, options)
        
        if not storage.exists(container, blob_name):
            raise ExternalEngineError(
                f"Backup of {record.database_name} completed but {blob_name} is not in {container}"
            )
        
        storage.download(container, blob_name, target_path)
        return Artifact(
            format=ArtifactFormat.BAK,
            location=target_path,
            logical_name=record.database_name,
            size_bytes=os.path.getsize(target_path) if os.path.isfile(target_path) else None,
            blob_name=blob_name,
            blob_url=url,
        )


@register_strategy(None, Direction.IMPORT, ArtifactFormat.BACPAC)
@register_strategy(DeploymentType.AZURE_PAAS, Direction.IMPORT, ArtifactFormat.BACPAC)
@register_strategy(DeploymentType.AZURE_MI, Direction.IMPORT, ArtifactFormat.BACPAC)
class BacpacImportStrategy(ImportStrategy):
    """Import a BACPAC with SqlPackage."""
    
    def import_artifact(self, record: OperationRecord, artifact: Artifact) -> None:
        server = self.context.server_address(record.destination_server)
        logger.info(f"Importing {artifact.location} into {record.database_name} on {server}")
        result = self.context.package_engine.import_package(
            artifact.location, server, record.database_name, record.destination_credential
        )
        _check_package_result(result, "import", record.database_name)


@register_strategy(DeploymentType.AZURE_MI, Direction.IMPORT, ArtifactFormat.BAK)
class ManagedInstanceBakImportStrategy(ImportStrategy):
    """
    Restore a BAK on a Managed Instance.
    
    Managed Instance restores only from URL: the artifact is uploaded to the
    record's container unless it is already staged there, then restored
    through a SAS credential.
    """
    
    restores_from_url = True
    
    def import_artifact(self, record: OperationRecord, artifact: Artifact) -> None:
        storage = self.context.storage
        if storage is None or record.storage is None:
            raise UnsupportedError(
                "Restoring a .bak on Managed Instance requires a storage account, "
                "container and access key"
            )
        
        container = record.storage_container
        if artifact.is_staged:
            blob_name = artifact.blob_name
            url = artifact.blob_url or storage.blob_url(container, blob_name)
            logger.info(f"Restoring from already staged blob {blob_name}")
        else:
            blob_name = derive_blob_name(
                record.operation_id, record.database_name, self.context.clock(), ArtifactFormat.BAK
            )
            url = storage.upload(container, blob_name, artifact.location)
        
        server = self.context.server_address(record.destination_server)
        credential = record.destination_credential
        self.context.configure_url_credential(server, record, credential)
        self.context.db_engine.run_restore(
            server,
            record.database_name,
            credential,
            url,
            RestoreOptions(
                data_file_location=record.data_file_location,
                log_file_location=record.log_file_location,
            )
        )


@register_strategy(DeploymentType.AZURE_IAAS, Direction.EXPORT, ArtifactFormat.BACPAC)
@register_strategy(DeploymentType.AZURE_IAAS, Direction.EXPORT, ArtifactFormat.BAK)
class UnimplementedExportStrategy(ExportStrategy):
    """Placeholder for platforms without an export procedure."""
    
    implemented = False
    
    def export(self, record: OperationRecord, target_path: str) -> Artifact:
        raise UnsupportedError(f"Export for deployment type {record.deployment_type} is not implemented")


@register_strategy(DeploymentType.AZURE_IAAS, Direction.IMPORT, ArtifactFormat.BACPAC)
@register_strategy(DeploymentType.AZURE_IAAS, Direction.IMPORT, ArtifactFormat.BAK)
class UnimplementedImportStrategy(ImportStrategy):
    """Placeholder for platforms without an import procedure."""
    
    implemented = False
    
    def import_artifact(self, record: OperationRecord, artifact: Artifact) -> None:
        raise UnsupportedError(f"Import for deployment type {record.deployment_type} is not implemented")
