"""
Export and import dispatchers.

The dispatchers pick the artifact format for a record, look the strategy up
in the dispatch table and run it.
"""

import logging
from typing import List, Optional

from dbstage.core.exceptions import UnsupportedError
from dbstage.models.config import ArtifactFormat, DeploymentType, Direction, OperationRecord
from dbstage.models.session import Artifact
from dbstage.utils.naming import with_artifact_extension

from . import strategies  # noqa: F401  (registers the built-in strategies)
from .factory import StrategyFactory
from .strategies import ExportStrategy, ImportStrategy, StrategyContext

logger = logging.getLogger(__name__)

# Deployment types whose export is always a BACPAC, whatever the record asks for.
BACPAC_ONLY = (None, DeploymentType.AZURE_PAAS)


class ExportDispatcher:
    """Selects and runs the export strategy for a record."""
    
    def __init__(self, context: StrategyContext, factory=StrategyFactory):
        self.context = context
        self.factory = factory
    
    def select_format(self, record: OperationRecord) -> ArtifactFormat:
        if record.deployment in BACPAC_ONLY:
            return ArtifactFormat.BACPAC
        return record.backup_format
    
    def get_strategy(self, record: OperationRecord, artifact_format: ArtifactFormat) -> ExportStrategy:
        strategy_class = self.factory.get_strategy_class(record.deployment, Direction.EXPORT, artifact_format)
        if strategy_class is None:
            raise UnsupportedError(
                f"{artifact_format.value} export is not supported for deployment type {record.deployment_type}"
            )
        return strategy_class(self.context)
    
    def export(self, record: OperationRecord, local_path: str) -> Artifact:
        """
        Export the record's database to a local artifact.
        
        Args:
            record: Operation record with export enabled
            local_path: Derived local artifact path; its extension is set to the format's
        
        Returns:
            The exported artifact
        
        Raises:
            UnsupportedError: If the deployment type has no export procedure
            ExternalEngineError: If the engine reports failure
        """
        artifact_format = self.select_format(record)
        strategy = self.get_strategy(record, artifact_format)
        target_path = with_artifact_extension(local_path, artifact_format)
        logger.debug(f"Export strategy {type(strategy).__name__} selected for {record.describe()}")
        return strategy.export(record, target_path)


class ImportDispatcher:
    """Selects and runs the import strategy for a record."""
    
    def __init__(self, context: StrategyContext, factory=StrategyFactory):
        self.context = context
        self.factory = factory
    
    def acceptable_formats(self, record: OperationRecord) -> List[ArtifactFormat]:
        """
        Formats the record's deployment type can import.
        
        Raises:
            UnsupportedError: If no import procedure is implemented for the type
        """
        formats = [
            artifact_format
            for artifact_format in self.factory.registered_formats(record.deployment, Direction.IMPORT)
            if self.factory.get_strategy_class(record.deployment, Direction.IMPORT, artifact_format).implemented
        ]
        if not formats:
            raise UnsupportedError(f"Import for deployment type {record.deployment_type} is not implemented")
        return formats
    
    def local_formats(self, record: OperationRecord) -> List[ArtifactFormat]:
        """Registered import formats, the record's configured format first."""
        formats = self.factory.registered_formats(record.deployment, Direction.IMPORT)
        return sorted(formats, key=lambda f: f != record.backup_format)
    
    def get_strategy(self, record: OperationRecord, artifact_format: Optional[ArtifactFormat], location: str) -> ImportStrategy:
        if artifact_format is None:
            raise UnsupportedError(f"Unrecognized artifact extension for import: {location}")
        
        strategy_class = self.factory.get_strategy_class(record.deployment, Direction.IMPORT, artifact_format)
        if strategy_class is None:
            raise UnsupportedError(
                f"{artifact_format.extension} artifacts cannot be imported for deployment type "
                f"{record.deployment_type}"
            )
        return strategy_class(self.context)
    
    def import_artifact(self, record: OperationRecord, artifact: Artifact) -> None:
        """
        Import a local artifact; the format comes from its file extension.
        
        Raises:
            UnsupportedError: For an intermediate server, an unknown extension or
                a format the deployment type cannot import
            ExternalEngineError: If the engine reports failure
        """
        if record.intermediate_server:
            raise UnsupportedError(
                f"Cleaning memory-optimized objects through intermediate server "
                f"{record.intermediate_server} is not implemented"
            )
        
        artifact_format = ArtifactFormat.from_extension(artifact.location)
        strategy = self.get_strategy(record, artifact_format, artifact.location)
        logger.debug(f"Import strategy {type(strategy).__name__} selected for {record.describe()}")
        strategy.import_artifact(record, artifact)
