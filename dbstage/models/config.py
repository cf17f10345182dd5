"""
Configuration models for dbstage.

This module defines Pydantic models for operation records (one row of
migration work), credentials, storage locations and runner settings.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DeploymentType(str, Enum):
    """Target database platform variants."""
    AZURE_PAAS = "AzurePaaS"
    AZURE_MI = "AzureMI"
    AZURE_IAAS = "AzureIaaS"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["DeploymentType"]:
        """Case-insensitive lookup; returns None for unrecognized values."""
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        lowered = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member
        return None


class ArtifactFormat(str, Enum):
    """Backup artifact formats."""
    BACPAC = "BACPAC"
    BAK = "BAK"

    @property
    def extension(self) -> str:
        return f".{self.value.lower()}"

    @classmethod
    def parse(cls, value: Union[str, "ArtifactFormat"]) -> "ArtifactFormat":
        if isinstance(value, cls):
            return value
        cleaned = str(value).strip().lstrip(".").upper()
        try:
            return cls(cleaned)
        except ValueError:
            raise ValueError(f"Unsupported artifact format: {value}") from None

    @classmethod
    def from_extension(cls, path: Union[str, Path]) -> Optional["ArtifactFormat"]:
        """Infer the format from a file or blob name; None when unrecognized."""
        suffix = Path(str(path)).suffix.lower()
        for member in cls:
            if member.extension == suffix:
                return member
        return None


class BackupKind(str, Enum):
    """Native backup kinds for BAK exports."""
    FULL = "Full"
    DIFFERENTIAL = "Differential"
    LOG = "Log"

    @classmethod
    def parse(cls, value: Union[str, "BackupKind"]) -> "BackupKind":
        if isinstance(value, cls):
            return value
        lowered = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member
        raise ValueError(f"Unsupported backup type: {value}")


class Direction(str, Enum):
    """Direction of a dispatched strategy."""
    EXPORT = "export"
    IMPORT = "import"


class SqlCredential(BaseModel):
    """SQL authentication credential pair."""
    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)


class StorageLocation(BaseModel):
    """Blob storage account, container and access key."""
    model_config = ConfigDict(frozen=True)

    account: str
    container: str
    access_key: str = Field(repr=False)


class OperationRecord(BaseModel):
    """One row of migration work.

    Field aliases match the column names of the operations CSV. Blank cells
    are dropped before validation so defaults apply.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    operation_id: Optional[str] = Field(default=None, alias="Operation_Id")
    database_name: Optional[str] = Field(default=None, alias="Database_Name")
    # Kept as the raw string so unrecognized types reach the dispatch default.
    deployment_type: str = Field(default=DeploymentType.AZURE_PAAS.value, alias="Type")
    export_enabled: bool = Field(default=False, alias="Export")
    import_enabled: bool = Field(default=False, alias="Import")
    remove_temp_file: bool = Field(default=True, alias="Remove_Tempfile")

    source_server: Optional[str] = Field(default=None, alias="Source_Server")
    source_user: Optional[str] = Field(default=None, alias="Source_User")
    source_password: Optional[str] = Field(default=None, alias="Source_Password", repr=False)

    destination_server: Optional[str] = Field(default=None, alias="Destination_Server")
    destination_user: Optional[str] = Field(default=None, alias="Destination_User")
    destination_password: Optional[str] = Field(
        default=None, alias="Destination_Password", repr=False
    )

    storage_account: Optional[str] = Field(default=None, alias="Storage_Account")
    storage_container: Optional[str] = Field(default=None, alias="Storage_Container")
    storage_access_key: Optional[str] = Field(default=None, alias="Storage_Access_Key", repr=False)

    local_artifact_path: Optional[str] = Field(default=None, alias="Local_Backup_File_Path")
    intermediate_server: Optional[str] = Field(default=None, alias="Intermediate_Server")
    data_file_location: Optional[str] = Field(default=None, alias="Data_File_Location")
    log_file_location: Optional[str] = Field(default=None, alias="Log_File_Location")

    backup_format: ArtifactFormat = Field(default=ArtifactFormat.BACPAC, alias="Backup_Format")
    backup_kind: BackupKind = Field(default=BackupKind.FULL, alias="Backup_Type")
    compression: bool = Field(default=False, alias="Compression")

    @model_validator(mode="before")
    @classmethod
    def drop_blank_values(cls, data: Any) -> Any:
        if isinstance(data, dict):
            cleaned = {}
            for key, value in data.items():
                if isinstance(value, str):
                    value = value.strip()
                    if not value:
                        continue
                if value is None:
                    continue
                cleaned[key] = value
            return cleaned
        return data

    @field_validator("backup_format", mode="before")
    @classmethod
    def parse_backup_format(cls, v):
        return ArtifactFormat.parse(v)

    @field_validator("backup_kind", mode="before")
    @classmethod
    def parse_backup_kind(cls, v):
        return BackupKind.parse(v)

    @property
    def deployment(self) -> Optional[DeploymentType]:
        """Parsed deployment type, or None when unrecognized."""
        return DeploymentType.parse(self.deployment_type)

    @property
    def has_action(self) -> bool:
        return self.export_enabled or self.import_enabled

    @property
    def source_credential(self) -> Optional[SqlCredential]:
        if not self.source_user or not self.source_password:
            return None
        return SqlCredential(username=self.source_user, password=self.source_password)

    @property
    def destination_credential(self) -> Optional[SqlCredential]:
        if not self.destination_user or not self.destination_password:
            return None
        return SqlCredential(username=self.destination_user, password=self.destination_password)

    @property
    def storage(self) -> Optional[StorageLocation]:
        if not (self.storage_account and self.storage_container and self.storage_access_key):
            return None
        return StorageLocation(
            account=self.storage_account,
            container=self.storage_container,
            access_key=self.storage_access_key,
        )

    def describe(self) -> str:
        """Short human-readable label used in log messages."""
        actions = []
        if self.export_enabled:
            actions.append("export")
        if self.import_enabled:
            actions.append("import")
        return (
            f"{self.operation_id or '?'}:{self.database_name or '?'} "
            f"[{self.deployment_type}; {'+'.join(actions) or 'no action'}]"
        )


class RunnerSettings(BaseModel):
    """Settings shared by every record in a batch."""
    sqlpackage_path: str = "sqlpackage"
    odbc_driver: str = "ODBC Driver 18 for SQL Server"
    trust_server_certificate: bool = False
    connection_timeout: int = Field(default=30, ge=1)
    command_timeout: Optional[int] = Field(default=None, ge=1)
    min_free_disk_gb: float = Field(default=10.0, ge=0)
    staging_dir: str = "./staging"
    server_suffix: str = ".database.windows.net"
    blob_endpoint_suffix: str = "blob.core.windows.net"
    sas_expiry_hours: int = Field(default=12, ge=1, le=168)
    log_level: str = "INFO"
    log_file: Optional[str] = None
    structured_logging: bool = False

    @field_validator("server_suffix")
    @classmethod
    def suffix_must_start_with_dot(cls, v):
        if v and not v.startswith("."):
            return f".{v}"
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v):
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def from_file(
        cls,
        file_path: Union[str, Path],
        overrides: Optional[Dict[str, Any]] = None
    ) -> "RunnerSettings":
        """Load settings from a YAML or JSON file, then apply overrides."""
        from dbstage.utils.helpers import load_config_file

        data = load_config_file(file_path) or {}
        data.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return cls(**data)


SUPPORTED_FORMATS: Dict[DeploymentType, Tuple[ArtifactFormat, ...]] = {
    DeploymentType.AZURE_PAAS: (ArtifactFormat.BACPAC,),
    DeploymentType.AZURE_MI: (ArtifactFormat.BACPAC, ArtifactFormat.BAK),
    DeploymentType.AZURE_IAAS: (),
}
