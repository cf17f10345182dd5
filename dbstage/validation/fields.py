"""
Field-presence validation for operation records.

Runs before any network or engine call. Missing fields are reported by
their CSV column names so the operator can fix the input file directly.
"""

from typing import List, Tuple

from dbstage.core.exceptions import ValidationError
from dbstage.models.config import OperationRecord

# (attribute, column name)
ALWAYS_REQUIRED: Tuple[Tuple[str, str], ...] = (
    ("operation_id", "Operation_Id"),
    ("database_name", "Database_Name"),
    ("storage_account", "Storage_Account"),
    ("storage_container", "Storage_Container"),
    ("storage_access_key", "Storage_Access_Key"),
)

EXPORT_REQUIRED: Tuple[Tuple[str, str], ...] = (
    ("source_server", "Source_Server"),
    ("source_user", "Source_User"),
    ("source_password", "Source_Password"),
    ("local_artifact_path", "Local_Backup_File_Path"),
)

IMPORT_REQUIRED: Tuple[Tuple[str, str], ...] = (
    ("destination_server", "Destination_Server"),
    ("destination_user", "Destination_User"),
    ("destination_password", "Destination_Password"),
)


def missing_fields(record: OperationRecord) -> List[str]:
    """Column names of required fields that are empty for the requested actions."""
    required = list(ALWAYS_REQUIRED)
    if record.export_enabled:
        required.extend(EXPORT_REQUIRED)
    if record.import_enabled:
        required.extend(IMPORT_REQUIRED)
    
    missing = []
    for attribute, column in required:
        value = getattr(record, attribute)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(column)
    return missing


def validate_fields(record: OperationRecord) -> None:
    """
    Raise ValidationError listing every missing required field.
    
    Args:
        record: Operation record to check
    
    Raises:
        ValidationError: If any field required by the enabled actions is empty
    """
    missing = missing_fields(record)
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            missing_fields=missing
        )
