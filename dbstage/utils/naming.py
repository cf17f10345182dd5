"""
Canonical names for servers, local artifacts and blobs.

All functions here are pure string/path transformations. The blob naming
pattern is shared with earlier runs writing into the same container, so it
must not change.
"""

import ntpath
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from dbstage.core.exceptions import InvalidPathError
from dbstage.models.config import ArtifactFormat

DEFAULT_SERVER_SUFFIX = ".database.windows.net"
DEFAULT_BLOB_ENDPOINT_SUFFIX = "blob.core.windows.net"
BLOB_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
DATABASE_PLACEHOLDER = "{database}"


def _path_module(path_str: str):
    """ntpath for Windows-style paths (backslashes or a drive), os.path otherwise."""
    if "\\" in path_str or ntpath.splitdrive(path_str)[0]:
        return ntpath
    return os.path


def derive_server_address(name: str, suffix: str = DEFAULT_SERVER_SUFFIX) -> str:
    """Append the database-service domain suffix unless already present."""
    if name.lower().endswith(suffix.lower()):
        return name
    return f"{name}{suffix}"


def derive_local_artifact_name(original_path: Union[str, Path], operation_id: str) -> str:
    """
    Prefix the artifact file name with ``{operation_id}_``.
    
    The prefix is applied once: a path whose file name already carries it
    is returned unchanged.
    
    Raises:
        InvalidPathError: If the path is empty or has no file name
    """
    path_str = str(original_path) if original_path is not None else ""
    if not path_str.strip():
        raise InvalidPathError("Local artifact path is empty")
    if not operation_id:
        raise InvalidPathError(f"Cannot prefix {path_str}: operation id is empty")
    
    pathmod = _path_module(path_str)
    directory, filename = pathmod.split(path_str)
    if not filename:
        raise InvalidPathError(f"Local artifact path has no file name: {path_str}")
    
    prefix = f"{operation_id}_"
    stem, extension = pathmod.splitext(filename)
    # Checked on the full file name so an id containing a dot is still idempotent.
    if stem.startswith(prefix) or filename.startswith(prefix):
        return path_str
    
    return pathmod.join(directory, f"{prefix}{stem}{extension}")


def derive_blob_name(
    operation_id: str,
    database_name: str,
    timestamp: datetime,
    format: Union[ArtifactFormat, str]
) -> str:
    """Build ``{operationId}_{databaseName}_{yyyyMMdd_HHmmss}.{format}``."""
    artifact_format = ArtifactFormat.parse(format)
    stamp = timestamp.strftime(BLOB_TIMESTAMP_FORMAT)
    return f"{operation_id}_{database_name}_{stamp}{artifact_format.extension}"


def with_artifact_extension(path: Union[str, Path], format: ArtifactFormat) -> str:
    """
    Give a path the extension of ``format``.
    
    A known artifact extension is replaced; any other suffix is kept and
    the artifact extension appended.
    """
    path_str = str(path)
    if ArtifactFormat.from_extension(path_str) is not None:
        return _path_module(path_str).splitext(path_str)[0] + format.extension
    return path_str + format.extension


def expand_path_template(template: str, database_name: str) -> str:
    """Substitute the ``{database}`` placeholder of a local path template."""
    return os.path.expanduser(template.replace(DATABASE_PLACEHOLDER, database_name))


def container_url(
    account: str,
    container: str,
    endpoint_suffix: str = DEFAULT_BLOB_ENDPOINT_SUFFIX
) -> str:
    """HTTPS URL of a storage container."""
    return f"https://{account}.{endpoint_suffix}/{container}"


def blob_url(
    account: str,
    container: str,
    blob_name: str,
    endpoint_suffix: str = DEFAULT_BLOB_ENDPOINT_SUFFIX
) -> str:
    """HTTPS URL of a blob."""
    return f"{container_url(account, container, endpoint_suffix)}/{blob_name}"


def resolve_local_artifact_path(
    template: Optional[str],
    database_name: str,
    operation_id: str
) -> Optional[str]:
    """
    The record's local artifact path: template expanded, then id-prefixed.
    
    This is the one derived path used both as the export target and for
    the import "local file first" check. Returns None when no template is set.
    """
    if not template:
        return None
    return derive_local_artifact_name(expand_path_template(template, database_name), operation_id)
