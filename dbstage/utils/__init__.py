"""
Utilities module for dbstage.

This module contains naming helpers, logging setup and
general utility functions used throughout the application.
"""

from dbstage.utils.helpers import (
    format_bytes,
    format_duration,
    load_config_file,
    save_json_report,
)
from dbstage.utils.logging import (
    LoggingReporter,
    Reporter,
    get_logger,
    setup_logging,
)
from dbstage.utils.naming import (
    derive_blob_name,
    derive_local_artifact_name,
    derive_server_address,
    resolve_local_artifact_path,
)

__all__ = [
    "format_bytes",
    "format_duration",
    "load_config_file",
    "save_json_report",
    "LoggingReporter",
    "Reporter",
    "get_logger",
    "setup_logging",
    "derive_blob_name",
    "derive_local_artifact_name",
    "derive_server_address",
    "resolve_local_artifact_path",
]
