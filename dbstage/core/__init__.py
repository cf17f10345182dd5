"""
Core module for dbstage.

This module contains the exception taxonomy and error categorisation
used throughout the application.
"""

from dbstage.core.exceptions import (
    DbStageError,
    ConfigurationError,
    ValidationError,
    ConnectivityError,
    ConnectivityTimeoutError,
    ResourceError,
    ExternalEngineError,
    NotFoundError,
    UnsupportedError,
    TransferError,
    InvalidPathError,
)

__all__ = [
    "DbStageError",
    "ConfigurationError",
    "ValidationError",
    "ConnectivityError",
    "ConnectivityTimeoutError",
    "ResourceError",
    "ExternalEngineError",
    "NotFoundError",
    "UnsupportedError",
    "TransferError",
    "InvalidPathError",
]
