"""
Custom exceptions for dbstage.

This module defines the exception taxonomy used by the operation pipeline.
Every exception raised while processing a record is converted into a terminal
state for that record; none of them aborts the batch.
"""

from typing import Any, Dict, List, Optional


class DbStageError(Exception):
    """Base exception class for dbstage errors."""
    
    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(DbStageError):
    """Raised when runner settings or the record source cannot be loaded."""
    pass


class ValidationError(DbStageError):
    """Raised when an operation record is missing required fields."""
    
    def __init__(
        self,
        message: str,
        missing_fields: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.missing_fields = missing_fields or []


class ConnectivityError(DbStageError):
    """Raised when a server or storage endpoint is unreachable."""
    
    def __init__(self, message: str, target: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.target = target


class ConnectivityTimeoutError(ConnectivityError):
    """Raised when a connection attempt times out."""
    pass


class ResourceError(DbStageError):
    """Raised when local resources (disk space) are insufficient."""
    pass


class ExternalEngineError(DbStageError):
    """Raised when an export, import, backup or restore engine reports failure.

    ``diagnostics`` holds the engine's captured output verbatim.
    """
    
    def __init__(
        self,
        message: str,
        diagnostics: str = "",
        exit_code: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.diagnostics = diagnostics
        self.exit_code = exit_code


class NotFoundError(DbStageError):
    """Raised when no backup artifact matches a lookup."""
    pass


class UnsupportedError(DbStageError):
    """Raised for unimplemented deployment types or unsupported artifact formats."""
    pass


class TransferError(DbStageError):
    """Raised when a blob upload or download fails."""
    pass


class InvalidPathError(DbStageError):
    """Raised when an artifact path cannot be split into directory and file name."""
    pass
