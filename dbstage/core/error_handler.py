"""
Error categorisation for dbstage.

This module maps the exception taxonomy onto error categories and
operator-facing remediation steps. Failures are reported, never retried.
"""

import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from .exceptions import (
    ConfigurationError,
    ConnectivityError,
    ConnectivityTimeoutError,
    ExternalEngineError,
    InvalidPathError,
    NotFoundError,
    ResourceError,
    TransferError,
    UnsupportedError,
    ValidationError,
)


class ErrorCategory(str, Enum):
    """Categories of errors for reporting."""
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    CONNECTIVITY = "connectivity"
    TIMEOUT = "timeout"
    RESOURCE = "resource"
    ENGINE = "engine"
    NOT_FOUND = "not_found"
    UNSUPPORTED = "unsupported"
    TRANSFER = "transfer"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Context information for an error occurrence."""
    timestamp: datetime = field(default_factory=datetime.now)
    operation_id: Optional[str] = None
    stage: Optional[str] = None
    additional_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorInfo:
    """Categorised error information."""
    error: Exception
    category: ErrorCategory
    severity: ErrorSeverity
    context: ErrorContext
    remediation_steps: List[str]
    traceback_str: str
    diagnostics: str = ""

    @property
    def message(self) -> str:
        return str(self.error)


class ErrorHandler:
    """
    Categorises pipeline errors and attaches remediation guidance.
    """
    
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._error_mappings = self._build_error_mappings()
        self._remediation_guides = self._build_remediation_guides()
    
    def _build_error_mappings(self) -> Dict[Type[Exception], Dict[str, Any]]:
        """Build mapping of exception types to error categories and severities."""
        # Subclasses must precede their parents; lookup falls back to isinstance order.
        return {
            ConnectivityTimeoutError: {
                "category": ErrorCategory.TIMEOUT,
                "severity": ErrorSeverity.HIGH,
            },
            ConnectivityError: {
                "category": ErrorCategory.CONNECTIVITY,
                "severity": ErrorSeverity.HIGH,
            },
            ValidationError: {
                "category": ErrorCategory.VALIDATION,
                "severity": ErrorSeverity.MEDIUM,
            },
            ConfigurationError: {
                "category": ErrorCategory.CONFIGURATION,
                "severity": ErrorSeverity.HIGH,
            },
            InvalidPathError: {
                "category": ErrorCategory.CONFIGURATION,
                "severity": ErrorSeverity.MEDIUM,
            },
            ResourceError: {
                "category": ErrorCategory.RESOURCE,
                "severity": ErrorSeverity.MEDIUM,
            },
            ExternalEngineError: {
                "category": ErrorCategory.ENGINE,
                "severity": ErrorSeverity.CRITICAL,
            },
            NotFoundError: {
                "category": ErrorCategory.NOT_FOUND,
                "severity": ErrorSeverity.MEDIUM,
            },
            UnsupportedError: {
                "category": ErrorCategory.UNSUPPORTED,
                "severity": ErrorSeverity.HIGH,
            },
            TransferError: {
                "category": ErrorCategory.TRANSFER,
                "severity": ErrorSeverity.HIGH,
            },
            TimeoutError: {
                "category": ErrorCategory.TIMEOUT,
                "severity": ErrorSeverity.HIGH,
            },
            FileNotFoundError: {
                "category": ErrorCategory.CONFIGURATION,
                "severity": ErrorSeverity.MEDIUM,
            },
            OSError: {
                "category": ErrorCategory.RESOURCE,
                "severity": ErrorSeverity.MEDIUM,
            },
        }
    
    def _build_remediation_guides(self) -> Dict[ErrorCategory, List[str]]:
        """Build remediation guides for each error category."""
        return {
            ErrorCategory.CONFIGURATION: [
                "Check the settings file syntax and required values",
                "Verify local artifact paths and their permissions",
            ],
            ErrorCategory.VALIDATION: [
                "Fill in the missing columns for the record in the operations CSV",
                "Disable the export or import action if it is not needed",
            ],
            ErrorCategory.CONNECTIVITY: [
                "Confirm the server name and credentials are correct",
                "Check that the target database exists and the login can open it",
                "Verify the storage account name, container and access key",
            ],
            ErrorCategory.TIMEOUT: [
                "Add this machine's public IP address to the server firewall allow-list",
                "For Managed Instance, check the public endpoint and NSG rule on port 3342",
                "Confirm outbound traffic on port 1433 is not blocked locally",
            ],
            ErrorCategory.RESOURCE: [
                "Free disk space on the volume holding the local artifact path",
                "Point the local artifact path at a larger volume",
            ],
            ErrorCategory.ENGINE: [
                "Read the engine diagnostics below; they are reproduced verbatim",
                "Check the login has the permissions the export, import or restore needs",
            ],
            ErrorCategory.NOT_FOUND: [
                "Confirm a backup of this database exists in the storage container",
                "Check the operation id and database name match the blob naming convention",
            ],
            ErrorCategory.UNSUPPORTED: [
                "Check the deployment type and artifact format combination is supported",
                "Use a BACPAC artifact for Azure SQL Database targets",
            ],
            ErrorCategory.TRANSFER: [
                "Verify the storage access key and container permissions",
                "Check network stability between this machine and the storage account",
            ],
            ErrorCategory.UNKNOWN: [
                "Review the log output for additional context",
            ],
        }
    
    def categorize_error(self, error: Exception, context: Optional[ErrorContext] = None) -> ErrorInfo:
        """
        Categorize an error and create error information.
        
        Args:
            error: The exception that occurred
            context: Optional context information
            
        Returns:
            ErrorInfo object with categorized error details
        """
        mapping = self._error_mappings.get(type(error))
        
        if not mapping:
            for exc_type, exc_mapping in self._error_mappings.items():
                if isinstance(error, exc_type):
                    mapping = exc_mapping
                    break
        
        if not mapping:
            mapping = {
                "category": ErrorCategory.UNKNOWN,
                "severity": ErrorSeverity.MEDIUM,
            }
        
        category = mapping["category"]
        
        return ErrorInfo(
            error=error,
            category=category,
            severity=mapping["severity"],
            context=context or ErrorContext(),
            remediation_steps=list(self._remediation_guides.get(category, [])),
            traceback_str="".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
            diagnostics=getattr(error, "diagnostics", "") or "",
        )
