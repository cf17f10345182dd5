"""
Validation module for dbstage.

This module provides field validation and live reachability checks
run before any costly operation starts.
"""

from dbstage.validation.connectivity import ConnectivityCheck, ConnectivityValidator, ValidationResult
from dbstage.validation.engine import PreflightReport, PreflightValidator
from dbstage.validation.fields import missing_fields, validate_fields

__all__ = [
    "ConnectivityCheck",
    "ConnectivityValidator",
    "ValidationResult",
    "PreflightReport",
    "PreflightValidator",
    "missing_fields",
    "validate_fields",
]
