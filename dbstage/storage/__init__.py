"""
Blob storage access for dbstage.

This module provides the blob storage contract, its Azure implementation
and the backup artifact locator.
"""

from dbstage.storage.base import BlobInfo, BlobStorage, StorageFactory
from dbstage.storage.locator import BackupArtifactLocator, build_candidate_patterns, matches_wildcard

__all__ = [
    "BlobInfo",
    "BlobStorage",
    "StorageFactory",
    "BackupArtifactLocator",
    "build_candidate_patterns",
    "matches_wildcard",
]
