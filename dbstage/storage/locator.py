"""
Backup artifact discovery in a storage container.

The search order is shared with earlier runs writing into the same
container: for each acceptable format, an operation-scoped pattern first,
then the legacy database-name patterns. Among all matches the most recently
modified blob wins.
"""

import logging
import re
from typing import Iterable, List, Optional, Pattern, Sequence

from dbstage.models.config import ArtifactFormat
from dbstage.models.session import Artifact
from dbstage.storage.base import BlobInfo, BlobStorage

logger = logging.getLogger(__name__)


def wildcard_to_regex(pattern: str, case_sensitive: bool = False) -> Pattern[str]:
    """Compile a glob where ``*`` matches any run of characters."""
    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile(f"^{body}$", flags | re.DOTALL)


def matches_wildcard(name: str, pattern: str, case_sensitive: bool = False) -> bool:
    return wildcard_to_regex(pattern, case_sensitive).match(name) is not None


def build_candidate_patterns(
    database_name: str,
    operation_id: Optional[str],
    formats: Sequence[ArtifactFormat]
) -> List[str]:
    """Candidate patterns in priority order."""
    patterns = []
    for artifact_format in formats:
        extension = artifact_format.extension
        if operation_id:
            patterns.append(f"{operation_id}_{database_name}*{extension}")
        patterns.append(f"*{database_name}*{extension}")
        patterns.append(f"{database_name}*{extension}")
    return patterns


def select_latest(candidates: Iterable[BlobInfo]) -> List[BlobInfo]:
    """Deduplicate by name (first occurrence wins), newest first."""
    unique = {}
    for blob in candidates:
        if blob.name not in unique:
            unique[blob.name] = blob
    # sorted() is stable, so equal timestamps keep pattern-priority order.
    return sorted(unique.values(), key=lambda b: b.last_modified, reverse=True)


class BackupArtifactLocator:
    """Finds the best-matching existing backup artifact in a container."""
    
    def __init__(self, storage: BlobStorage, case_sensitive: bool = False):
        self.storage = storage
        self.case_sensitive = case_sensitive
    
    def find_candidates(
        self,
        container: str,
        database_name: str,
        operation_id: Optional[str] = None,
        formats: Sequence[ArtifactFormat] = (ArtifactFormat.BACPAC,)
    ) -> List[BlobInfo]:
        """All matching blobs, deduplicated and sorted newest first."""
        patterns = build_candidate_patterns(database_name, operation_id, formats)
        if not patterns:
            return []
        
        listing = self.storage.list_blobs(container)
        logger.debug(f"Matching {len(listing)} blobs in {container} against {patterns}")
        
        matches: List[BlobInfo] = []
        for pattern in patterns:
            regex = wildcard_to_regex(pattern, self.case_sensitive)
            matches.extend(blob for blob in listing if regex.match(blob.name))
        
        return select_latest(matches)
    
    def locate(
        self,
        container: str,
        database_name: str,
        operation_id: Optional[str] = None,
        formats: Sequence[ArtifactFormat] = (ArtifactFormat.BACPAC,)
    ) -> Optional[Artifact]:
        """
        Return the most recent matching artifact, or None when nothing matches.
        
        Not finding anything is not an error here; callers decide whether it is fatal.
        """
        candidates = self.find_candidates(container, database_name, operation_id, formats)
        if not candidates:
            logger.info(f"No backup artifact for {database_name} in container {container}")
            return None
        
        best = candidates[0]
        artifact_format = ArtifactFormat.from_extension(best.name) or formats[0]
        logger.info(
            f"Selected {best.name} ({best.last_modified.isoformat()}) "
            f"from {len(candidates)} candidate(s)"
        )
        return Artifact(
            format=artifact_format,
            location=best.name,
            logical_name=database_name,
            size_bytes=best.size,
            last_modified=best.last_modified,
            blob_name=best.name,
            blob_url=self.storage.blob_url(container, best.name),
        )
