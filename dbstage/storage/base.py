"""
Blob storage contract used by the operation pipeline.

Artifacts are always staged as whole blobs; there is no streaming or
resumable transfer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Union

from dbstage.models.config import StorageLocation


@dataclass(frozen=True)
class BlobInfo:
    """Listing entry for a single blob."""
    name: str
    last_modified: datetime
    size: int = 0


class BlobStorage(ABC):
    """
    Abstract blob storage client bound to one storage account.
    
    Implementations raise ``ConnectivityError`` when the account or
    container cannot be reached and ``TransferError`` when an upload or
    download fails.
    """
    
    account_name: str
    
    @abstractmethod
    def check_container(self, container: str) -> None:
        """Raise ConnectivityError unless the container is accessible."""
        pass
    
    @abstractmethod
    def list_blobs(self, container: str) -> List[BlobInfo]:
        """List every blob in the container."""
        pass
    
    @abstractmethod
    def get_blob_properties(self, container: str, blob_name: str) -> Optional[BlobInfo]:
        """Return the blob's listing entry, or None if it does not exist."""
        pass
    
    @abstractmethod
    def upload(self, container: str, blob_name: str, local_path: Union[str, Path]) -> str:
        """Upload a local file, overwriting any existing blob; returns the blob URL."""
        pass
    
    @abstractmethod
    def download(self, container: str, blob_name: str, local_path: Union[str, Path]) -> Path:
        """Download a blob to a local file; returns the local path."""
        pass
    
    @abstractmethod
    def blob_url(self, container: str, blob_name: str) -> str:
        """HTTPS URL of a blob."""
        pass
    
    @abstractmethod
    def generate_container_sas(self, container: str, expiry: timedelta) -> str:
        """Create a SAS token granting read/write/list on the container."""
        pass
    
    def exists(self, container: str, blob_name: str) -> bool:
        return self.get_blob_properties(container, blob_name) is not None


StorageFactory = Callable[[StorageLocation], BlobStorage]
