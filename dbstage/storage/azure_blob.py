"""
Azure Blob Storage implementation of the blob storage contract.

Uses azure-storage-blob with shared-key authentication built from the
record's storage account and access key.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceRequestTimeoutError,
    ServiceResponseTimeoutError,
)
from azure.storage.blob import BlobServiceClient, ContainerSasPermissions, generate_container_sas

from dbstage.core.exceptions import ConnectivityError, ConnectivityTimeoutError, TransferError
from dbstage.models.config import StorageLocation
from dbstage.storage.base import BlobInfo, BlobStorage
from dbstage.utils.naming import DEFAULT_BLOB_ENDPOINT_SUFFIX, blob_url as build_blob_url

logger = logging.getLogger(__name__)


class AzureBlobStorage(BlobStorage):
    """
    Azure Blob Storage client for one storage account.
    
    The underlying ``BlobServiceClient`` is created lazily on first use.
    """
    
    def __init__(
        self,
        account_name: str,
        account_key: str,
        endpoint_suffix: str = DEFAULT_BLOB_ENDPOINT_SUFFIX,
        timeout: int = 300
    ):
        self.account_name = account_name
        self.account_key = account_key
        self.endpoint_suffix = endpoint_suffix
        self.timeout = timeout
        self.account_url = f"https://{account_name}.{endpoint_suffix}"
        self._blob_service_client: Optional[BlobServiceClient] = None
    
    @classmethod
    def from_location(
        cls,
        location: StorageLocation,
        endpoint_suffix: str = DEFAULT_BLOB_ENDPOINT_SUFFIX
    ) -> "AzureBlobStorage":
        return cls(location.account, location.access_key, endpoint_suffix=endpoint_suffix)
    
    @property
    def client(self) -> BlobServiceClient:
        if self._blob_service_client is None:
            self._blob_service_client = BlobServiceClient(
                account_url=self.account_url,
                credential={"account_name": self.account_name, "account_key": self.account_key}
            )
            logger.debug(f"Azure blob client created for {self.account_url}")
        return self._blob_service_client
    
    def check_container(self, container: str) -> None:
        target = f"{self.account_url}/{container}"
        try:
            self.client.get_container_client(container).get_container_properties(
                timeout=self.timeout
            )
        except (ServiceRequestTimeoutError, ServiceResponseTimeoutError) as e:
            raise ConnectivityTimeoutError(
                f"Timed out reaching storage container {target}: {e}", target=target
            ) from e
        except ClientAuthenticationError as e:
            raise ConnectivityError(
                f"Storage authentication failed for {target}; check the access key", target=target
            ) from e
        except ResourceNotFoundError as e:
            raise ConnectivityError(f"Storage container not found: {target}", target=target) from e
        except AzureError as e:
            raise ConnectivityError(f"Storage container {target} is not accessible: {e}", target=target) from e
    
    def list_blobs(self, container: str) -> List[BlobInfo]:
        try:
            container_client = self.client.get_container_client(container)
            return [
                BlobInfo(name=props.name, last_modified=props.last_modified, size=props.size or 0)
                for props in container_client.list_blobs(timeout=self.timeout)
            ]
        except ServiceRequestError as e:
            raise ConnectivityError(f"Cannot reach storage account {self.account_name}: {e}") from e
        except AzureError as e:
            raise TransferError(f"Failed to list blobs in {container}: {e}") from e
    
    def get_blob_properties(self, container: str, blob_name: str) -> Optional[BlobInfo]:
        blob_client = self.client.get_blob_client(container=container, blob=blob_name)
        try:
            props = blob_client.get_blob_properties(timeout=self.timeout)
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise TransferError(f"Failed to read properties of {container}/{blob_name}: {e}") from e
        return BlobInfo(name=blob_name, last_modified=props.last_modified, size=props.size or 0)
    
    def upload(self, container: str, blob_name: str, local_path: Union[str, Path]) -> str:
        source = Path(local_path)
        if not source.is_file():
            raise TransferError(f"Source file not found: {source}")
        
        blob_client = self.client.get_blob_client(container=container, blob=blob_name)
        try:
            with open(source, 'rb') as data:
                blob_client.upload_blob(data, overwrite=True, timeout=self.timeout)
        except AzureError as e:
            raise TransferError(f"Upload of {source} to {container}/{blob_name} failed: {e}") from e
        
        logger.info(f"Uploaded {source} to {container}/{blob_name}")
        return blob_client.url
    
    def download(self, container: str, blob_name: str, local_path: Union[str, Path]) -> Path:
        destination = Path(local_path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        
        blob_client = self.client.get_blob_client(container=container, blob=blob_name)
        try:
            with open(destination, 'wb') as handle:
                blob_client.download_blob(timeout=self.timeout).readinto(handle)
        except AzureError as e:
            if destination.exists():
                os.remove(destination)
            raise TransferError(f"Download of {container}/{blob_name} failed: {e}") from e
        
        logger.info(f"Downloaded {container}/{blob_name} to {destination}")
        return destination
    
    def blob_url(self, container: str, blob_name: str) -> str:
        return build_blob_url(self.account_name, container, blob_name, self.endpoint_suffix)
    
    def generate_container_sas(self, container: str, expiry: timedelta) -> str:
        return generate_container_sas(
            account_name=self.account_name,
            container_name=container,
            account_key=self.account_key,
            permission=ContainerSasPermissions(read=True, write=True, list=True, create=True),
            expiry=datetime.now(timezone.utc) + expiry,
        )
