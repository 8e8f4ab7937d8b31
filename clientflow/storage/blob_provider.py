from datetime import datetime, timedelta
from typing import Optional, BinaryIO

from azure.core.exceptions import ResourceNotFoundError
from azure.storage.blob import (
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
    BlobSasPermissions,
)

from ..config import settings
from .provider import StorageProvider


class BlobStorageProvider(StorageProvider):
    """Azure Blob storage; each bucket is a container, the rest of the key is the blob name."""

    def __init__(self) -> None:
        if not settings.azure_blob_connection:
            raise RuntimeError("AZURE_BLOB_CONNECTION must be set")
        self._service = BlobServiceClient.from_connection_string(settings.azure_blob_connection)

    def _client(self, key: str):
        container, _, blob_name = key.lstrip("/").partition("/")
        return self._service.get_blob_client(container, blob_name)

    def copy_in(self, src_stream: bytes | BinaryIO, key: str, content_type: Optional[str] = None, cache_control: Optional[str] = None) -> None:
        self._client(key).upload_blob(
            src_stream,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type, cache_control=cache_control),
        )

    def read(self, key: str) -> Optional[bytes]:
        try:
            return self._client(key).download_blob().readall()
        except ResourceNotFoundError:
            return None

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        client = self._client(key)
        expiry = datetime.utcnow() + timedelta(seconds=expires_s)
        sas = generate_blob_sas(
            account_name=self._service.account_name,
            container_name=client.container_name,
            blob_name=client.blob_name,
            account_key=self._service.credential.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=expiry,
        )
        return f"{client.url}?{sas}"

    def exists(self, key: str) -> bool:
        return self._client(key).exists()

    def delete(self, key: str) -> bool:
        try:
            self._client(key).delete_blob()
        except ResourceNotFoundError:
            return False
        return True
