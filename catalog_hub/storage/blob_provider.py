from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import unquote

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
    name = "blob"

    def __init__(self) -> None:
        if not settings.azure_blob_connection or not settings.azure_blob_container:
            raise RuntimeError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(settings.azure_blob_connection)
        self._container = settings.azure_blob_container
        self._container_url = self._service.get_container_client(self._container).url.rstrip("/") + "/"

    def _blob_name(self, ref: str) -> str:
        if not self.owns(ref):
            raise FileNotFoundError(ref)
        return unquote(ref[len(self._container_url):].split("?", 1)[0])

    def put(self, data: bytes, content_type: str, key: str) -> str:
        client = self._service.get_blob_client(self._container, key.lstrip("/"))
        client.upload_blob(data, overwrite=True, content_settings=ContentSettings(content_type=content_type))
        return client.url

    def get(self, ref: str) -> bytes:
        client = self._service.get_blob_client(self._container, self._blob_name(ref))
        try:
            return client.download_blob().readall()
        except ResourceNotFoundError:
            raise FileNotFoundError(ref)

    def exists(self, ref: str) -> bool:
        if not self.owns(ref):
            return False
        client = self._service.get_blob_client(self._container, self._blob_name(ref))
        return client.exists()

    def owns(self, ref: str) -> bool:
        return bool(ref) and ref.startswith(self._container_url)

    def get_download_url(self, ref: str, expires_s: int) -> Optional[str]:
        if not self.owns(ref):
            return None
        blob_name = self._blob_name(ref)
        expiry = datetime.utcnow() + timedelta(seconds=expires_s)
        sas = generate_blob_sas(
            account_name=self._service.account_name,
            container_name=self._container,
            blob_name=blob_name,
            account_key=self._service.credential.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=expiry,
        )
        blob_url = self._service.get_blob_client(self._container, blob_name).url
        return f"{blob_url}?{sas}"

    def delete(self, ref: str) -> None:
        if not self.owns(ref):
            return
        client = self._service.get_blob_client(self._container, self._blob_name(ref))
        try:
            client.delete_blob()
        except ResourceNotFoundError:
            pass
