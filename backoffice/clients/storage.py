from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import httpx
from azure.core.exceptions import AzureError
from azure.storage.blob.aio import BlobServiceClient

from backoffice.domain.errors import DomainDependencyError, DomainValidationError, StorageValidationError

AZURE_BLOB_HOST_SUFFIXES: tuple[str, ...] = (
    ".blob.core.windows.net",
    ".blob.core.usgovcloudapi.net",
    ".blob.core.chinacloudapi.cn",
    ".blob.core.cloudapi.de",
)
AZURE_BLOB_PATH = re.compile(r"^azure://([^/]+)/(.+)$")

logger = logging.getLogger("storage")


def is_allowed_blob_url(value: str) -> bool:
    try:
        parsed = urlsplit(value)
    except ValueError:
        return False
    if parsed.scheme != "https":
        return False
    hostname = (parsed.hostname or "").lower()
    return any(hostname.endswith(suffix) for suffix in AZURE_BLOB_HOST_SUFFIXES)


@dataclass
class ContentStorage:
    """Resolves document version content into bytes.

    Supported references: data URLs, bare base64 payloads, https URLs on
    Azure Blob hosts and azure://<container>/<blob> paths resolved through the
    storage account connection string. Plain http and any other https host are
    rejected with StorageValidationError before any network call is made.
    """

    timeout_seconds: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None
    azure_connection_string: str | None = None
    blob_service_factory: Callable[[str], Any] = BlobServiceClient.from_connection_string

    async def get_buffer(self, content: str) -> bytes:
        if content.startswith("data:"):
            payload = _data_url_payload(content)
            if payload is not None:
                return _decode_base64(payload)
        if content.startswith("https://"):
            if not is_allowed_blob_url(content):
                raise StorageValidationError(content)
            return await self._download(content)
        if content.startswith("azure://"):
            return await self._download_blob_path(content)
        if content.startswith("http://"):
            raise StorageValidationError(content)
        return _decode_base64(content)

    async def _download_blob_path(self, reference: str) -> bytes:
        match = AZURE_BLOB_PATH.match(reference)
        if match is None:
            raise DomainValidationError("invalid_azure_blob_path")
        if not self.azure_connection_string:
            logger.warning(
                "azure storage connection string missing",
                extra={"error_code": "azure_storage_missing_connection_string"},
            )
            raise DomainDependencyError("missing_azure_storage_connection_string")

        container, blob_name = match.groups()
        try:
            service = self.blob_service_factory(self.azure_connection_string)
            async with service:
                blob = service.get_blob_client(container=container, blob=blob_name)
                downloader = await blob.download_blob()
                return await downloader.readall()
        except (AzureError, ValueError) as exc:
            raise DomainDependencyError(f"blob_download_failed:{exc.__class__.__name__}") from exc

    async def _download(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise DomainDependencyError(f"blob_download_failed:{exc.response.status_code}") from exc
            except httpx.HTTPError as exc:
                raise DomainDependencyError(f"blob_download_failed:{exc.__class__.__name__}") from exc
        return response.content


def _data_url_payload(content: str) -> str | None:
    _header, separator, payload = content.partition(",")
    if not separator:
        return None
    return payload


def _decode_base64(payload: str) -> bytes:
    try:
        return base64.b64decode(payload.strip(), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise DomainValidationError("invalid_document_content") from exc
