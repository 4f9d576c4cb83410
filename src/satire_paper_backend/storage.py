"""
Storage backends for publishing compiled papers.

Every backend implements :class:`StorageBackend.upload`, which stores the PDF
bytes under a filename and returns a public URL. Two backends are available:

- ``s3``: an AWS S3 bucket, written with boto3
- ``blob``: a hosted blob store (Vercel Blob REST API), written with httpx

The backend is chosen once at startup from the ``storage.backend`` setting.
Construction fails loudly when credentials are missing, and upload failures
are always re-raised as :class:`StorageError`.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Mapping, Optional
from urllib.parse import quote

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .configuration import get_credential
from .errors import ConfigurationError, StorageError

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
BLOB_API_VERSION = "7"


class StorageBackend(ABC):
    """Capability: publish bytes and return a public URL."""

    @abstractmethod
    async def upload(self, filename: str, data: bytes) -> str:
        pass


class S3StorageBackend(StorageBackend):
    """
    Upload to an S3 bucket with explicit credentials.

    Attributes:
        bucket_name: Target bucket
        region: AWS region of the bucket, used to build the public URL
    """

    def __init__(
        self,
        region: Optional[str],
        bucket_name: Optional[str],
        access_key_id: Optional[str],
        secret_access_key: Optional[str],
    ) -> None:
        required = {
            "AWS_REGION": region,
            "AWS_BUCKET_NAME": bucket_name,
            "AWS_ACCESS_KEY_ID": access_key_id,
            "AWS_SECRET_ACCESS_KEY": secret_access_key,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(f"Missing required AWS S3 configuration: {', '.join(missing)}")

        self.region = region
        self.bucket_name = bucket_name
        self._client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    def public_url(self, filename: str) -> str:
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{quote(filename)}"

    async def upload(self, filename: str, data: bytes) -> str:
        logger.info(f"Uploading {filename} to s3://{self.bucket_name}/{filename}")
        try:
            # boto3 is blocking; keep the event loop free while it talks to S3
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket_name,
                Key=filename,
                Body=data,
                ContentType=PDF_CONTENT_TYPE,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"S3 upload failed: {exc}")
            raise StorageError(f"Failed to upload file to S3: {exc}") from exc

        url = self.public_url(filename)
        logger.info(f"Upload successful: {url}")
        return url


class BlobStorageBackend(StorageBackend):
    """
    Upload to a hosted blob store with a read/write token.

    Objects are stored with public access; the store answers with the URL.
    """

    def __init__(
        self,
        token: Optional[str],
        base_url: str = "https://blob.vercel-storage.com",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not token:
            raise ConfigurationError("BLOB_READ_WRITE_TOKEN is required for blob storage")
        self._token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def upload(self, filename: str, data: bytes) -> str:
        headers = {
            "authorization": f"Bearer {self._token}",
            "x-api-version": BLOB_API_VERSION,
            "x-content-type": PDF_CONTENT_TYPE,
            "access": "public",
        }
        logger.info(f"Uploading {filename} to blob storage")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.put(f"{self.base_url}/{quote(filename)}", content=data, headers=headers)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Blob upload failed: {exc}")
            raise StorageError(f"Failed to upload file to blob storage: {exc}") from exc

        url = payload.get("url") if isinstance(payload, dict) else None
        if not url:
            raise StorageError("Failed to upload file to blob storage: response did not include a URL")

        logger.info(f"Upload successful: {url}")
        return url


def create_storage_backend(config: DictConfig, environ: Optional[Mapping[str, str]] = None) -> StorageBackend:
    """
    Build the storage backend selected by ``storage.backend``.

    Raises:
        ConfigurationError: For an unknown backend or missing credentials
    """
    backend = config.storage.backend
    if backend == "s3":
        return S3StorageBackend(
            region=get_credential("AWS_REGION", environ),
            bucket_name=get_credential("AWS_BUCKET_NAME", environ),
            access_key_id=get_credential("AWS_ACCESS_KEY_ID", environ),
            secret_access_key=get_credential("AWS_SECRET_ACCESS_KEY", environ),
        )
    if backend == "blob":
        return BlobStorageBackend(
            token=get_credential("BLOB_READ_WRITE_TOKEN", environ),
            base_url=config.storage.blob_base_url,
        )
    raise ConfigurationError(f"Unsupported storage backend: {backend!r}")
