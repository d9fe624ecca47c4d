"""Object storage backends for derived artifacts.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
Locators returned by every backend are stable URLs; writes to the same key
overwrite the previous object (last write wins).
"""

import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from vidpipe.core.config import settings


class StorageError(Exception):
    """Raised when the object store is unreachable or rejects an operation."""


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    url: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False

    @classmethod
    def from_settings(cls) -> "StorageConfig":
        return cls(
            backend=settings.STORAGE_BACKEND,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            use_ssl=settings.STORAGE_USE_SSL,
            local_path=settings.LOCAL_STORAGE_PATH,
            cdn_domain=settings.CDN_DOMAIN,
            cdn_enabled=settings.CDN_ENABLED,
        )


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Write bytes under a key."""

    @abstractmethod
    def download(self, key: str, destination: str) -> bool:
        """Download an object to a local path."""

    @abstractmethod
    def get_url(self, key: str) -> str:
        """Get the stable public URL for a key."""


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.cdn_domain = config.cdn_domain
        self.cdn_enabled = config.cdn_enabled

    def _get_full_path(self, key: str) -> Path:
        return self.base_path / key

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Write bytes to local storage.

        The object is written to a sibling temp file and renamed into place,
        so a concurrent reader never sees a partially written artifact.
        """
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            tmp_path = dest_path.with_name(f".{dest_path.name}.partial")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, dest_path)

            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key),
                file_size=len(data),
            )
        except OSError as e:
            return StorageResult(
                success=False,
                key=key,
                url="",
                error_message=str(e),
            )

    def download(self, key: str, destination: str) -> bool:
        src_path = self._get_full_path(key)
        if not src_path.is_file():
            return False
        try:
            shutil.copyfile(src_path, destination)
            return True
        except OSError:
            return False

    def get_url(self, key: str) -> str:
        if self.cdn_enabled and self.cdn_domain:
            return f"https://{self.cdn_domain}/{key}"
        return f"file://{self._get_full_path(key).absolute()}"


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend."""

    def __init__(self, config: StorageConfig, client=None):
        self.config = config
        self._client = client

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            import boto3
            from botocore.config import Config as BotoConfig

            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key or None,
                "aws_secret_access_key": self.config.secret_key or None,
            }

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )

            if not self.config.use_ssl and self.config.endpoint_url:
                # Allow non-SSL for local MinIO
                client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._get_client().put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            return StorageResult(
                success=False,
                key=key,
                url="",
                error_message=str(e),
            )

        return StorageResult(
            success=True,
            key=key,
            url=self.get_url(key),
            file_size=len(data),
            etag=response.get("ETag", "").strip('"'),
        )

    def download(self, key: str, destination: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._get_client().download_file(self.config.bucket, key, destination)
            return True
        except (BotoCoreError, ClientError):
            return False

    def get_url(self, key: str) -> str:
        """Get the public URL for a key.

        Playback clients fetch segments long after processing ends, so the
        locator must not expire; presigned URLs are never returned here.
        """
        if self.config.cdn_enabled and self.config.cdn_domain:
            return f"https://{self.config.cdn_domain}/{key}"
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"
        region = self.config.region or "us-east-1"
        return f"https://{self.config.bucket}.s3.{region}.amazonaws.com/{key}"


class Storage:
    """Universal storage interface.

    Automatically selects the appropriate backend based on configuration.
    """

    _instance: Optional["Storage"] = None

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig.from_settings()
        self._backend = self._create_backend(self.config)

    def _create_backend(self, config: StorageConfig) -> StorageBackend:
        backend_type = config.backend.lower()

        if backend_type == "local":
            return LocalStorage(config)
        elif backend_type in ("s3", "minio", "aws"):
            return S3Storage(config)
        else:
            raise ValueError(f"Unsupported storage backend: {backend_type}")

    @classmethod
    def get_instance(cls) -> "Storage":
        """Get singleton storage instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        return self._backend.put(key, data, content_type)

    def download(self, key: str, destination: str) -> bool:
        return self._backend.download(key, destination)

    def get_url(self, key: str) -> str:
        return self._backend.get_url(key)


def get_storage() -> Storage:
    """Get the default storage instance."""
    return Storage.get_instance()
