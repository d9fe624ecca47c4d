"""Localising the uploaded source before probing.

Supported locators:
    /abs/path or relative path   copied from the local filesystem
    file:///abs/path             copied from the local filesystem
    http(s)://...                streamed with httpx
    s3://bucket/key              downloaded from the configured object store
    uploads/raw/video.mp4        bare key, downloaded from the object store
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx

from vidpipe.core.retry import RetryConfig, get_retry_config
from vidpipe.core.storage import Storage, get_storage
from vidpipe.modules.processing.errors import SourceFetchError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


def source_filename(locator: str) -> str:
    """Local file name for a fetched source, keeping its extension."""
    suffix = Path(urlparse(locator).path).suffix.lower()
    if not suffix or len(suffix) > 6:
        suffix = ".bin"
    return f"source{suffix}"


class SourceFetcher:
    """Copies a job's source into its scratch directory."""

    def __init__(
        self,
        storage: Optional[Storage] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_config: Optional[RetryConfig] = None,
        http_timeout: float = 60.0,
    ):
        self._storage = storage
        self._http_client = http_client
        self.retry_config = retry_config or get_retry_config("source_download")
        self.http_timeout = http_timeout

    @property
    def storage(self) -> Storage:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    async def fetch(self, locator: str, dest_dir: Path) -> Path:
        """Make a local copy of the source.

        Args:
            locator: Where the uploaded source lives
            dest_dir: Job scratch directory

        Returns:
            Path of the local copy

        Raises:
            SourceFetchError: If the source cannot be localised
        """
        if not locator:
            raise SourceFetchError("empty source locator")

        destination = Path(dest_dir) / source_filename(locator)
        parsed = urlparse(locator)
        scheme = parsed.scheme.lower()

        if scheme in ("http", "https"):
            await self._fetch_http(locator, destination)
        elif scheme == "file":
            await self._copy_local(Path(unquote(parsed.path)), destination)
        elif scheme == "s3":
            await self._fetch_object(parsed.path.lstrip("/"), destination)
        elif scheme == "" and Path(locator).is_absolute():
            await self._copy_local(Path(locator), destination)
        elif scheme == "" and Path(locator).exists():
            await self._copy_local(Path(locator), destination)
        elif scheme == "":
            await self._fetch_object(locator, destination)
        else:
            raise SourceFetchError(f"unsupported source scheme: {scheme}")

        if not destination.is_file() or destination.stat().st_size == 0:
            raise SourceFetchError("source is empty")
        return destination

    async def _copy_local(self, path: Path, destination: Path) -> None:
        if not path.is_file():
            raise SourceFetchError(f"source file not found: {path}")
        try:
            await asyncio.to_thread(shutil.copyfile, path, destination)
        except OSError as e:
            raise SourceFetchError(f"cannot copy source: {e}") from e

    async def _fetch_object(self, key: str, destination: Path) -> None:
        if not key:
            raise SourceFetchError("empty object key")
        ok = await asyncio.to_thread(self.storage.download, key, str(destination))
        if not ok:
            raise SourceFetchError(f"cannot download object {key}")

    async def _fetch_http(self, url: str, destination: Path) -> None:
        max_attempts = max(1, self.retry_config.max_attempts)
        for attempt in range(1, max_attempts + 1):
            try:
                await self._download(url, destination)
                return
            except httpx.HTTPStatusError as e:
                # Client errors will not go away on retry
                if e.response.status_code < 500:
                    raise SourceFetchError(f"source download rejected: {e}") from e
                error: Exception = e
            except (httpx.HTTPError, OSError) as e:
                error = e

            if attempt == max_attempts:
                raise SourceFetchError(f"source download failed: {error}") from error
            delay = self.retry_config.calculate_delay(attempt)
            logger.warning(
                f"Source download failed (attempt {attempt}/{max_attempts}), "
                f"retrying in {delay:.1f}s: {error}"
            )
            await asyncio.sleep(delay)

    async def _download(self, url: str, destination: Path) -> None:
        if self._http_client is not None:
            await self._stream(self._http_client, url, destination)
            return
        async with httpx.AsyncClient(timeout=self.http_timeout, follow_redirects=True) as client:
            await self._stream(client, url, destination)

    async def _stream(self, client: httpx.AsyncClient, url: str, destination: Path) -> None:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            with open(destination, "wb") as f:
                async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
