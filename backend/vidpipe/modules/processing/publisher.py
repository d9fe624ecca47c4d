"""Artifact publishing to the object store.

Transfers a derived local file to a durable object key and returns its
locator. Uploads are retried with exponential backoff before giving up.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from vidpipe.core.metrics import ARTIFACT_UPLOADS_TOTAL
from vidpipe.core.retry import RetryConfig, get_retry_config
from vidpipe.core.storage import Storage, get_storage
from vidpipe.modules.processing.errors import PublishError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".mp4": "video/mp4",
}


def content_type_for(path: "Path | str") -> str:
    """Infer an artifact's content type from its extension."""
    return CONTENT_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


# ============================================
# Object key convention
# ============================================

def thumbnail_key(video_id: str) -> str:
    return f"thumbnails/{video_id}/thumbnail.jpg"


def rendition_key(video_id: str, rendition_name: str, filename: str) -> str:
    return f"videos/{video_id}/{rendition_name}/{filename}"


def master_playlist_key(video_id: str) -> str:
    return f"videos/{video_id}/master.m3u8"


class ArtifactPublisher:
    """Uploads derived files and returns their durable locators."""

    def __init__(
        self,
        storage: Optional[Storage] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.storage = storage or get_storage()
        self.retry_config = retry_config or get_retry_config("upload")

    async def publish(
        self,
        local_path: Path,
        object_key: str,
        content_type: Optional[str] = None,
    ) -> str:
        """Upload a local file under object_key.

        Writing the same key twice overwrites the object. The local file is
        removed once the upload succeeds and kept when it fails.

        Args:
            local_path: Derived file in the job's scratch directory
            object_key: Destination key in the object store
            content_type: Overrides the type inferred from the extension

        Returns:
            Durable locator of the published object

        Raises:
            PublishError: If the object store rejects the write after retries
        """
        local_path = Path(local_path)
        try:
            data = await asyncio.to_thread(local_path.read_bytes)
        except OSError as e:
            ARTIFACT_UPLOADS_TOTAL.labels(result="failed").inc()
            raise PublishError(object_key, f"cannot read {local_path.name}: {e}") from e

        content_type = content_type or content_type_for(local_path)
        locator = await self._put_with_retry(object_key, data, content_type)

        local_path.unlink(missing_ok=True)
        return locator

    async def _put_with_retry(self, object_key: str, data: bytes, content_type: str) -> str:
        last_error = "unknown error"
        max_attempts = max(1, self.retry_config.max_attempts)
        for attempt in range(1, max_attempts + 1):
            result = await asyncio.to_thread(self.storage.put, object_key, data, content_type)
            if result.success:
                ARTIFACT_UPLOADS_TOTAL.labels(result="succeeded").inc()
                return result.url

            last_error = result.error_message or "rejected by object store"
            if attempt < max_attempts:
                delay = self.retry_config.calculate_delay(attempt)
                logger.warning(
                    f"Upload of {object_key} failed (attempt {attempt}/{max_attempts}), "
                    f"retrying in {delay:.1f}s: {last_error}"
                )
                await asyncio.sleep(delay)

        ARTIFACT_UPLOADS_TOTAL.labels(result="failed").inc()
        raise PublishError(object_key, last_error)
