"""Exceptions raised inside the processing pipeline."""

from vidpipe.core.storage import StorageError


class ProcessingError(Exception):
    """Base class for processing failures."""


class SourceFetchError(ProcessingError):
    """The source could not be copied into the job's scratch directory."""


class ProbeError(ProcessingError):
    """The source could not be probed or has no video stream."""


class ThumbnailError(ProcessingError):
    """The poster frame could not be extracted."""


class EncodeError(ProcessingError):
    """A single rendition failed to encode or segment."""


class PublishError(StorageError):
    """An artifact could not be written to the object store."""

    def __init__(self, object_key: str, message: str):
        super().__init__(f"{object_key}: {message}")
        self.object_key = object_key


class InternalError(ProcessingError):
    """An unexpected defect inside the pipeline."""
