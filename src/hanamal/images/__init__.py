"""Image ingestion: find, download, deduplicate and register record images.

Airtable attachment URLs expire within hours, so every image is downloaded
during the sync that first sees it and the records are rewritten to local
paths before anything is rendered.
"""

from hanamal.images.downloader import Downloader, DownloadResult
from hanamal.images.errors import (
    DownloadError,
    ImageHTTPError,
    ImagePipelineError,
    ImageTooLargeError,
    ImageWriteError,
    RegistryCorruptionError,
    RegistryPersistenceError,
    TooManyRedirectsError,
    TransientNetworkError,
)
from hanamal.images.fields import IMAGE_FIELD_ALIASES, extract_image_references
from hanamal.images.models import (
    DatasetStats,
    ImageReference,
    RegistryEntry,
    SlotOutcome,
    SyncReport,
)
from hanamal.images.pipeline import ImagePipeline
from hanamal.images.registry import RegistryStore
from hanamal.images.rewriter import remap_local_paths, rewrite_record
from hanamal.images.storage import ImageStore

__all__ = [
    "DatasetStats",
    "DownloadError",
    "DownloadResult",
    "Downloader",
    "IMAGE_FIELD_ALIASES",
    "ImageHTTPError",
    "ImagePipeline",
    "ImagePipelineError",
    "ImageReference",
    "ImageStore",
    "ImageTooLargeError",
    "ImageWriteError",
    "RegistryCorruptionError",
    "RegistryEntry",
    "RegistryPersistenceError",
    "RegistryStore",
    "SlotOutcome",
    "SyncReport",
    "TooManyRedirectsError",
    "TransientNetworkError",
    "extract_image_references",
    "remap_local_paths",
    "rewrite_record",
]
