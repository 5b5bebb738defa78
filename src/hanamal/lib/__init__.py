"""Library utilities shared by the sync and image pipeline.

This package contains reusable, **parametric** helpers configured through
function arguments. Domain logic belongs in hanamal.images and
hanamal.records.

Modules:
- client: Centralized httpx client creation (build_http_client)
- files: Atomic file writes (write_atomic, write_text_atomic)
- images: Content hashing and image filename helpers
- metrics: Operation timing with the @tracked decorator
- retry: Retry decorator for HTTP calls
- throttle: Concurrency and request-spacing limiter
"""

from hanamal.lib.client import build_http_client
from hanamal.lib.files import write_atomic, write_text_atomic
from hanamal.lib.images import (
    content_hash,
    file_hash,
    guess_extension,
    hashed_filename,
    is_image_file,
)
from hanamal.lib.metrics import (
    MetricsCollector,
    OperationMetrics,
    get_metrics_summary,
    log_metrics_summary,
    reset_metrics,
    tracked,
)
from hanamal.lib.retry import with_retry
from hanamal.lib.throttle import Throttle

__all__ = [
    # Client
    "build_http_client",
    # Files
    "write_atomic",
    "write_text_atomic",
    # Images
    "content_hash",
    "file_hash",
    "guess_extension",
    "hashed_filename",
    "is_image_file",
    # Metrics
    "MetricsCollector",
    "OperationMetrics",
    "get_metrics_summary",
    "log_metrics_summary",
    "reset_metrics",
    "tracked",
    # Retry
    "with_retry",
    # Throttle
    "Throttle",
]
