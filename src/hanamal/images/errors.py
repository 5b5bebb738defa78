"""Error taxonomy for image ingestion.

Per-image errors (everything under DownloadError plus ImageWriteError) are
caught by the pipeline, logged and counted. RegistryPersistenceError is the
one error that aborts a run.
"""


class ImagePipelineError(Exception):
    """Base class for image pipeline errors."""


class DownloadError(ImagePipelineError):
    """An image could not be fetched."""

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(message)


class TransientNetworkError(DownloadError):
    """DNS, TLS, connection reset, timeout, or a truncated or undecodable body."""

    def __init__(self, url: str, reason: str) -> None:
        self.reason = reason
        super().__init__(url, f"network error fetching {url}: {reason}")


class ImageHTTPError(DownloadError):
    """Terminal response other than 200 after following redirects."""

    def __init__(self, url: str, status_code: int, reason: str = "") -> None:
        self.status_code = status_code
        detail = f" {reason}" if reason else ""
        super().__init__(url, f"HTTP {status_code}{detail} fetching {url}")


class TooManyRedirectsError(DownloadError):
    def __init__(self, url: str, max_redirects: int) -> None:
        self.max_redirects = max_redirects
        super().__init__(url, f"more than {max_redirects} redirects fetching {url}")


class ImageTooLargeError(DownloadError):
    def __init__(self, url: str, limit: int) -> None:
        self.limit = limit
        super().__init__(url, f"image at {url} exceeds {limit} bytes")


class ImageWriteError(ImagePipelineError):
    """A downloaded image could not be written to the image directory."""


class RegistryCorruptionError(ImagePipelineError):
    """The persisted registry could not be parsed."""


class RegistryPersistenceError(ImagePipelineError):
    """The registry could not be written back to disk."""
