"""Fetch image bytes over HTTP.

Redirects are followed here rather than by httpx so the hop count is
capped and the originally requested URL survives for the registry. The
body is streamed and hashed incrementally.

No retries at this layer; the pipeline decides what is worth retrying.
"""

import logging

import httpx
from pydantic import BaseModel

from hanamal.images.errors import (
    ImageHTTPError,
    ImageTooLargeError,
    TooManyRedirectsError,
    TransientNetworkError,
)
from hanamal.lib.images import new_hasher
from hanamal.lib.metrics import tracked

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 307, 308})


class DownloadResult(BaseModel):
    """Bytes of one image plus where they actually came from."""

    requested_url: str
    final_url: str
    content: bytes
    content_hash: str
    content_type: str | None = None
    redirects: int = 0

    @property
    def size(self) -> int:
        return len(self.content)


class Downloader:
    """Redirect-following, hashing image fetcher.

    Args:
        client: Shared async client. Its timeout bounds every request; it
            should not follow redirects itself.
        max_redirects: Redirect hops allowed before giving up.
        max_bytes: Reject bodies larger than this (None = no limit).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_redirects: int = 5,
        max_bytes: int | None = None,
    ) -> None:
        self._client = client
        self.max_redirects = max_redirects
        self.max_bytes = max_bytes

    @tracked("image_download", size=lambda result: result.size)
    async def fetch(self, url: str) -> DownloadResult:
        """Download ``url``, following up to ``max_redirects`` redirects.

        Raises:
            TransientNetworkError: DNS, TLS, connection, timeout or
                truncated-body failures.
            ImageHTTPError: Terminal status other than 200, or a redirect
                without a Location header.
            TooManyRedirectsError: Redirect chain longer than the cap.
            ImageTooLargeError: Body exceeds ``max_bytes``.
        """
        current = url
        for hop in range(self.max_redirects + 1):
            try:
                async with self._client.stream("GET", current) as response:
                    if response.status_code in REDIRECT_STATUSES:
                        location = response.headers.get("location")
                        if not location:
                            raise ImageHTTPError(
                                url, response.status_code, "redirect without Location"
                            )
                        current = str(response.url.join(location))
                        logger.debug("Redirect %d for %s -> %s", hop + 1, url, current)
                        continue

                    if response.status_code != 200:
                        raise ImageHTTPError(
                            url, response.status_code, response.reason_phrase
                        )

                    hasher = new_hasher()
                    buffer = bytearray()
                    async for chunk in response.aiter_bytes():
                        buffer.extend(chunk)
                        hasher.update(chunk)
                        if self.max_bytes is not None and len(buffer) > self.max_bytes:
                            raise ImageTooLargeError(url, self.max_bytes)

                    return DownloadResult(
                        requested_url=url,
                        final_url=current,
                        content=bytes(buffer),
                        content_hash=hasher.hexdigest(),
                        content_type=response.headers.get("content-type"),
                        redirects=hop,
                    )
            except httpx.RequestError as e:
                raise TransientNetworkError(url, str(e) or type(e).__name__) from e

        raise TooManyRedirectsError(url, self.max_redirects)
