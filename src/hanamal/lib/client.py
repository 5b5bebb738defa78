"""Centralized httpx client creation.

All outbound HTTP goes through :func:`build_http_client` so timeouts,
redirect policy and test transports are configured in one place.

Two kinds of clients are built per run:

- Records API client: carries the Airtable bearer token.
- Image client: no credentials, redirects handled by the downloader itself
  so the hop count can be capped and the requested URL recorded.

Examples:
    Image downloads::

        >>> async with build_http_client(timeout=10.0) as client:
        ...     result = await Downloader(client).fetch(url)

    Faked HTTP in tests::

        >>> transport = httpx.MockTransport(handler)
        >>> async with build_http_client(transport=transport) as client:
        ...     ...
"""

import httpx

from hanamal.version import __version__

USER_AGENT = f"hanamal/{__version__}"


def build_http_client(
    *,
    timeout: float = 10.0,
    headers: dict[str, str] | None = None,
    follow_redirects: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an ``httpx.AsyncClient`` with project defaults.

    Args:
        timeout: Per-request timeout in seconds (connect, read, write, pool).
        headers: Extra default headers (e.g. Authorization).
        follow_redirects: Let httpx follow redirects transparently.
        transport: Optional transport override (``httpx.MockTransport`` in tests).

    Returns:
        An unopened client; use it as an async context manager.
    """
    merged = {"User-Agent": USER_AGENT}
    if headers:
        merged.update(headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        headers=merged,
        follow_redirects=follow_redirects,
        transport=transport,
    )
