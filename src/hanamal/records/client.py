"""Airtable records API client.

Lists every record of a table, following the ``offset`` cursor, and
flattens each to ``{"id": ..., **fields}``, the shape the image pipeline
and the renderer consume.

Examples:
    >>> async with build_http_client(headers=auth_headers(token)) as http:
    ...     client = RecordsClient(http, base_id="appXXXX")
    ...     events = await client.fetch_all("Events")
    >>> events[0]["id"]
    'rec123'
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import quote

import httpx

from hanamal.images.models import Record
from hanamal.lib.metrics import tracked
from hanamal.lib.retry import with_retry
from hanamal.lib.throttle import Throttle

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.airtable.com/v0"
MAX_PAGE_SIZE = 100


class RecordsAPIError(Exception):
    """Non-retryable error response from the records API."""

    def __init__(self, table: str, status_code: int, reason: str = "") -> None:
        self.table = table
        self.status_code = status_code
        hint = ""
        if status_code == 403:
            hint = " (check the table exists and the token has access)"
        super().__init__(f"Airtable {table}: HTTP {status_code} {reason}{hint}".strip())


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def flatten_record(raw: Mapping[str, Any]) -> Record:
    fields = raw.get("fields") or {}
    return {"id": raw["id"], **fields}


class RecordsClient:
    """Paginated table reader.

    Args:
        client: Open async client carrying the Authorization header.
        base_id: Airtable base id.
        api_url: API root.
        page_size: Records per page (Airtable caps this at 100).
        min_interval: Minimum seconds between requests.
        attempts: Attempts per page on 429, 5xx and transport errors.
        retry_min_wait: Minimum backoff between attempts, in seconds.
        retry_max_wait: Maximum backoff between attempts, in seconds.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_id: str,
        api_url: str = DEFAULT_API_URL,
        page_size: int = MAX_PAGE_SIZE,
        min_interval: float = 0.2,
        attempts: int = 3,
        retry_min_wait: float = 2,
        retry_max_wait: float = 10,
    ) -> None:
        self._client = client
        self.base_id = base_id
        self.api_url = api_url.rstrip("/")
        self.page_size = min(page_size, MAX_PAGE_SIZE)
        self._throttle = Throttle(max_concurrent=1, min_interval=min_interval)
        self._get_page = with_retry(
            max_attempts=attempts, min_wait=retry_min_wait, max_wait=retry_max_wait
        )(self._get_page_once)

    def table_url(self, table: str) -> str:
        return f"{self.api_url}/{self.base_id}/{quote(table, safe='')}"

    @tracked("records_page")
    async def _get_page_once(
        self, table: str, params: list[tuple[str, str]]
    ) -> dict[str, Any]:
        async with self._throttle:
            response = await self._client.get(self.table_url(table), params=params)
        if response.status_code == 429 or response.status_code >= 500:
            response.raise_for_status()
        if not response.is_success:
            raise RecordsAPIError(table, response.status_code, response.reason_phrase)
        data: dict[str, Any] = response.json()
        return data

    async def fetch_all(
        self,
        table: str,
        *,
        view: str | None = "Grid view",
        filter_by_formula: str | None = None,
        fields: Sequence[str] | None = None,
    ) -> list[Record]:
        """Every record of ``table``, flattened.

        Raises:
            RecordsAPIError: 4xx response other than 429.
            httpx.HTTPError: 429/5xx or network failure after retries.
        """
        records: list[Record] = []
        offset: str | None = None
        while True:
            params: list[tuple[str, str]] = [("pageSize", str(self.page_size))]
            if view:
                params.append(("view", view))
            if offset:
                params.append(("offset", offset))
            if filter_by_formula:
                params.append(("filterByFormula", filter_by_formula))
            for field in fields or ():
                params.append(("fields[]", field))

            page = await self._get_page(table, params)
            records.extend(flatten_record(r) for r in page.get("records", []))
            offset = page.get("offset")
            if not offset:
                break

        logger.debug("Fetched %d records from %s", len(records), table)
        return records


async def fetch_datasets(
    client: RecordsClient,
    tables: Mapping[str, str],
    *,
    view: str | None = "Grid view",
) -> tuple[dict[str, list[Record]], list[str]]:
    """Fetch each dataset's table; a failing table yields ``[]``.

    Returns:
        ``(datasets, failed)`` where ``failed`` lists dataset names whose
        fetch raised.
    """
    datasets: dict[str, list[Record]] = {}
    failed: list[str] = []
    for name, table in tables.items():
        logger.info("Fetching %s (%s)", name, table)
        try:
            datasets[name] = await client.fetch_all(table, view=view)
        except (RecordsAPIError, httpx.HTTPError) as e:
            logger.error("Failed to fetch %s: %s", name, e)
            datasets[name] = []
            failed.append(name)
            continue
        logger.info("%s: %d records", name, len(datasets[name]))
    return datasets, failed
