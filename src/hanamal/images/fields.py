"""Locate image references inside heterogeneous content records.

Airtable tables in this base are not consistent about where images live:
the same concept is stored under Hebrew or English column names, and a
column may hold a single attachment object, a list of attachments, or a
bare URL string. Records are probed against an ordered alias list; every
alias present on a record is an independent image field (a dish can have
its own photo and an event gallery).
"""

import logging
from collections.abc import Iterator, Sequence
from typing import Any
from urllib.parse import urlsplit

from hanamal.images.models import ImageReference, Record, slot_key

logger = logging.getLogger(__name__)

IMAGE_FIELD_ALIASES: tuple[str, ...] = (
    "תמונה (Image)",
    "Image",
    "תמונה",
    "Picture",
    "Photo",
    "תמונה של המנה",
    "Event Photos",
)


def is_http_url(value: object) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not isinstance(value, str):
        return False
    parts = urlsplit(value.strip())
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def image_url(item: object) -> str | None:
    """URL portion of an attachment item (object with ``url`` or bare string)."""
    if isinstance(item, dict):
        url = item.get("url")
        return url if isinstance(url, str) else None
    if isinstance(item, str):
        return item
    return None


def field_items(value: Any) -> list[Any]:
    """Normalize a field value to a list of items, preserving order."""
    if isinstance(value, list):
        return value
    return [value]


def iter_image_fields(
    record: Record, fields: Sequence[str] = IMAGE_FIELD_ALIASES
) -> Iterator[str]:
    """Yield the alias names present with a non-empty value, in alias order."""
    for field in fields:
        if record.get(field):
            yield field


def slot_keys(record: Record, fields: Sequence[str] = IMAGE_FIELD_ALIASES) -> set[str]:
    """Keys of every image slot holding a URL, remote or already local."""
    record_id = record.get("id")
    if not record_id:
        return set()
    return {
        slot_key(str(record_id), field, index)
        for field in iter_image_fields(record, fields)
        for index, item in enumerate(field_items(record[field]))
        if image_url(item)
    }


def extract_image_references(
    record: Record,
    record_type: str = "",
    fields: Sequence[str] = IMAGE_FIELD_ALIASES,
) -> list[ImageReference]:
    """Return every remote image slot on a record.

    Items that are not http(s) URLs (already-local paths, empty strings,
    malformed values) are skipped; the rewriter leaves them untouched.
    """
    record_id = record.get("id")
    if not record_id:
        if any(True for _ in iter_image_fields(record, fields)):
            logger.warning(
                "Skipping images on a %s record without an id", record_type or "content"
            )
        return []

    references: list[ImageReference] = []
    for field in iter_image_fields(record, fields):
        for index, item in enumerate(field_items(record[field])):
            url = image_url(item)
            if not is_http_url(url):
                continue
            references.append(
                ImageReference(
                    record_type=record_type,
                    record_id=str(record_id),
                    field_name=field,
                    index=index,
                    source_url=url.strip(),
                )
            )
    return references
