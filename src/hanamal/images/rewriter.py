"""Substitute local image paths back into content records.

Both functions return deep copies; the input record is never mutated, so
several render passes can share one source of truth.
"""

import copy
from collections.abc import Mapping, Sequence

from hanamal.images.fields import IMAGE_FIELD_ALIASES, image_url
from hanamal.images.models import Record


def _replace_url(item: object, new_url: str) -> object:
    if isinstance(item, dict):
        item["url"] = new_url
        return item
    return new_url


def rewrite_record(
    record: Record, resolved: Mapping[tuple[str, int], str]
) -> Record:
    """Return a copy of ``record`` with resolved image slots pointing local.

    Args:
        record: Source record.
        resolved: ``(field_name, index) -> local_path`` for every slot that
            has a stored file. Slots missing from the mapping keep their
            original value.
    """
    updated = copy.deepcopy(record)
    for (field, index), local_path in resolved.items():
        if field not in updated:
            continue
        value = updated[field]
        if isinstance(value, list):
            if 0 <= index < len(value):
                value[index] = _replace_url(value[index], local_path)
        elif index == 0:
            updated[field] = _replace_url(value, local_path)
    return updated


def remap_local_paths(
    record: Record,
    mapping: Mapping[str, str],
    fields: Sequence[str] = IMAGE_FIELD_ALIASES,
) -> Record:
    """Return a copy with image URLs found in ``mapping`` replaced.

    Used after on-disk dedup removes a file that saved records still point to.
    """
    updated = copy.deepcopy(record)
    for field in fields:
        if not updated.get(field):
            continue
        value = updated[field]
        if isinstance(value, list):
            for i, item in enumerate(value):
                url = image_url(item)
                if url in mapping:
                    value[i] = _replace_url(item, mapping[url])
        else:
            url = image_url(value)
            if url in mapping:
                updated[field] = _replace_url(value, mapping[url])
    return updated
