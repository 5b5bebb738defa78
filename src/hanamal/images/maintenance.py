"""Housekeeping for the image directory and registry.

- prune_orphans: forget slots that no longer exist in the data and delete
  files nothing references any more.
- remove_duplicate_files: collapse byte-identical files left behind by
  older naming schemes into one, repointing the registry.
- check_urls: report which remote image URLs still answer 200.
- collect_stats: registry and directory counters.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence

import httpx
from pydantic import BaseModel, Field

from hanamal.images.fields import (
    IMAGE_FIELD_ALIASES,
    extract_image_references,
    slot_keys,
)
from hanamal.images.models import ImageReference, Record, RegistryStats
from hanamal.images.registry import RegistryStore
from hanamal.images.storage import ImageStore
from hanamal.lib.images import file_hash
from hanamal.lib.throttle import Throttle

logger = logging.getLogger(__name__)


class PruneResult(BaseModel):
    slots_removed: int = 0
    contents_removed: int = 0
    files_removed: list[str] = Field(default_factory=list)


class DedupeResult(BaseModel):
    unique: int = 0
    files_removed: list[str] = Field(default_factory=list)
    replaced: dict[str, str] = Field(
        default_factory=dict, description="Removed local path -> kept local path"
    )


class UrlHealth(BaseModel):
    url: str
    status: int | None = None
    accessible: bool
    error: str | None = None


class ImageStats(BaseModel):
    registry: RegistryStats
    files_on_disk: int
    bytes_on_disk: int
    orphaned_files: list[str] = Field(
        default_factory=list, description="Files no registry entry references"
    )
    missing_files: list[str] = Field(
        default_factory=list, description="Registered files absent from disk"
    )


def collect_slot_keys(
    datasets: Mapping[str, Sequence[Record]],
    fields: Sequence[str] = IMAGE_FIELD_ALIASES,
) -> set[str]:
    """Every slot key the data still uses, whether resolved or remote."""
    keys: set[str] = set()
    for records in datasets.values():
        for record in records:
            keys |= slot_keys(record, fields)
    return keys


def find_remote_references(
    datasets: Mapping[str, Sequence[Record]],
    fields: Sequence[str] = IMAGE_FIELD_ALIASES,
) -> list[ImageReference]:
    """Image slots that still point at a remote URL (failed downloads)."""
    return [
        ref
        for name, records in datasets.items()
        for record in records
        for ref in extract_image_references(record, name, fields)
    ]


def prune_orphans(
    registry: RegistryStore, store: ImageStore, active_slot_keys: Iterable[str]
) -> PruneResult:
    """Drop registry slots not in ``active_slot_keys`` and unreferenced files.

    A content entry survives as long as at least one remaining slot points
    at its file. The caller flushes the registry afterwards.
    """
    active = set(active_slot_keys)
    result = PruneResult()

    for key, _entry in registry.slot_items():
        if key not in active:
            registry.remove_slot(key)
            result.slots_removed += 1

    still_used = {entry.filename for _key, entry in registry.slot_items()}
    for digest, entry in registry.content_items():
        if entry.filename in still_used:
            continue
        registry.remove_content(digest)
        result.contents_removed += 1
        if store.remove(entry.filename):
            result.files_removed.append(entry.filename)
            logger.info("Removed orphaned image %s", entry.filename)

    if result.slots_removed or result.files_removed:
        logger.info(
            "Pruned %d slots, %d images",
            result.slots_removed,
            len(result.files_removed),
        )
    return result


def remove_duplicate_files(registry: RegistryStore, store: ImageStore) -> DedupeResult:
    """Keep one file per distinct content in the image directory.

    The file registered under the content hash is kept when there is one,
    otherwise the first by name. Registry entries pointing at a removed
    file are repointed at the kept one, and a content entry is added for
    kept files that had none.
    """
    groups: dict[str, list[str]] = defaultdict(list)
    for path in store.iter_files():
        try:
            groups[file_hash(path)].append(path.name)
        except OSError as e:
            logger.warning("Could not read %s: %s", path, e)

    result = DedupeResult(unique=len(groups))
    for digest, names in groups.items():
        registered = registry.lookup_by_content(digest)
        keep = (
            registered.filename
            if registered is not None and registered.filename in names
            else names[0]
        )
        removed = [n for n in names if n != keep]
        if not removed:
            continue

        logger.info(
            "Content %s has %d files, keeping %s", digest[:8], len(names), keep
        )
        kept_path = store.local_path(keep)
        for name in removed:
            if store.remove(name):
                result.files_removed.append(name)
            result.replaced[store.local_path(name)] = kept_path

        for key, entry in registry.slot_items():
            if entry.filename in removed:
                registry.upsert(
                    key,
                    entry.model_copy(
                        update={
                            "filename": keep,
                            "local_path": kept_path,
                            "content_hash": digest,
                        }
                    ),
                )
        if registered is None or registered.filename != keep:
            base = registered or next(
                (e for _k, e in registry.slot_items() if e.filename == keep), None
            )
            if base is not None:
                registry.upsert_content(
                    digest,
                    base.model_copy(
                        update={
                            "filename": keep,
                            "local_path": kept_path,
                            "content_hash": digest,
                        }
                    ),
                )

    logger.info(
        "Removed %d duplicate files, %d unique images remain",
        len(result.files_removed),
        result.unique,
    )
    return result


async def check_urls(
    client: httpx.AsyncClient,
    urls: Iterable[str],
    *,
    max_concurrent: int = 8,
) -> list[UrlHealth]:
    """Probe each URL with GET; never raises for network failures.

    The client's timeout bounds each request; redirects follow the client's
    policy (the CLI builds a redirect-following client for this).
    """
    throttle = Throttle(max_concurrent=max_concurrent)

    async def check_one(url: str) -> UrlHealth:
        async with throttle:
            try:
                async with client.stream("GET", url) as response:
                    return UrlHealth(
                        url=url,
                        status=response.status_code,
                        accessible=response.status_code == 200,
                    )
            except httpx.TimeoutException:
                return UrlHealth(url=url, accessible=False, error="Request timeout")
            except httpx.TransportError as e:
                return UrlHealth(
                    url=url, accessible=False, error=str(e) or type(e).__name__
                )

    unique = list(dict.fromkeys(urls))
    return list(await asyncio.gather(*(check_one(url) for url in unique)))


def collect_stats(registry: RegistryStore, store: ImageStore) -> ImageStats:
    files = list(store.iter_files())
    on_disk = {p.name for p in files}
    referenced = registry.referenced_filenames()
    return ImageStats(
        registry=registry.stats(),
        files_on_disk=len(files),
        bytes_on_disk=sum(p.stat().st_size for p in files),
        orphaned_files=sorted(on_disk - referenced),
        missing_files=sorted(referenced - on_disk),
    )
