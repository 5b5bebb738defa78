"""Image ingestion: dedup policy and per-dataset orchestration.

For each image slot found on a record:

1. Slot already registered and its file is on disk -> reuse, no network.
2. Otherwise download (bounded concurrency, retried on transient errors).
3. Same bytes already stored for another slot -> reuse that file and
   register this slot against it.
4. Otherwise store the bytes under a content-derived name and register
   both the slot and the content hash.
5. Any download or write failure leaves the remote URL in place.

Steps 3-4 run under the registry lock, so two slots whose URLs resolve to
the same new bytes at the same time still produce exactly one file.

Examples:
    >>> pipeline = ImagePipeline(registry, store, downloader)
    >>> records, stats, outcomes = await pipeline.process_dataset(events, "events")
    >>> stats.failed
    0
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence

from hanamal.images.downloader import Downloader, DownloadResult
from hanamal.images.errors import DownloadError, ImageWriteError, TransientNetworkError
from hanamal.images.fields import IMAGE_FIELD_ALIASES, extract_image_references
from hanamal.images.models import (
    DatasetStats,
    ImageReference,
    Record,
    RegistryEntry,
    SlotOutcome,
    SyncReport,
    utc_now,
)
from hanamal.images.registry import RegistryStore
from hanamal.images.rewriter import rewrite_record
from hanamal.images.storage import ImageStore
from hanamal.lib.images import file_hash, guess_extension, hashed_filename
from hanamal.lib.retry import with_retry
from hanamal.lib.throttle import Throttle

logger = logging.getLogger(__name__)

DATASET_ORDER: tuple[str, ...] = (
    "events",
    "packages",
    "dishes",
    "gallery",
    "hero",
    "about",
    "menus",
)

# Filename lengths tried when a 12-char prefix is taken by different bytes
_NAME_LENGTHS = (12, 16, 24, 64)


def ordered_datasets(names: Sequence[str]) -> list[str]:
    """Known datasets in processing order, then any others alphabetically."""
    known = [n for n in DATASET_ORDER if n in names]
    return known + sorted(n for n in names if n not in DATASET_ORDER)


class ImagePipeline:
    """Resolve image slots to local files and rewrite records.

    Args:
        registry: Loaded registry; flushed by the caller after the run.
        store: Image directory.
        downloader: Fetcher bound to an open HTTP client.
        fields: Record fields probed for images, in order.
        max_concurrent: Simultaneous downloads.
        download_attempts: Attempts per image on transient network errors.
        retry_min_wait: Minimum backoff between attempts, in seconds.
        retry_max_wait: Maximum backoff between attempts, in seconds.
        refresh: Re-download slots that are already registered. Unchanged
            bytes still dedup to the existing file.
    """

    def __init__(
        self,
        registry: RegistryStore,
        store: ImageStore,
        downloader: Downloader,
        *,
        fields: Sequence[str] = IMAGE_FIELD_ALIASES,
        max_concurrent: int = 4,
        download_attempts: int = 3,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 8.0,
        refresh: bool = False,
    ) -> None:
        self.registry = registry
        self.store = store
        self.fields = tuple(fields)
        self.refresh = refresh
        self._throttle = Throttle(max_concurrent=max_concurrent)
        self._fetch = with_retry(
            max_attempts=download_attempts,
            min_wait=retry_min_wait,
            max_wait=retry_max_wait,
            exceptions=(TransientNetworkError,),
        )(downloader.fetch)

    # -- Single slot -----------------------------------------------------------

    async def resolve(self, reference: ImageReference) -> SlotOutcome:
        """Resolve one image slot to a local file, or record why it failed.

        Never raises for a single image: anything unexpected becomes a
        ``"failed"`` outcome so the rest of the dataset still gets processed.
        """
        try:
            return await self._resolve(reference)
        except Exception as e:
            logger.exception("Unexpected error resolving %s", reference.slot_key)
            return SlotOutcome.for_reference(
                reference, "failed", error=f"{type(e).__name__}: {e}"
            )

    async def _resolve(self, reference: ImageReference) -> SlotOutcome:
        existing = self.registry.lookup_slot_key(reference.slot_key)
        if existing is not None and not self.refresh:
            if self.store.exists(existing.filename):
                logger.debug(
                    "Reusing %s for %s", existing.filename, reference.slot_key
                )
                return SlotOutcome.for_reference(
                    reference,
                    "reused",
                    local_path=existing.local_path,
                    filename=existing.filename,
                    reused_via="slot",
                )
            logger.info(
                "Registered file %s for %s is missing, downloading again",
                existing.filename,
                reference.slot_key,
            )

        try:
            async with self._throttle:
                result = await self._fetch(reference.source_url)
        except DownloadError as e:
            logger.warning(
                "Failed to download %s (%s): %s",
                reference.slot_key,
                reference.record_type or "content",
                e,
            )
            return SlotOutcome.for_reference(reference, "failed", error=str(e))

        async with self.registry.lock:
            return self._store_download(reference, result)

    def _store_download(
        self, reference: ImageReference, result: DownloadResult
    ) -> SlotOutcome:
        """Dedup by content and register. Caller holds the registry lock."""
        known = self.registry.lookup_by_content(result.content_hash)
        if known is not None and self.store.exists(known.filename):
            entry = known.model_copy(
                update={
                    "source_url": reference.source_url,
                    "resolved_url": result.final_url,
                    "record_type": reference.record_type,
                    "record_id": reference.record_id,
                    "field_name": reference.field_name,
                    "index": reference.index,
                    "downloaded_at": utc_now(),
                    "reused_from": (
                        None if known.slot_key == reference.slot_key else known.slot_key
                    ),
                }
            )
            self.registry.upsert(reference.slot_key, entry)
            logger.info(
                "Reusing %s for %s (same bytes as %s)",
                known.filename,
                reference.slot_key,
                known.slot_key,
            )
            return SlotOutcome.for_reference(
                reference,
                "reused",
                local_path=known.local_path,
                filename=known.filename,
                reused_via="content",
            )

        ext = guess_extension(result.final_url, result.content_type)
        filename = self._claim_filename(result.content_hash, ext)
        try:
            if not self.store.exists(filename):
                self.store.write(filename, result.content)
        except ImageWriteError as e:
            logger.warning("Could not store image for %s: %s", reference.slot_key, e)
            return SlotOutcome.for_reference(reference, "failed", error=str(e))

        entry = RegistryEntry(
            filename=filename,
            local_path=self.store.local_path(filename),
            content_hash=result.content_hash,
            source_url=reference.source_url,
            resolved_url=result.final_url,
            record_type=reference.record_type,
            record_id=reference.record_id,
            field_name=reference.field_name,
            index=reference.index,
            size=result.size,
            content_type=result.content_type,
        )
        self.registry.upsert(reference.slot_key, entry)
        self.registry.upsert_content(result.content_hash, entry)
        logger.info("Downloaded %s for %s", filename, reference.slot_key)
        return SlotOutcome.for_reference(
            reference,
            "downloaded",
            local_path=entry.local_path,
            filename=filename,
        )

    def _claim_filename(self, digest: str, ext: str) -> str:
        """Content-derived name not taken by different bytes.

        A file already holding the same bytes (e.g. left behind by a lost
        registry) is adopted as-is.
        """
        for length in _NAME_LENGTHS:
            name = hashed_filename(digest, ext, length)
            path = self.store.path_for(name)
            if not path.exists():
                return name
            try:
                if file_hash(path) == digest:
                    return name
            except OSError:
                continue
        return hashed_filename(digest, ext, len(digest))

    # -- Records and datasets --------------------------------------------------

    async def process_record(
        self, record: Record, record_type: str = ""
    ) -> tuple[Record, list[SlotOutcome]]:
        """Resolve every image slot on one record and return a rewritten copy."""
        rewritten, outcomes = await self._process([record], record_type)
        return rewritten[0], outcomes

    async def process_dataset(
        self, records: Sequence[Record], record_type: str
    ) -> tuple[list[Record], DatasetStats, list[SlotOutcome]]:
        """Resolve all slots of a dataset concurrently.

        Returns:
            Rewritten records (input order), aggregate counters, and one
            outcome per image slot.
        """
        if records:
            logger.info("Processing %s (%d records)", record_type, len(records))
        rewritten, outcomes = await self._process(records, record_type)
        stats = DatasetStats()
        for outcome in outcomes:
            stats.record(outcome)
        if stats.total:
            logger.info(
                "%s: %d downloaded, %d reused, %d failed",
                record_type,
                stats.downloaded,
                stats.reused,
                stats.failed,
            )
        return rewritten, stats, outcomes

    async def process_datasets(
        self, datasets: Mapping[str, Sequence[Record]]
    ) -> tuple[dict[str, list[Record]], SyncReport]:
        """Process datasets one after another in :data:`DATASET_ORDER`."""
        report = SyncReport()
        processed: dict[str, list[Record]] = {}
        for name in ordered_datasets(list(datasets)):
            rewritten, _stats, outcomes = await self.process_dataset(
                datasets[name], name
            )
            processed[name] = rewritten
            report.add_dataset(name, outcomes)
        return processed, report

    async def _process(
        self, records: Sequence[Record], record_type: str
    ) -> tuple[list[Record], list[SlotOutcome]]:
        per_record = [
            extract_image_references(record, record_type, self.fields)
            for record in records
        ]
        flat = [ref for refs in per_record for ref in refs]
        outcomes = list(await asyncio.gather(*(self.resolve(ref) for ref in flat)))

        rewritten: list[Record] = []
        position = 0
        for record, refs in zip(records, per_record, strict=True):
            resolved: dict[tuple[str, int], str] = {}
            for ref in refs:
                local_path = outcomes[position].local_path
                position += 1
                if local_path is not None:
                    resolved[(ref.field_name, ref.index)] = local_path
            rewritten.append(rewrite_record(record, resolved))
        return rewritten, outcomes
