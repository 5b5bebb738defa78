"""End-to-end sync runs.

A full sync fetches every table, downloads images immediately while the
Airtable URLs are fresh, flushes the registry, then writes
``data/<dataset>.json`` for the renderer. The registry is flushed before
any dataset is written: if it cannot be persisted the run aborts and the
previous datasets stay in place.

Usage:
    report = asyncio.run(sync_site(settings, prune=True))
    report.totals.failed
"""

import logging
import time
from collections.abc import Mapping, Sequence

import httpx

from hanamal.config import Settings
from hanamal.images.downloader import Downloader
from hanamal.images.maintenance import collect_slot_keys, prune_orphans
from hanamal.images.models import Record, SyncReport
from hanamal.images.pipeline import ImagePipeline
from hanamal.images.registry import RegistryStore
from hanamal.images.storage import ImageStore
from hanamal.lib.client import build_http_client
from hanamal.lib.metrics import get_metrics_summary, log_metrics_summary, reset_metrics
from hanamal.records.client import RecordsClient, auth_headers, fetch_datasets
from hanamal.records.store import load_datasets, save_datasets

logger = logging.getLogger(__name__)


class SyncConfigurationError(Exception):
    """Settings needed for a sync are missing."""


def open_registry(config: Settings) -> RegistryStore:
    return RegistryStore(config.registry_path).load()


def open_store(config: Settings) -> ImageStore:
    return ImageStore(config.images_dir, config.images_url_prefix)


async def ingest_images(
    config: Settings,
    datasets: Mapping[str, Sequence[Record]],
    *,
    refresh: bool = False,
    prune: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[dict[str, list[Record]], SyncReport]:
    """Run the image pipeline over ``datasets`` and flush the registry.

    Raises:
        RegistryPersistenceError: The registry could not be written.
    """
    registry = open_registry(config)
    store = open_store(config)

    async with build_http_client(
        timeout=config.http_timeout_seconds, transport=transport
    ) as http:
        downloader = Downloader(
            http, max_redirects=config.max_redirects, max_bytes=config.max_image_bytes
        )
        pipeline = ImagePipeline(
            registry,
            store,
            downloader,
            fields=config.image_fields,
            max_concurrent=config.max_concurrent_downloads,
            download_attempts=config.download_attempts,
            refresh=refresh,
        )
        processed, report = await pipeline.process_datasets(datasets)
    report.registry_reset = registry.corrupt

    if prune:
        pruned = prune_orphans(
            registry, store, collect_slot_keys(datasets, config.image_fields)
        )
        report.pruned_slots = pruned.slots_removed
        report.pruned_files = len(pruned.files_removed)

    await registry.aflush()
    return processed, report


def _finish(report: SyncReport, started: float) -> SyncReport:
    report.duration_seconds = round(time.monotonic() - started, 2)
    report.metrics = get_metrics_summary()
    log_metrics_summary()
    totals = report.totals
    logger.info(
        "Images: %d downloaded, %d reused, %d failed",
        totals.downloaded,
        totals.reused,
        totals.failed,
    )
    return report


async def sync_site(
    config: Settings,
    *,
    refresh: bool = False,
    prune: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SyncReport:
    """Fetch all tables, ingest images, persist registry and datasets.

    Tables that fail to fetch keep their previously saved dataset file,
    and pruning is skipped for the run (their slots would look orphaned).

    Raises:
        SyncConfigurationError: Airtable credentials are missing.
        RegistryPersistenceError: The registry could not be written.
    """
    if not config.has_airtable_credentials:
        raise SyncConfigurationError("AIRTABLE_TOKEN or AIRTABLE_BASE missing")
    token, base_id = str(config.airtable_token), str(config.airtable_base)

    started = time.monotonic()
    reset_metrics()

    async with build_http_client(
        timeout=config.http_timeout_seconds,
        headers=auth_headers(token),
        transport=transport,
    ) as http:
        client = RecordsClient(
            http,
            base_id=base_id,
            api_url=config.airtable_api_url,
            min_interval=config.airtable_min_interval,
        )
        fetched, failed = await fetch_datasets(
            client, config.airtable_tables, view=config.airtable_view
        )

    datasets = {name: records for name, records in fetched.items() if name not in failed}
    if failed and prune:
        logger.warning(
            "Skipping prune: %s could not be fetched", ", ".join(sorted(failed))
        )

    processed, report = await ingest_images(
        config,
        datasets,
        refresh=refresh,
        prune=prune and not failed,
        transport=transport,
    )
    report.failed_tables = failed
    save_datasets(config.data_dir, processed)
    return _finish(report, started)


async def process_saved_data(
    config: Settings,
    *,
    refresh: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SyncReport:
    """Re-run image ingestion over the saved datasets, without Airtable.

    Picks up images that failed on a previous sync and are still remote.
    """
    started = time.monotonic()
    reset_metrics()
    datasets = load_datasets(config.data_dir, config.airtable_tables)
    if not datasets:
        logger.warning("No saved datasets under %s", config.data_dir)
    processed, report = await ingest_images(
        config, datasets, refresh=refresh, transport=transport
    )
    save_datasets(config.data_dir, processed)
    return _finish(report, started)
