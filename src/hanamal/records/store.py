"""Synced dataset storage: one ``<dataset>.json`` per table under data/.

The renderer reads these files instead of calling Airtable at build time.
"""

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path

from hanamal.images.models import Record
from hanamal.lib.files import write_text_atomic

logger = logging.getLogger(__name__)


def dataset_path(data_dir: Path, name: str) -> Path:
    return data_dir / f"{name}.json"


def save_dataset(data_dir: Path, name: str, records: Sequence[Record]) -> Path:
    """Write a dataset atomically (UTF-8, Hebrew kept readable)."""
    path = dataset_path(data_dir, name)
    write_text_atomic(path, json.dumps(list(records), indent=2, ensure_ascii=False))
    logger.info("Saved %s with %d records", path.name, len(records))
    return path


def save_datasets(
    data_dir: Path, datasets: Mapping[str, Sequence[Record]]
) -> list[Path]:
    return [save_dataset(data_dir, name, records) for name, records in datasets.items()]


def load_dataset(data_dir: Path, name: str) -> list[Record] | None:
    """Load one dataset; None when missing or unreadable."""
    path = dataset_path(data_dir, name)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to load dataset from %s: %s", path, e)
        return None
    if not isinstance(data, list):
        logger.warning("Dataset %s is not a list of records, ignoring", path)
        return None
    records = [item for item in data if isinstance(item, dict)]
    if len(records) != len(data):
        logger.warning(
            "Skipping %d non-record entries in %s", len(data) - len(records), path
        )
    return records


def load_datasets(data_dir: Path, names: Iterable[str]) -> dict[str, list[Record]]:
    """Load the named datasets that exist and parse."""
    datasets: dict[str, list[Record]] = {}
    for name in names:
        records = load_dataset(data_dir, name)
        if records is not None:
            datasets[name] = records
    return datasets
