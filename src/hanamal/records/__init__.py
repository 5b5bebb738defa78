"""Airtable records API access and the local dataset JSON store."""

from hanamal.records.client import (
    RecordsAPIError,
    RecordsClient,
    auth_headers,
    fetch_datasets,
    flatten_record,
)
from hanamal.records.store import (
    dataset_path,
    load_dataset,
    load_datasets,
    save_dataset,
    save_datasets,
)

__all__ = [
    "RecordsAPIError",
    "RecordsClient",
    "auth_headers",
    "dataset_path",
    "fetch_datasets",
    "flatten_record",
    "load_dataset",
    "load_datasets",
    "save_dataset",
    "save_datasets",
]
