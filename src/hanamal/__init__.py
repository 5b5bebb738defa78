"""Airtable content sync with a deduplicating local image registry.

This package pulls the restaurant's content tables from Airtable, downloads
every attachment image while its URL is still valid, and writes the records
back out with local image paths for the static site renderer.

Structure:
- hanamal/images/: Image ingestion (the part with real invariants)
  - fields.py: Find image references inside heterogeneous records
  - downloader.py: Redirect-following, hashing HTTP fetch
  - registry.py: Persistent slot/content-hash registry
  - storage.py: Local image directory
  - pipeline.py: Dedup policy and per-dataset orchestration
  - rewriter.py: Substitute local paths back into records
  - maintenance.py: Prune, on-disk dedup, health checks, stats

- hanamal/records/: Airtable records API client and dataset JSON store
- hanamal/lib/: Parametric utilities (retry, throttle, metrics, HTTP client)
- hanamal/sync.py: End-to-end sync runs
- hanamal/cli/: ``hanamal`` command line entry point
"""

from hanamal.version import __version__

__all__ = ["__version__"]
