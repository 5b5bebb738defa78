"""Persistent image registry.

Maps two kinds of keys to stored files:

- slot key ``"<record_id>-<field_name>-<index>"``: which file fills a
  logical image slot, independent of the (expiring) source URL.
- content hash: which file holds a given set of bytes, so the same stock
  photo referenced by several records is stored once.

Lifecycle is explicit: :meth:`RegistryStore.load` at the start of a run,
in-memory lookups and upserts during it, :meth:`RegistryStore.flush` at the
end. The document is always written as one complete snapshot.

Examples:
    >>> registry = RegistryStore(Path("data/image-registry.json")).load()
    >>> entry = registry.lookup_by_slot("recA", "Image", 0)
    >>> async with registry.lock:
    ...     registry.upsert(ref.slot_key, new_entry)
    ...     registry.upsert_content(new_entry.content_hash, new_entry)
    >>> registry.flush()
"""

import asyncio
import logging
from collections.abc import Iterator
from pathlib import Path

from hanamal.images.errors import RegistryCorruptionError, RegistryPersistenceError
from hanamal.images.models import (
    RegistryDocument,
    RegistryEntry,
    RegistryStats,
    slot_key,
)
from hanamal.lib.files import write_text_atomic
from hanamal.version import REGISTRY_SCHEMA_VERSION

logger = logging.getLogger(__name__)


def parse_registry(raw: str) -> RegistryDocument:
    """Parse a registry document.

    Raises:
        RegistryCorruptionError: Malformed JSON or unexpected structure.
    """
    try:
        document = RegistryDocument.model_validate_json(raw)
    except ValueError as e:
        raise RegistryCorruptionError(str(e)) from e
    if document.version > REGISTRY_SCHEMA_VERSION:
        raise RegistryCorruptionError(
            f"registry schema v{document.version} is newer than supported "
            f"v{REGISTRY_SCHEMA_VERSION}"
        )
    document.version = REGISTRY_SCHEMA_VERSION
    return document


class RegistryStore:
    """Slot-key and content-hash maps backed by one JSON document.

    All check-then-write sequences must hold :attr:`lock` so concurrent
    downloads of the same new bytes resolve to a single stored file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.corrupt = False
        self._document = RegistryDocument()
        self._locks: dict[int, asyncio.Lock] = {}

    @property
    def lock(self) -> asyncio.Lock:
        """Writer lock for the running event loop."""
        loop_id = id(asyncio.get_running_loop())
        if loop_id not in self._locks:
            self._locks[loop_id] = asyncio.Lock()
        return self._locks[loop_id]

    # -- Lifecycle -------------------------------------------------------------

    def load(self) -> "RegistryStore":
        """Read the registry from disk, failing open.

        A missing file is a first run. An unreadable or corrupt file is
        logged and replaced by an empty registry: losing dedup history is
        better than blocking the build.
        """
        self.corrupt = False
        if not self.path.exists():
            logger.info("No image registry at %s, starting fresh", self.path)
            self._document = RegistryDocument()
            return self

        try:
            self._document = parse_registry(self.path.read_text(encoding="utf-8"))
        except (OSError, RegistryCorruptionError) as e:
            logger.error(
                "Image registry %s is unreadable, continuing with an empty "
                "registry (all images will be re-checked): %s",
                self.path,
                e,
            )
            self._document = RegistryDocument()
            self.corrupt = True
            return self

        logger.info(
            "Loaded image registry: %d slots, %d stored images",
            len(self._document.by_slot_key),
            len(self._document.by_content_hash),
        )
        return self

    def dumps(self) -> str:
        return self._document.model_dump_json(indent=2) + "\n"

    def flush(self) -> Path:
        """Write the full registry snapshot atomically.

        Raises:
            RegistryPersistenceError: The document could not be written.
                Callers should treat this as fatal for the run.
        """
        try:
            write_text_atomic(self.path, self.dumps())
        except OSError as e:
            raise RegistryPersistenceError(
                f"could not write image registry {self.path}: {e}"
            ) from e
        logger.debug("Flushed image registry to %s", self.path)
        return self.path

    async def aflush(self) -> Path:
        async with self.lock:
            return self.flush()

    # -- Lookups ---------------------------------------------------------------

    def lookup_by_slot(
        self, record_id: str, field_name: str, index: int = 0
    ) -> RegistryEntry | None:
        return self._document.by_slot_key.get(slot_key(record_id, field_name, index))

    def lookup_slot_key(self, key: str) -> RegistryEntry | None:
        return self._document.by_slot_key.get(key)

    def lookup_by_content(self, content_hash: str) -> RegistryEntry | None:
        return self._document.by_content_hash.get(content_hash)

    # -- Mutations -------------------------------------------------------------

    def upsert(self, key: str, entry: RegistryEntry) -> None:
        self._document.by_slot_key[key] = entry

    def upsert_content(self, content_hash: str, entry: RegistryEntry) -> None:
        self._document.by_content_hash[content_hash] = entry

    def remove_slot(self, key: str) -> RegistryEntry | None:
        return self._document.by_slot_key.pop(key, None)

    def remove_content(self, content_hash: str) -> RegistryEntry | None:
        return self._document.by_content_hash.pop(content_hash, None)

    # -- Iteration -------------------------------------------------------------

    def slot_items(self) -> Iterator[tuple[str, RegistryEntry]]:
        yield from list(self._document.by_slot_key.items())

    def content_items(self) -> Iterator[tuple[str, RegistryEntry]]:
        yield from list(self._document.by_content_hash.items())

    def referenced_filenames(self) -> set[str]:
        names = {e.filename for e in self._document.by_slot_key.values()}
        names.update(e.filename for e in self._document.by_content_hash.values())
        return names

    def __len__(self) -> int:
        return len(self._document.by_slot_key)

    def stats(self) -> RegistryStats:
        slots = self._document.by_slot_key.values()
        return RegistryStats(
            slots=len(self._document.by_slot_key),
            contents=len(self._document.by_content_hash),
            shared_slots=sum(1 for e in slots if e.reused_from is not None),
        )
