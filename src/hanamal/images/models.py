"""Data models for image ingestion.

The registry document is the only durable state; everything else here is
built fresh on each run.
"""

from datetime import UTC, datetime
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from hanamal.version import REGISTRY_SCHEMA_VERSION

# Raw Airtable-shaped record: {"id": "rec...", "<field>": value, ...}
Record: TypeAlias = dict[str, Any]

SlotStatus = Literal["downloaded", "reused", "failed"]


def slot_key(record_id: str, field_name: str, index: int = 0) -> str:
    """Registry key for one logical image slot."""
    return f"{record_id}-{field_name}-{index}"


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


class ImageReference(BaseModel):
    """An image as it appears embedded in a content record."""

    model_config = ConfigDict(frozen=True)

    record_type: str = ""
    record_id: str
    field_name: str
    index: int = Field(default=0, ge=0)
    source_url: str

    @property
    def slot_key(self) -> str:
        return slot_key(self.record_id, self.field_name, self.index)


class RegistryEntry(BaseModel):
    """Persisted mapping from a slot or content hash to a stored file."""

    filename: str
    local_path: str
    content_hash: str
    source_url: str = Field(description="URL originally requested for this slot")
    resolved_url: str | None = Field(
        default=None, description="Final URL after redirects"
    )
    record_type: str = ""
    record_id: str = ""
    field_name: str = ""
    index: int = 0
    size: int = 0
    content_type: str | None = None
    downloaded_at: str = Field(default_factory=utc_now)
    reused_from: str | None = Field(
        default=None, description="Slot key whose file this slot shares"
    )

    @property
    def slot_key(self) -> str:
        return slot_key(self.record_id, self.field_name, self.index)


class RegistryDocument(BaseModel):
    """On-disk layout of the image registry."""

    version: int = REGISTRY_SCHEMA_VERSION
    by_slot_key: dict[str, RegistryEntry] = Field(default_factory=dict)
    by_content_hash: dict[str, RegistryEntry] = Field(default_factory=dict)


class RegistryStats(BaseModel):
    slots: int
    contents: int
    shared_slots: int = Field(description="Slots reusing another slot's file")


class SlotOutcome(BaseModel):
    """What happened to one image slot during a run."""

    slot_key: str
    record_type: str
    record_id: str
    field_name: str
    index: int
    source_url: str
    status: SlotStatus
    local_path: str | None = None
    filename: str | None = None
    reused_via: Literal["slot", "content"] | None = None
    error: str | None = None

    @classmethod
    def for_reference(
        cls, reference: ImageReference, status: SlotStatus, **kwargs: Any
    ) -> "SlotOutcome":
        return cls(
            slot_key=reference.slot_key,
            record_type=reference.record_type,
            record_id=reference.record_id,
            field_name=reference.field_name,
            index=reference.index,
            source_url=reference.source_url,
            status=status,
            **kwargs,
        )


class DatasetStats(BaseModel):
    """Aggregate counters for one dataset."""

    downloaded: int = 0
    reused: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.downloaded + self.reused + self.failed

    def record(self, outcome: SlotOutcome) -> None:
        match outcome.status:
            case "downloaded":
                self.downloaded += 1
            case "reused":
                self.reused += 1
            case "failed":
                self.failed += 1


class SyncReport(BaseModel):
    """Structured result of a pipeline run."""

    started_at: str = Field(default_factory=utc_now)
    duration_seconds: float | None = None
    datasets: dict[str, DatasetStats] = Field(default_factory=dict)
    outcomes: list[SlotOutcome] = Field(default_factory=list)
    failed_tables: list[str] = Field(default_factory=list)
    pruned_slots: int = 0
    pruned_files: int = 0
    registry_reset: bool = False
    metrics: dict[str, Any] | None = None

    @property
    def totals(self) -> DatasetStats:
        return DatasetStats(
            downloaded=sum(s.downloaded for s in self.datasets.values()),
            reused=sum(s.reused for s in self.datasets.values()),
            failed=sum(s.failed for s in self.datasets.values()),
        )

    @property
    def failures(self) -> list[SlotOutcome]:
        return [o for o in self.outcomes if o.status == "failed"]

    def add_dataset(self, name: str, outcomes: list[SlotOutcome]) -> DatasetStats:
        stats = self.datasets.setdefault(name, DatasetStats())
        for outcome in outcomes:
            stats.record(outcome)
        self.outcomes.extend(outcomes)
        return stats
