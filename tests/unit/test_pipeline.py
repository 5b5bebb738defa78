"""Tests for the image ingestion pipeline (dedup policy and rewriting)."""

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from fakes import JPEG_C, PNG_A, PNG_B, FakeImageHost

from hanamal.images.models import ImageReference
from hanamal.images.pipeline import ImagePipeline, ordered_datasets
from hanamal.images.registry import RegistryStore
from hanamal.images.storage import ImageStore
from hanamal.lib.images import content_hash, hashed_filename

PipelineFactory = Callable[..., ImagePipeline]


def image_record(record_id: str, *urls: str) -> dict[str, object]:
    return {"id": record_id, "Name": record_id, "Image": [{"url": u} for u in urls]}


def stored_files(store: ImageStore) -> list[str]:
    return [p.name for p in store.iter_files()]


class TestConcreteScenario:
    @pytest.mark.asyncio
    async def test_identical_bytes_under_two_urls_share_one_file(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        registry: RegistryStore,
        store: ImageStore,
    ) -> None:
        image_host.routes.update(
            {"https://img.example/x.jpg": PNG_A, "https://img.example/y.jpg": PNG_A}
        )
        records = [
            image_record("recA", "https://img.example/x.jpg"),
            image_record("recB", "https://img.example/y.jpg"),
        ]

        rewritten, stats, _outcomes = await make_pipeline().process_dataset(
            records, "gallery"
        )

        digest = content_hash(PNG_A)
        content_entry = registry.lookup_by_content(digest)
        slot_a = registry.lookup_by_slot("recA", "Image", 0)
        slot_b = registry.lookup_by_slot("recB", "Image", 0)
        assert content_entry is not None and slot_a is not None and slot_b is not None
        assert registry.stats().contents == 1
        assert len(registry) == 2
        assert slot_a.filename == slot_b.filename == content_entry.filename
        assert stored_files(store) == [content_entry.filename]
        assert rewritten[0]["Image"][0]["url"] == rewritten[1]["Image"][0]["url"]
        assert rewritten[0]["Image"][0]["url"] == f"/images/{content_entry.filename}"
        assert (stats.downloaded, stats.reused, stats.failed) == (1, 1, 0)


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_second_run_makes_no_requests_and_changes_nothing(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        registry: RegistryStore,
        store: ImageStore,
    ) -> None:
        image_host.routes.update(
            {"https://x/1.png": PNG_A, "https://x/2.png": PNG_B}
        )
        records = [image_record("recA", "https://x/1.png", "https://x/2.png")]

        first, _stats, _outcomes = await make_pipeline().process_dataset(records, "events")
        files_before = stored_files(store)
        registry_before = registry.dumps()
        hits_before = image_host.total_hits

        second, stats, outcomes = await make_pipeline().process_dataset(records, "events")

        assert image_host.total_hits == hits_before
        assert second == first
        assert stored_files(store) == files_before
        assert registry.dumps() == registry_before
        assert stats.reused == 2 and stats.downloaded == 0
        assert {o.reused_via for o in outcomes} == {"slot"}

    @pytest.mark.asyncio
    async def test_idempotent_across_flush_and_reload(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        registry: RegistryStore,
        registry_path: Path,
    ) -> None:
        image_host.routes["https://x/1.png"] = PNG_A
        records = [image_record("recA", "https://x/1.png")]
        await make_pipeline().process_dataset(records, "events")
        registry.flush()

        reloaded = RegistryStore(registry_path).load()
        _rewritten, stats, _outcomes = await make_pipeline(reloaded).process_dataset(
            records, "events"
        )

        assert image_host.hits["https://x/1.png"] == 1
        assert stats.reused == 1


class TestSlotStability:
    @pytest.mark.asyncio
    async def test_rotated_url_for_registered_slot_is_not_fetched(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        store: ImageStore,
    ) -> None:
        image_host.routes["https://dl.airtable.com/v1/a.png"] = PNG_A
        first, _s, _o = await make_pipeline().process_dataset(
            [image_record("recA", "https://dl.airtable.com/v1/a.png")], "dishes"
        )

        second, stats, outcomes = await make_pipeline().process_dataset(
            [image_record("recA", "https://dl.airtable.com/v2/a.png")], "dishes"
        )

        assert image_host.hits["https://dl.airtable.com/v2/a.png"] == 0
        assert second[0]["Image"][0]["url"] == first[0]["Image"][0]["url"]
        assert outcomes[0].reused_via == "slot"
        assert len(stored_files(store)) == 1

    @pytest.mark.asyncio
    async def test_missing_file_is_downloaded_again(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        store: ImageStore,
    ) -> None:
        image_host.routes["https://x/1.png"] = PNG_A
        records = [image_record("recA", "https://x/1.png")]
        await make_pipeline().process_dataset(records, "events")
        for path in store.iter_files():
            path.unlink()

        _rewritten, stats, _outcomes = await make_pipeline().process_dataset(
            records, "events"
        )

        assert image_host.hits["https://x/1.png"] == 2
        assert stats.downloaded == 1
        assert len(stored_files(store)) == 1

    @pytest.mark.asyncio
    async def test_refresh_bypasses_slot_lookup_but_still_dedups(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        store: ImageStore,
    ) -> None:
        image_host.routes["https://x/1.png"] = PNG_A
        records = [image_record("recA", "https://x/1.png")]
        await make_pipeline().process_dataset(records, "events")

        _rewritten, stats, outcomes = await make_pipeline(refresh=True).process_dataset(
            records, "events"
        )

        assert image_host.hits["https://x/1.png"] == 2
        assert stats.reused == 1
        assert outcomes[0].reused_via == "content"
        assert len(stored_files(store)) == 1


class TestContentDedup:
    @pytest.mark.asyncio
    async def test_later_dataset_reuses_earlier_file(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        registry: RegistryStore,
        store: ImageStore,
    ) -> None:
        image_host.routes.update(
            {"https://x/event.png": PNG_A, "https://y/gallery.png": PNG_A}
        )
        datasets = {
            "gallery": [image_record("recG", "https://y/gallery.png")],
            "events": [image_record("recE", "https://x/event.png")],
        }

        processed, report = await make_pipeline().process_datasets(datasets)

        assert list(processed) == ["events", "gallery"]
        assert report.datasets["events"].downloaded == 1
        assert report.datasets["gallery"].reused == 1
        shared = registry.lookup_by_slot("recG", "Image", 0)
        assert shared is not None
        assert shared.reused_from == "recE-Image-0"
        assert shared.source_url == "https://y/gallery.png"
        assert len(stored_files(store)) == 1

    @pytest.mark.asyncio
    async def test_different_bytes_get_different_files(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        store: ImageStore,
    ) -> None:
        image_host.routes.update({"https://x/a.png": PNG_A, "https://x/b.png": PNG_B})

        await make_pipeline().process_dataset(
            [image_record("recA", "https://x/a.png", "https://x/b.png")], "events"
        )

        assert stored_files(store) == sorted(
            [
                hashed_filename(content_hash(PNG_A), ".png"),
                hashed_filename(content_hash(PNG_B), ".png"),
            ]
        )

    @pytest.mark.asyncio
    async def test_many_concurrent_slots_with_same_bytes_store_one_file(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        registry: RegistryStore,
        store: ImageStore,
    ) -> None:
        records = []
        for i in range(12):
            url = f"https://x/{i}.png"
            image_host.routes[url] = PNG_A
            records.append(image_record(f"rec{i}", url))

        _rewritten, stats, _outcomes = await make_pipeline(
            max_concurrent=6
        ).process_dataset(records, "gallery")

        assert len(stored_files(store)) == 1
        assert registry.stats().contents == 1
        assert (stats.downloaded, stats.reused) == (1, 11)

    @pytest.mark.asyncio
    async def test_prefix_collision_with_different_bytes_lengthens_name(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        store: ImageStore,
    ) -> None:
        digest = content_hash(PNG_A)
        squatter = hashed_filename(digest, ".png")
        store.write(squatter, b"not the same bytes")
        image_host.routes["https://x/a.png"] = PNG_A

        _rewritten, _stats, outcomes = await make_pipeline().process_dataset(
            [image_record("recA", "https://x/a.png")], "events"
        )

        assert outcomes[0].filename == hashed_filename(digest, ".png", 16)
        assert store.path_for(squatter).read_bytes() == b"not the same bytes"

    @pytest.mark.asyncio
    async def test_unregistered_file_with_same_bytes_is_adopted(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        store: ImageStore,
    ) -> None:
        name = hashed_filename(content_hash(PNG_A), ".png")
        store.write(name, PNG_A)
        image_host.routes["https://x/a.png"] = PNG_A

        _rewritten, _stats, outcomes = await make_pipeline().process_dataset(
            [image_record("recA", "https://x/a.png")], "events"
        )

        assert outcomes[0].status == "downloaded"
        assert outcomes[0].filename == name
        assert stored_files(store) == [name]


class TestDegradation:
    @pytest.mark.asyncio
    async def test_404_keeps_remote_url_and_counts_one_failure(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        registry: RegistryStore,
    ) -> None:
        image_host.routes["https://x/ok.png"] = PNG_A
        records = [
            image_record("recA", "https://x/ok.png"),
            image_record("recB", "https://x/missing.png"),
        ]

        rewritten, stats, outcomes = await make_pipeline().process_dataset(
            records, "events"
        )

        assert stats.failed == 1
        assert stats.downloaded == 1
        assert rewritten[1] == records[1]
        assert rewritten[1]["Image"][0]["url"] == "https://x/missing.png"
        failure = next(o for o in outcomes if o.status == "failed")
        assert failure.slot_key == "recB-Image-0"
        assert "404" in (failure.error or "")
        assert registry.lookup_by_slot("recB", "Image", 0) is None

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
    ) -> None:
        calls = 0

        def flaky(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise httpx.ConnectError("reset", request=request)
            return httpx.Response(200, content=JPEG_C)

        image_host.handler = flaky  # type: ignore[method-assign]

        _rewritten, stats, outcomes = await make_pipeline(
            download_attempts=3
        ).process_dataset([image_record("recA", "https://x/c")], "events")

        assert calls == 3
        assert stats.downloaded == 1
        assert outcomes[0].filename is not None
        assert outcomes[0].filename.endswith(".jpg")

    @pytest.mark.asyncio
    async def test_transient_errors_give_up_after_attempts(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
    ) -> None:
        image_host.routes["https://x/down.png"] = httpx.ConnectError

        _rewritten, stats, _outcomes = await make_pipeline(
            download_attempts=2
        ).process_dataset([image_record("recA", "https://x/down.png")], "events")

        assert image_host.hits["https://x/down.png"] == 2
        assert stats.failed == 1

    @pytest.mark.asyncio
    async def test_http_errors_are_not_retried(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
    ) -> None:
        image_host.routes["https://x/forbidden.png"] = 403

        await make_pipeline(download_attempts=3).process_dataset(
            [image_record("recA", "https://x/forbidden.png")], "events"
        )

        assert image_host.hits["https://x/forbidden.png"] == 1

    @pytest.mark.asyncio
    async def test_write_failure_is_a_slot_failure(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        store: ImageStore,
    ) -> None:
        store.root.parent.mkdir(parents=True, exist_ok=True)
        store.root.write_text("a file where the image directory should be")
        image_host.routes["https://x/a.png"] = PNG_A
        records = [image_record("recA", "https://x/a.png")]

        rewritten, stats, outcomes = await make_pipeline().process_dataset(
            records, "events"
        )

        assert stats.failed == 1
        assert rewritten == records
        assert "could not write" in (outcomes[0].error or "")

    @pytest.mark.asyncio
    async def test_undecodable_body_fails_only_its_slot(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        registry: RegistryStore,
    ) -> None:
        image_host.routes["https://x/broken.png"] = ("gzip", b"not gzip")
        image_host.routes["https://x/ok.png"] = PNG_A
        records = [
            image_record("recA", "https://x/broken.png"),
            image_record("recB", "https://x/ok.png"),
        ]

        rewritten, stats, outcomes = await make_pipeline(
            download_attempts=2
        ).process_dataset(records, "events")

        assert stats.failed == 1
        assert stats.downloaded == 1
        assert image_host.hits["https://x/broken.png"] == 2
        assert rewritten[0] == records[0]
        assert outcomes[0].status == "failed"
        assert registry.lookup_by_slot("recB", "Image", 0) is not None

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_outcome(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        store: ImageStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def explode(filename: str, content: bytes) -> Path:
            raise RuntimeError("unexpected")

        monkeypatch.setattr(store, "write", explode)
        image_host.routes["https://x/a.png"] = PNG_A
        records = [image_record("recA", "https://x/a.png")]

        rewritten, stats, outcomes = await make_pipeline().process_dataset(
            records, "events"
        )

        assert stats.failed == 1
        assert rewritten == records
        assert outcomes[0].error == "RuntimeError: unexpected"


class TestRedirects:
    @pytest.mark.asyncio
    async def test_metadata_keeps_requested_url(
        self,
        make_pipeline: PipelineFactory,
        image_host: FakeImageHost,
        registry: RegistryStore,
        store: ImageStore,
    ) -> None:
        image_host.routes.update(
            {
                "https://v5.airtableusercontent.com/abc": (
                    "redirect",
                    "https://cdn.example/final.png",
                ),
                "https://cdn.example/final.png": PNG_B,
            }
        )

        await make_pipeline().process_dataset(
            [image_record("recA", "https://v5.airtableusercontent.com/abc")], "hero"
        )

        entry = registry.lookup_by_slot("recA", "Image", 0)
        assert entry is not None
        assert entry.source_url == "https://v5.airtableusercontent.com/abc"
        assert entry.resolved_url == "https://cdn.example/final.png"
        assert entry.filename.endswith(".png")
        assert store.path_for(entry.filename).read_bytes() == PNG_B


class TestResolve:
    @pytest.mark.asyncio
    async def test_single_reference(
        self, make_pipeline: PipelineFactory, image_host: FakeImageHost
    ) -> None:
        image_host.routes["https://x/a.png"] = PNG_A
        ref = ImageReference(
            record_type="about",
            record_id="recZ",
            field_name="Photo",
            index=0,
            source_url="https://x/a.png",
        )

        outcome = await make_pipeline().resolve(ref)

        assert outcome.status == "downloaded"
        assert outcome.slot_key == "recZ-Photo-0"
        assert outcome.local_path == f"/images/{outcome.filename}"

    @pytest.mark.asyncio
    async def test_process_record_returns_copy(
        self, make_pipeline: PipelineFactory, image_host: FakeImageHost
    ) -> None:
        image_host.routes["https://x/a.png"] = PNG_A
        record = {"id": "recY", "Photo": "https://x/a.png"}

        rewritten, outcomes = await make_pipeline().process_record(record, "about")

        assert record["Photo"] == "https://x/a.png"
        assert rewritten["Photo"] == outcomes[0].local_path


def test_dataset_order() -> None:
    names = ["menus", "zeta", "hero", "events", "alpha", "dishes"]
    assert ordered_datasets(names) == ["events", "dishes", "hero", "menus", "alpha", "zeta"]
