"""Shared test fixtures."""

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from fakes import FakeImageHost

from hanamal.config import Settings
from hanamal.images.downloader import Downloader
from hanamal.images.pipeline import ImagePipeline
from hanamal.images.registry import RegistryStore
from hanamal.images.storage import ImageStore
from hanamal.lib.metrics import reset_metrics


@pytest.fixture(autouse=True)
def _fresh_metrics() -> None:
    reset_metrics()


@pytest.fixture
def image_host() -> FakeImageHost:
    return FakeImageHost()


@pytest.fixture
def store(tmp_path: Path) -> ImageStore:
    return ImageStore(tmp_path / "images", "/images")


@pytest.fixture
def registry_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "image-registry.json"


@pytest.fixture
def registry(registry_path: Path) -> RegistryStore:
    return RegistryStore(registry_path).load()


@pytest.fixture
def make_pipeline(
    registry: RegistryStore, store: ImageStore, image_host: FakeImageHost
) -> Callable[..., ImagePipeline]:
    """Build a pipeline over the fake host; no real backoff waits."""

    def factory(
        registry_override: RegistryStore | None = None, **kwargs: object
    ) -> ImagePipeline:
        client = httpx.AsyncClient(transport=image_host.transport)
        options: dict[str, object] = {"retry_min_wait": 0, "retry_max_wait": 0}
        options.update(kwargs)
        return ImagePipeline(
            registry if registry_override is None else registry_override,
            store,
            Downloader(client),
            **options,  # type: ignore[arg-type]
        )

    return factory


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing every path into tmp_path."""
    return Settings.model_validate(
        {
            "AIRTABLE_TOKEN": "pat-test",
            "AIRTABLE_BASE": "appTEST",
            "AIRTABLE_TABLES": {"events": "Events", "dishes": "tblDishes"},
            "SITE_DATA_DIR": tmp_path / "data",
            "SITE_IMAGES_DIR": tmp_path / "images",
            "SITE_REGISTRY_PATH": tmp_path / "data" / "image-registry.json",
            "SITE_AIRTABLE_MIN_INTERVAL": 0,
        }
    )
