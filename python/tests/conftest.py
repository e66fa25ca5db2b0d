"""Pytest configuration and fixtures for photofeed tests.

Test isolation strategy:
- Every test gets its own CACHE_DIR under tmp_path
- Settings and master-key caches are cleared around each test
- Upstream HTTP is mocked with respx; external tools are replaced by fakes
- Time is controlled with FakeClock wherever freshness matters
"""

import base64
import sys
from collections.abc import Generator
from pathlib import Path

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import httpx
import pytest
from fastapi.testclient import TestClient

from photofeed.app import add_request_id_middleware, create_app
from photofeed.config import Settings, clear_settings_cache
from photofeed.services.container import ServiceContainer
from photofeed.services.tokens import clear_master_key_cache
from tests.helpers import FakeAlbumFetcher, FakeClock, make_settings

TEST_ENCRYPTION_KEY = base64.b64encode(bytes(range(32))).decode("ascii")


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch) -> Generator[None, None, None]:
    """Point settings at a per-test cache directory."""
    monkeypatch.setenv("PHOTOFEED_ENV", "test")
    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.delenv("TOKEN_ENCRYPTION_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    clear_settings_cache()
    clear_master_key_cache()
    yield
    clear_settings_cache()
    clear_master_key_cache()


@pytest.fixture
def encryption_key(monkeypatch) -> str:
    """Configure a valid TOKEN_ENCRYPTION_KEY for the test."""
    monkeypatch.setenv("TOKEN_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    clear_settings_cache()
    clear_master_key_cache()
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path / "cache")


@pytest.fixture
def httpx_client():
    """Create an httpx AsyncClient for testing."""
    return httpx.AsyncClient()


@pytest.fixture
def fetcher() -> FakeAlbumFetcher:
    return FakeAlbumFetcher()


@pytest.fixture
def app_factory(fetcher: FakeAlbumFetcher, clock: FakeClock):
    """Build apps whose service container uses the fake fetcher and clock.

    Extra keyword arguments are forwarded to ServiceContainer.build.
    """

    def factory(**container_kwargs):
        def build(settings: Settings, client: httpx.AsyncClient) -> ServiceContainer:
            return ServiceContainer.build(
                settings, client, clock=clock, fetcher=fetcher, **container_kwargs
            )

        app = create_app(container_factory=build, start_periodic_jobs=False)
        add_request_id_middleware(app, log_requests=False)
        return app

    return factory


@pytest.fixture
def client(app_factory) -> Generator[TestClient, None, None]:
    """Test client with the fake album fetcher and no augmentation."""
    with TestClient(app_factory()) as test_client:
        yield test_client
