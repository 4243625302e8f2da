"""
Pytest configuration and fixtures for download cache tests.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import pytest

from dlcache.cache.store import ArtifactStore
from dlcache.config import Settings, clear_settings_cache
from dlcache.exceptions import FetchError, TransformError
from dlcache.pipeline import FetchPipeline
from dlcache.retrieval.fetch import Fetcher
from dlcache.retrieval.transform import Transformer
from dlcache.service import DownloadCache


class FakeFetcher(Fetcher):
    """In-memory fetcher that records calls.

    Pages map URL to content. A URL missing from pages raises FetchError.
    When ``gate`` is set, each fetch waits on it before returning, which
    lets tests hold a fetch "in flight".
    """

    def __init__(self, pages: dict[str, bytes] | None = None) -> None:
        self.pages = dict(pages or {})
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.closed = False

    async def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if url not in self.pages:
            raise FetchError("Download failed", context={"url": url, "kind": "status"})
        return self.pages[url]

    async def aclose(self) -> None:
        self.closed = True


class UpperTransformer(Transformer):
    """Uppercases content so tests can tell transformed from raw bytes."""

    def __init__(self) -> None:
        self.calls = 0

    def transform(self, raw: bytes) -> bytes:
        self.calls += 1
        return raw.upper()


class FailingTransformer(Transformer):
    """Always fails."""

    def transform(self, raw: bytes) -> bytes:
        raise TransformError("Cannot transform")


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def store(temp_dir: Path) -> ArtifactStore:
    """Provide an artifact store rooted in a temp directory."""
    s = ArtifactStore(temp_dir / "cache")
    s.ensure_root()
    return s


@pytest.fixture
def fetcher() -> FakeFetcher:
    """Provide a fake fetcher serving example.com."""
    return FakeFetcher({"https://example.com": b"<p>hello</p>"})


@pytest.fixture
def transformer() -> UpperTransformer:
    """Provide a transformer with an observable effect."""
    return UpperTransformer()


@pytest.fixture
def pipeline(
    store: ArtifactStore, fetcher: FakeFetcher, transformer: UpperTransformer
) -> FetchPipeline:
    """Provide a pipeline wired to the fakes."""
    return FetchPipeline(store, fetcher, transformer, fetch_timeout=5.0)


@pytest.fixture
def cache(store: ArtifactStore, pipeline: FetchPipeline) -> DownloadCache:
    """Provide a DownloadCache wired to the fakes."""
    return DownloadCache(store, pipeline)


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "CACHE_DIR": ".test_cache",
        "FETCH_TIMEOUT_SECONDS": "12.5",
        "FETCH_BACKEND": "http",
        "BROWSER_ENDPOINT": "",
        "BROWSER_TOKEN": "",
        "MINIFY_HTML": "false",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str], temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration.

    Uses temp_dir for the cache directory.
    """
    with patch.dict(os.environ, {"CACHE_DIR": str(temp_dir / "cache")}):
        clear_settings_cache()
        from dlcache.config import get_settings

        settings = get_settings()
        settings.ensure_directories()
        yield settings
        clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
