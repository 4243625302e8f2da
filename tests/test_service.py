"""
Tests for the DownloadCache request orchestrator.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conftest import FailingTransformer, FakeFetcher, UpperTransformer
from dlcache.cache.keys import derive_cache_key
from dlcache.cache.store import ArtifactStore
from dlcache.config import Settings
from dlcache.exceptions import ConfigurationError, FetchError, InvalidArgumentError
from dlcache.pipeline import FetchPipeline
from dlcache.retrieval.fetch import BrowserFetcher, HttpFetcher
from dlcache.retrieval.transform import HtmlMinifier, IdentityTransformer
from dlcache.service import DownloadCache

URL = "https://example.com"


class TestGetScenarios:
    """End-to-end request scenarios."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(
        self,
        cache: DownloadCache,
        store: ArtifactStore,
        fetcher: FakeFetcher,
        transformer: UpperTransformer,
    ) -> None:
        """Test a miss fetches once and a repeat is served from disk."""
        first = await cache.get(URL)

        assert first == b"<P>HELLO</P>"
        assert fetcher.calls == [URL]
        assert transformer.calls == 1
        assert store.exists(derive_cache_key(URL))

        second = await cache.get(URL)
        assert second == first
        assert fetcher.calls == [URL]
        assert transformer.calls == 1

    @pytest.mark.asyncio
    async def test_empty_url_rejected(
        self, cache: DownloadCache, store: ArtifactStore, fetcher: FakeFetcher
    ) -> None:
        """Test an empty URL fails without side effects."""
        with pytest.raises(InvalidArgumentError):
            await cache.get("")

        with pytest.raises(InvalidArgumentError):
            await cache.get("", invalidate=True)

        assert fetcher.calls == []
        assert list(store.root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_invalidate_refetches(
        self, cache: DownloadCache, store: ArtifactStore, fetcher: FakeFetcher
    ) -> None:
        """Test invalidation forces a fresh fetch over an existing entry."""
        await cache.get(URL)
        fetcher.pages[URL] = b"<p>updated</p>"

        assert await cache.get(URL) == b"<P>HELLO</P>"
        assert await cache.get(URL, invalidate=True) == b"<P>UPDATED</P>"
        assert fetcher.calls == [URL, URL]
        assert store.read(derive_cache_key(URL)) == b"<P>UPDATED</P>"

    @pytest.mark.asyncio
    async def test_invalidate_with_failing_fetch_keeps_entry(
        self, cache: DownloadCache, store: ArtifactStore, fetcher: FakeFetcher
    ) -> None:
        """Test a failed invalidating fetch leaves the old entry untouched."""
        await cache.get(URL)
        key = derive_cache_key(URL)
        before = store.path_for(key).read_bytes()

        del fetcher.pages[URL]
        with pytest.raises(FetchError):
            await cache.get(URL, invalidate=True)

        assert store.path_for(key).read_bytes() == before
        assert await cache.get(URL) == b"<P>HELLO</P>"

    @pytest.mark.asyncio
    async def test_fetch_error_surfaces(self, cache: DownloadCache) -> None:
        """Test an uncached URL that can't be fetched fails the request."""
        with pytest.raises(FetchError):
            await cache.get("https://missing.example")
        assert cache.coordinator.in_flight == 0

    @pytest.mark.asyncio
    async def test_transform_failure_serves_raw(
        self, store: ArtifactStore, fetcher: FakeFetcher
    ) -> None:
        """Test a failing transformer still succeeds with raw bytes cached."""
        cache = DownloadCache(store, FetchPipeline(store, fetcher, FailingTransformer()))

        assert await cache.get(URL) == b"<p>hello</p>"
        assert store.read(derive_cache_key(URL)) == b"<p>hello</p>"

    @pytest.mark.asyncio
    async def test_unwritable_store_still_serves(
        self, temp_dir: Path, fetcher: FakeFetcher, transformer: UpperTransformer
    ) -> None:
        """Test an unwritable cache directory doesn't fail the request."""
        # Root never created, so every write fails
        store = ArtifactStore(temp_dir / "missing-root")
        cache = DownloadCache(store, FetchPipeline(store, fetcher, transformer))

        assert await cache.get(URL) == b"<P>HELLO</P>"
        assert await cache.get(URL) == b"<P>HELLO</P>"
        assert fetcher.calls == [URL, URL]

    @pytest.mark.asyncio
    async def test_corrupt_entry_refetched(
        self, cache: DownloadCache, store: ArtifactStore, fetcher: FakeFetcher
    ) -> None:
        """Test an unreadable entry is treated as a miss on the fast path."""
        store.path_for(derive_cache_key(URL)).write_bytes(b"not gzip")

        assert await cache.get(URL) == b"<P>HELLO</P>"
        assert fetcher.calls == [URL]


class TestSingleFlight:
    """Test request coalescing across concurrent callers."""

    @pytest.mark.asyncio
    async def test_concurrent_same_url_fetches_once(
        self, cache: DownloadCache, fetcher: FakeFetcher
    ) -> None:
        """Test N concurrent misses for one URL trigger exactly one fetch."""
        fetcher.gate = asyncio.Event()

        tasks = [asyncio.create_task(cache.get(URL)) for _ in range(10)]
        await fetcher.started.wait()
        await asyncio.sleep(0.01)
        fetcher.gate.set()

        results = await asyncio.gather(*tasks)

        assert fetcher.calls == [URL]
        assert all(r == b"<P>HELLO</P>" for r in results)
        assert cache.coordinator.in_flight == 0

    @pytest.mark.asyncio
    async def test_concurrent_invalidations_serialized(
        self, cache: DownloadCache, fetcher: FakeFetcher
    ) -> None:
        """Test invalidating requests for one URL never fetch concurrently."""
        active = 0
        max_active = 0
        original = fetcher.fetch

        async def tracking_fetch(url: str) -> bytes:
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            try:
                await asyncio.sleep(0.01)
                return await original(url)
            finally:
                active -= 1

        fetcher.fetch = tracking_fetch  # type: ignore[method-assign]

        await asyncio.gather(*[cache.get(URL, invalidate=True) for _ in range(4)])

        assert max_active == 1
        assert len(fetcher.calls) == 4

    @pytest.mark.asyncio
    async def test_distinct_urls_not_blocked(
        self, cache: DownloadCache, fetcher: FakeFetcher
    ) -> None:
        """Test an in-flight fetch for one URL doesn't block another URL."""
        other = "https://other.example"
        fetcher.pages[other] = b"<p>other</p>"
        release = asyncio.Event()
        entered = asyncio.Event()
        original = fetcher.fetch

        async def slow_for_example(url: str) -> bytes:
            if url == URL:
                entered.set()
                await release.wait()
            return await original(url)

        fetcher.fetch = slow_for_example  # type: ignore[method-assign]

        slow = asyncio.create_task(cache.get(URL))
        await entered.wait()
        assert cache.coordinator.is_locked(derive_cache_key(URL))

        fast = await asyncio.wait_for(cache.get(other), timeout=1.0)
        assert fast == b"<P>OTHER</P>"

        release.set()
        assert await slow == b"<P>HELLO</P>"

    @pytest.mark.asyncio
    async def test_hit_path_skips_lock(
        self, cache: DownloadCache, store: ArtifactStore, fetcher: FakeFetcher
    ) -> None:
        """Test a cached URL is served while an invalidating fetch is in flight."""
        await cache.get(URL)
        fetcher.gate = asyncio.Event()
        fetcher.started.clear()

        refresh = asyncio.create_task(cache.get(URL, invalidate=True))
        await fetcher.started.wait()
        assert cache.coordinator.is_locked(derive_cache_key(URL))

        cached = await asyncio.wait_for(cache.get(URL), timeout=1.0)
        assert cached == b"<P>HELLO</P>"

        fetcher.gate.set()
        assert await refresh == b"<P>HELLO</P>"


class TestFromSettings:
    """Test building the production object graph."""

    def test_http_backend(self, mock_settings: Settings) -> None:
        """Test the default backend is a plain HTTP fetcher."""
        cache = DownloadCache.from_settings(mock_settings)

        assert isinstance(cache.pipeline.fetcher, HttpFetcher)
        assert cache.pipeline.fetcher.timeout == 12.5
        assert cache.pipeline.fetch_timeout == 12.5
        assert isinstance(cache.pipeline.transformer, IdentityTransformer)
        assert cache.store.root == mock_settings.CACHE_DIR
        assert mock_settings.CACHE_DIR.is_dir()

    def test_browser_backend_with_minify(self, temp_dir: Path) -> None:
        """Test the browser backend and minifier are selected from settings."""
        settings = Settings(
            _env_file=None,
            CACHE_DIR=temp_dir / "c",
            FETCH_BACKEND="browser",
            BROWSER_ENDPOINT="http://chrome:3000/",
            BROWSER_TOKEN="secret-token",
            MINIFY_HTML=True,
        )
        cache = DownloadCache.from_settings(settings)

        fetcher = cache.pipeline.fetcher
        assert isinstance(fetcher, BrowserFetcher)
        assert fetcher.endpoint == "http://chrome:3000"
        assert fetcher.token == "secret-token"
        assert isinstance(cache.pipeline.transformer, HtmlMinifier)

    def test_browser_backend_without_endpoint(self, temp_dir: Path) -> None:
        """Test a browser backend that lost its endpoint is a configuration error."""
        settings = Settings(
            _env_file=None,
            CACHE_DIR=temp_dir / "c",
            FETCH_BACKEND="browser",
            BROWSER_ENDPOINT="http://chrome:3000",
        )
        settings.BROWSER_ENDPOINT = None

        with pytest.raises(ConfigurationError) as exc_info:
            DownloadCache.from_settings(settings)
        assert exc_info.value.context["backend"] == "browser"

    @pytest.mark.asyncio
    async def test_context_manager_closes_fetcher(
        self, store: ArtifactStore, pipeline: FetchPipeline, fetcher: FakeFetcher
    ) -> None:
        """Test leaving the async context closes the fetcher."""
        async with DownloadCache(store, pipeline) as cache:
            await cache.get(URL)
        assert fetcher.closed
