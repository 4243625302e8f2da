"""
Fetch-transform-store pipeline.

FetchPipeline.run() is executed while the URL's lock is held:
1. Double-check the store (another request may have filled it while we
   waited), unless the caller asked for invalidation
2. Fetch via the configured Fetcher, bounded by a timeout
3. Transform, falling back to the raw bytes on TransformError
4. Persist, logging (not raising) on StoreWriteError
5. Return the content
"""

from __future__ import annotations

import asyncio

from dlcache.cache.keys import derive_cache_key
from dlcache.cache.store import ArtifactStore
from dlcache.exceptions import FetchError, StoreReadError, StoreWriteError, TransformError
from dlcache.logging import get_logger
from dlcache.retrieval.fetch import REQUEST_TIMEOUT, Fetcher
from dlcache.retrieval.transform import Transformer

logger = get_logger(__name__)


async def read_cached(store: ArtifactStore, key: str) -> bytes | None:
    """Return the cached blob for key, or None on a miss.

    An unreadable blob is logged and reported as a miss so the caller
    refetches and overwrites it.
    """
    if not await asyncio.to_thread(store.exists, key):
        return None
    try:
        return await asyncio.to_thread(store.read, key)
    except StoreReadError as e:
        logger.warning("Failed to read from cache, treating as miss", key=key[:80], error=str(e))
        return None


class FetchPipeline:
    """Fetches, transforms and persists one URL."""

    def __init__(
        self,
        store: ArtifactStore,
        fetcher: Fetcher,
        transformer: Transformer,
        fetch_timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the pipeline.

        Args:
            store: Where transformed content is persisted.
            fetcher: Retrieval backend.
            transformer: Applied to fetched bytes before caching.
            fetch_timeout: Deadline for the whole fetch in seconds.
        """
        if fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        self.store = store
        self.fetcher = fetcher
        self.transformer = transformer
        self.fetch_timeout = fetch_timeout

    async def run(self, url: str, invalidate: bool = False) -> bytes:
        """Produce content for url. Must be called with url's lock held.

        Args:
            url: The URL to serve.
            invalidate: Skip the double-check and always fetch fresh content.

        Returns:
            Transformed content (or raw content if transformation failed).

        Raises:
            FetchError: If retrieval fails. Nothing is written in that case.
        """
        key = derive_cache_key(url)

        if not invalidate:
            cached = await read_cached(self.store, key)
            if cached is not None:
                logger.info("Cache HIT (after lock)")
                return cached

        raw = await self._fetch(url)
        content = await self._transform(raw)

        try:
            await asyncio.to_thread(self.store.write, key, content)
        except StoreWriteError as e:
            logger.error("Failed to write to cache, serving uncached", error=str(e))
        else:
            logger.info("Cached content", size=len(content), raw_size=len(raw))

        return content

    async def _fetch(self, url: str) -> bytes:
        try:
            raw = await asyncio.wait_for(self.fetcher.fetch(url), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise FetchError(
                f"Timed out fetching {url}",
                context={"url": url, "kind": "timeout", "timeout": self.fetch_timeout},
            ) from e

        if not raw:
            raise FetchError(
                "Download returned an empty body",
                context={"url": url, "kind": "empty"},
            )
        return raw

    async def _transform(self, raw: bytes) -> bytes:
        try:
            return await asyncio.to_thread(self.transformer.transform, raw)
        except TransformError as e:
            logger.warning("Failed to transform content, using original", error=str(e))
            return raw
        except Exception as e:
            logger.warning(
                "Transformer crashed, using original",
                error=str(e),
                error_type=type(e).__name__,
            )
            return raw
