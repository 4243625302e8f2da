"""
Download cache service: the public entry point.

DownloadCache.get() serves a URL from the artifact store when possible and
otherwise runs the fetch pipeline under the URL's lock, so concurrent
requests for the same URL cause at most one fetch.
"""

from __future__ import annotations

from types import TracebackType

from dlcache.cache.coordinator import KeyedLockCoordinator
from dlcache.cache.keys import derive_cache_key
from dlcache.cache.store import ArtifactStore
from dlcache.config import Settings
from dlcache.exceptions import ConfigurationError, InvalidArgumentError
from dlcache.logging import get_logger, log_context
from dlcache.pipeline import FetchPipeline, read_cached
from dlcache.retrieval.fetch import BrowserFetcher, Fetcher, HttpFetcher
from dlcache.retrieval.transform import HtmlMinifier, IdentityTransformer, Transformer
from dlcache.types import generate_id

logger = get_logger(__name__)


class DownloadCache:
    """Cache-or-fetch front end for URLs.

    The fast path (no invalidation, blob on disk) reads the store without
    taking any lock; the store's atomic writes guarantee it only ever sees
    complete blobs.
    """

    def __init__(
        self,
        store: ArtifactStore,
        pipeline: FetchPipeline,
        coordinator: KeyedLockCoordinator | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Artifact store checked on the fast path.
            pipeline: Pipeline run on a miss or invalidation.
            coordinator: Per-key lock registry; a fresh one if omitted.
        """
        self.store = store
        self.pipeline = pipeline
        self.coordinator = coordinator or KeyedLockCoordinator()

    @classmethod
    def from_settings(cls, settings: Settings) -> DownloadCache:
        """Build the production object graph from settings."""
        store = ArtifactStore(settings.CACHE_DIR, compression_level=settings.COMPRESSION_LEVEL)
        store.ensure_root()

        fetcher: Fetcher
        if settings.FETCH_BACKEND == "browser":
            if not settings.BROWSER_ENDPOINT:
                raise ConfigurationError(
                    "FETCH_BACKEND=browser requires BROWSER_ENDPOINT",
                    context={"backend": settings.FETCH_BACKEND},
                )
            fetcher = BrowserFetcher(
                settings.BROWSER_ENDPOINT,
                timeout=settings.FETCH_TIMEOUT_SECONDS,
                token=settings.BROWSER_TOKEN,
                max_content_bytes=settings.MAX_CONTENT_BYTES,
            )
        else:
            fetcher = HttpFetcher(
                timeout=settings.FETCH_TIMEOUT_SECONDS,
                user_agent=settings.USER_AGENT,
                max_content_bytes=settings.MAX_CONTENT_BYTES,
            )

        transformer: Transformer = HtmlMinifier() if settings.MINIFY_HTML else IdentityTransformer()

        pipeline = FetchPipeline(
            store,
            fetcher,
            transformer,
            fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
        )
        logger.info(
            "Download cache ready",
            cache_dir=str(settings.CACHE_DIR),
            backend=settings.FETCH_BACKEND,
            minify=settings.MINIFY_HTML,
        )
        return cls(store, pipeline)

    async def get(self, url: str, invalidate: bool = False) -> bytes:
        """Return content for url, fetching it at most once concurrently.

        Args:
            url: The URL to serve. Must be non-empty.
            invalidate: Ignore any cached copy and fetch fresh content.

        Returns:
            The (transformed) content.

        Raises:
            InvalidArgumentError: If url is empty.
            FetchError: If the content was not cached and could not be fetched.
        """
        if not url:
            raise InvalidArgumentError("URL cannot be empty")

        with log_context(request_id=generate_id("req"), url=url):
            logger.info("Received request", invalidate=invalidate)
            key = derive_cache_key(url)

            if not invalidate:
                cached = await read_cached(self.store, key)
                if cached is not None:
                    logger.info("Cache HIT", size=len(cached))
                    return cached

            logger.info("Cache MISS or invalidation")
            return await self.coordinator.with_lock(
                key, lambda: self.pipeline.run(url, invalidate=invalidate)
            )

    async def aclose(self) -> None:
        """Close the fetcher's HTTP client."""
        await self.pipeline.fetcher.aclose()

    async def __aenter__(self) -> DownloadCache:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
