"""
Content retrieval backends.

Fetcher is the interface the pipeline depends on. Two implementations:
- HttpFetcher: plain GET of the URL
- BrowserFetcher: asks a headless-browser rendering service for the page
  (browserless-style ``POST {endpoint}/content``)

Both signal failure with FetchError whose ``kind`` context distinguishes
network faults ("transport", "timeout") from bad responses ("status",
"empty", "too_large").
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from dlcache.exceptions import FetchError
from dlcache.logging import get_logger

logger = get_logger(__name__)

# User agent for plain HTTP requests
USER_AGENT = "DownloadCache/1.0"

# Request timeout
REQUEST_TIMEOUT = 30.0

# Max content size to fetch (10MB)
MAX_CONTENT_SIZE = 10 * 1024 * 1024


class Fetcher(ABC):
    """Abstract retrieval capability."""

    @abstractmethod
    async def fetch(self, url: str) -> bytes:
        """Fetch raw content for a URL.

        Raises:
            FetchError: On any failure; no partial content is returned.
        """
        ...

    async def aclose(self) -> None:
        """Release any held resources."""
        return None


class _HttpxFetcher(Fetcher):
    """Shared httpx plumbing: lazy client, size-limited body, error mapping."""

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        max_content_bytes: int = MAX_CONTENT_SIZE,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_content_bytes = max_content_bytes
        self._client = client
        self._owns_client = client is None

    def _client_options(self) -> dict[str, Any]:
        return {"timeout": self.timeout}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(**self._client_options())
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(self, url: str, method: str, target: str, **kwargs: Any) -> bytes:
        """Issue a request and return the complete body.

        Args:
            url: The URL being cached (for error context).
            method: HTTP method.
            target: URL actually requested.
            **kwargs: Passed to httpx.AsyncClient.stream().
        """
        client = await self._get_client()
        try:
            async with client.stream(method, target, **kwargs) as response:
                if response.status_code != httpx.codes.OK:
                    raise FetchError(
                        f"Download failed with status code {response.status_code}",
                        context={
                            "url": url,
                            "kind": "status",
                            "status_code": response.status_code,
                        },
                    )

                chunks: list[bytes] = []
                size = 0
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > self.max_content_bytes:
                        raise FetchError(
                            "Content too large",
                            context={
                                "url": url,
                                "kind": "too_large",
                                "limit": self.max_content_bytes,
                            },
                        )
                    chunks.append(chunk)
        except httpx.TimeoutException as e:
            raise FetchError(
                f"Timed out fetching {url}",
                context={"url": url, "kind": "timeout", "error": str(e)},
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(
                f"Failed to download {url}",
                context={"url": url, "kind": "transport", "error": str(e)},
            ) from e

        body = b"".join(chunks)
        if not body:
            raise FetchError(
                "Download returned an empty body",
                context={"url": url, "kind": "empty"},
            )
        return body


class HttpFetcher(_HttpxFetcher):
    """Fetches URLs with a plain HTTP GET, following redirects."""

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        user_agent: str = USER_AGENT,
        max_content_bytes: int = MAX_CONTENT_SIZE,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds.
            user_agent: User-Agent header value.
            max_content_bytes: Largest body accepted.
            client: Optional preconfigured client (not closed by aclose()).
        """
        super().__init__(timeout, max_content_bytes, client)
        self.user_agent = user_agent

    def _client_options(self) -> dict[str, Any]:
        return {
            "timeout": self.timeout,
            "follow_redirects": True,
            "headers": {"User-Agent": self.user_agent},
        }

    async def fetch(self, url: str) -> bytes:
        body = await self._request(url, "GET", url)
        logger.debug("Fetched URL over HTTP", size=len(body))
        return body


class BrowserFetcher(_HttpxFetcher):
    """Fetches rendered HTML from a headless-browser service.

    Sends ``POST {endpoint}/content`` with body ``{"url": ...}`` and
    returns the rendered document.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = REQUEST_TIMEOUT,
        token: str | None = None,
        max_content_bytes: int = MAX_CONTENT_SIZE,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            endpoint: Base URL of the rendering service.
            timeout: Request timeout in seconds.
            token: Optional access token sent as the ``token`` query parameter.
            max_content_bytes: Largest body accepted.
            client: Optional preconfigured client (not closed by aclose()).
        """
        super().__init__(timeout, max_content_bytes, client)
        self.endpoint = endpoint.rstrip("/")
        self.token = token

    async def fetch(self, url: str) -> bytes:
        params = {"token": self.token} if self.token else None
        body = await self._request(
            url,
            "POST",
            f"{self.endpoint}/content",
            json={"url": url},
            params=params,
        )
        logger.debug("Fetched rendered page", size=len(body))
        return body
