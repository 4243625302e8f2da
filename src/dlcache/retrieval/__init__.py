"""
Retrieval package.

- Fetchers (fetch.py): HTTP and headless-browser content retrieval
- Transformers (transform.py): HTML minification applied before caching
"""

from dlcache.retrieval.fetch import BrowserFetcher, Fetcher, HttpFetcher
from dlcache.retrieval.transform import HtmlMinifier, IdentityTransformer, Transformer

__all__ = [
    "BrowserFetcher",
    "Fetcher",
    "HtmlMinifier",
    "HttpFetcher",
    "IdentityTransformer",
    "Transformer",
]
