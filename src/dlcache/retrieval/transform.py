"""
Content transformers applied to fetched pages before caching.

Transformation is an optimisation: the pipeline falls back to the raw
bytes whenever a transformer raises.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from bs4 import BeautifulSoup, Comment, NavigableString

from dlcache.exceptions import TransformError
from dlcache.logging import get_logger

logger = get_logger(__name__)

# Whitespace is significant inside these
PRESERVE_WHITESPACE_TAGS = frozenset({"pre", "textarea", "script", "style"})

# Whitespace-only text directly inside these never renders. body and the
# document root are inline contexts (fragments, text between links).
STRUCTURAL_TAGS = frozenset({
    "html", "head", "ul", "ol", "dl", "table", "thead",
    "tbody", "tfoot", "tr", "select", "optgroup", "colgroup",
})

_WHITESPACE_RE = re.compile(r"\s+")


class Transformer(ABC):
    """Abstract content transformation capability."""

    @abstractmethod
    def transform(self, raw: bytes) -> bytes:
        """Transform fetched content.

        Raises:
            TransformError: If the content cannot be transformed.
        """
        ...


class IdentityTransformer(Transformer):
    """Returns content unchanged (used when minification is disabled)."""

    def transform(self, raw: bytes) -> bytes:
        return raw


class HtmlMinifier(Transformer):
    """Shrinks HTML by dropping comments and collapsing whitespace.

    Text inside pre, textarea, script and style is left verbatim.
    Whitespace-only text between structural tags is removed; elsewhere it
    collapses to a single space so inline spacing survives.
    """

    def transform(self, raw: bytes) -> bytes:
        try:
            html = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TransformError(
                "Content is not valid UTF-8",
                context={"position": e.start, "size": len(raw)},
            ) from e

        try:
            soup = BeautifulSoup(html, "html.parser")

            for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
                comment.extract()
            # Merge text split by removed comments so it collapses once
            soup.smooth()

            for text in soup.find_all(string=True):
                # Skip Doctype, CData and other NavigableString subclasses
                if type(text) is not NavigableString:
                    continue
                if any(p.name in PRESERVE_WHITESPACE_TAGS for p in text.parents):
                    continue

                collapsed = _WHITESPACE_RE.sub(" ", str(text))
                if collapsed == " " and text.parent is not None and text.parent.name in STRUCTURAL_TAGS:
                    text.extract()
                elif collapsed != str(text):
                    text.replace_with(NavigableString(collapsed))

            minified = soup.decode().strip().encode("utf-8")
        except Exception as e:
            raise TransformError(
                "Failed to minify HTML",
                context={"error": str(e), "size": len(raw)},
            ) from e

        logger.debug("Minified HTML", original_size=len(raw), minified_size=len(minified))
        return minified
