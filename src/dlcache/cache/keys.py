"""
Cache key derivation.

A cache key is the identifier escaped as a single URL path segment: every
character outside the unreserved set and ``$&+,:;=@`` is percent-encoded
as UTF-8, so ``/`` can never appear in a key and ``%`` in the identifier
is itself escaped. That makes the mapping injective and reversible.
"""

from __future__ import annotations

from urllib.parse import quote, unquote

# Sub-delimiters allowed verbatim inside a path segment
_SEGMENT_SAFE = "$&+,:;=@"

# Surrogates can't be encoded as UTF-8 strictly; pass them through so that
# every str has a key.
_ERRORS = "surrogatepass"


def derive_cache_key(identifier: str) -> str:
    """Map an identifier to a filesystem-safe cache key.

    Args:
        identifier: Non-empty identifier (usually a URL).

    Returns:
        Key usable as a single path segment. Distinct identifiers always
        produce distinct keys.
    """
    key = quote(identifier, safe=_SEGMENT_SAFE, encoding="utf-8", errors=_ERRORS)
    if key in (".", ".."):
        # Dot segments name directories; "%" is always escaped above, so
        # "%2E" here cannot collide with a literal identifier.
        key = key.replace(".", "%2E")
    return key


def identifier_from_key(key: str) -> str:
    """Recover the identifier a key was derived from."""
    return unquote(key, encoding="utf-8", errors=_ERRORS)
