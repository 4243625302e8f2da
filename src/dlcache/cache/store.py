"""
Persisted artifact store.

Stores one gzip-compressed blob per cache key directly under the cache
root: ``{root}/{key}``. Writes go to a temporary file in the same
directory and are renamed into place, so a reader sees either the old
complete blob or the new complete blob, never a partial one.

All methods are blocking; async callers run them via asyncio.to_thread.
"""

from __future__ import annotations

import gzip
import os
import stat
import tempfile
import zlib
from pathlib import Path

from dlcache.exceptions import ConfigurationError, StoreReadError, StoreWriteError
from dlcache.logging import get_logger

logger = get_logger(__name__)

# Keys only ever contain "%" followed by two hex digits, so this prefix can
# never name a real blob.
TEMP_PREFIX = "%tmp-"

DEFAULT_COMPRESSION_LEVEL = 6


class ArtifactStore:
    """Filesystem store of gzip blobs keyed by cache key."""

    def __init__(
        self,
        root: str | Path,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
    ) -> None:
        """Initialize the store.

        Args:
            root: Directory holding the blobs.
            compression_level: gzip level (1-9) used by write().
        """
        self.root = Path(root)
        self.compression_level = compression_level

    def ensure_root(self) -> None:
        """Create the cache root if it doesn't exist.

        Raises:
            ConfigurationError: If the directory cannot be created.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                "Cannot create cache directory",
                context={"cache_dir": str(self.root), "error": str(e)},
            ) from e
        logger.info("Artifact store initialized", cache_dir=str(self.root))

    def path_for(self, key: str) -> Path:
        """Get the blob path for a cache key."""
        return self.root / key

    def exists(self, key: str) -> bool:
        """Check whether a blob exists for the key.

        Absence is a normal state and is reported quietly. Other probe
        failures (permissions, a directory in the way) are logged as
        warnings and also reported as False.
        """
        path = self.path_for(key)
        try:
            st = path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return False
        except OSError as e:
            logger.warning("Cache probe failed", key=key, path=str(path), error=str(e))
            return False

        if not stat.S_ISREG(st.st_mode):
            logger.warning("Cache path is not a regular file", key=key, path=str(path))
            return False
        return True

    def read(self, key: str) -> bytes:
        """Read and fully decompress the blob for a key.

        The whole gzip stream, including its CRC and length trailer, is
        validated before anything is returned.

        Raises:
            StoreReadError: If the blob is missing, unreadable, or corrupt.
        """
        path = self.path_for(key)
        try:
            with path.open("rb") as f, gzip.GzipFile(fileobj=f, mode="rb") as gz:
                return gz.read()
        except FileNotFoundError as e:
            raise StoreReadError(
                "Cache blob not found",
                context={"key": key, "path": str(path)},
            ) from e
        except (OSError, EOFError, zlib.error) as e:
            raise StoreReadError(
                "Failed to read cache blob",
                context={"key": key, "path": str(path), "error": str(e)},
            ) from e

    def write(self, key: str, content: bytes) -> None:
        """Compress content and atomically replace the blob for a key.

        Raises:
            StoreWriteError: On any I/O fault. The destination is untouched
                and the temporary file is removed.
        """
        path = self.path_for(key)
        tmp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=self.root, prefix=TEMP_PREFIX, delete=False
            ) as tmp:
                tmp_name = tmp.name
                with gzip.GzipFile(
                    fileobj=tmp, mode="wb", compresslevel=self.compression_level
                ) as gz:
                    gz.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StoreWriteError(
                "Failed to write cache blob",
                context={"key": key, "path": str(path), "error": str(e)},
            ) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("Could not remove temporary blob", path=tmp_name)

        logger.debug("Stored blob", key=key[:80], size=len(content))
