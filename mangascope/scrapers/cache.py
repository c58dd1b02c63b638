"""File-backed TTL cache for scraper results."""

import hashlib
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from mangascope.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TTL = 60 * 60 * 1000  # one hour, in milliseconds


def _now_ms() -> int:
    return int(time.time() * 1000)


def default_cache_root() -> Path:
    """
    Resolve the directory holding every cache namespace.

    Order: MANGASCOPE_CACHE_DIR setting, XDG_CACHE_HOME, APPDATA, ~/.cache.
    """
    if settings.CACHE_DIR:
        return Path(settings.CACHE_DIR)
    base = os.getenv("XDG_CACHE_HOME") or os.getenv("APPDATA")
    base_dir = Path(base) if base else Path.home() / ".cache"
    return base_dir / settings.CACHE_APP_DIR


class ResultCache:
    """
    Namespaced, time-limited JSON cache.

    Each key maps to one file, ``<root>/<namespace>/<md5(key)>.json``, holding
    ``{"data": ..., "timestamp": <ms>, "ttl": <ms>}``. Writes replace the whole
    file atomically, so concurrent readers never see a partial entry.

    The cache is an optimization only: read problems count as misses and write
    problems are logged and swallowed.
    """

    def __init__(
        self,
        namespace: str,
        base_dir: Optional[Path] = None,
        default_ttl: int = DEFAULT_TTL,
    ):
        """Initialize cache.

        Args:
            namespace: Per-provider directory name
            base_dir: Cache root; defaults to the user cache directory
            default_ttl: Lifetime in milliseconds for entries set without a ttl
        """
        self.namespace = namespace
        self.default_ttl = default_ttl
        root = Path(base_dir) if base_dir else default_cache_root()
        self.cache_dir = root / namespace
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            fallback = Path(tempfile.gettempdir()) / settings.CACHE_APP_DIR / namespace
            logger.warning(
                f"[Cache] Cannot create {self.cache_dir} ({e}), using {fallback}"
            )
            self.cache_dir = fallback
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"[Cache] Cache disabled for {namespace}: {e}")

    def _key_path(self, key: str) -> Path:
        digest = hashlib.md5(key.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}.json"

    def _discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"[Cache] Could not remove {path.name}: {e}")

    def get(self, key: str) -> Any:
        """
        Retrieve a cached value.

        Args:
            key: Cache key

        Returns:
            The stored data, or None when absent, expired or unreadable
        """
        path = self._key_path(key)
        if not path.exists():
            return None

        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
            timestamp = int(entry["timestamp"])
            ttl = int(entry["ttl"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug(f"[Cache] Dropping unreadable entry for {key!r}: {e}")
            self._discard(path)
            return None

        if _now_ms() - timestamp >= ttl:
            self._discard(path)
            return None

        return entry.get("data")

    def set(self, key: str, data: Any, ttl: Optional[int] = None) -> None:
        """
        Store a JSON-serializable value.

        Args:
            key: Cache key
            data: Value to store
            ttl: Lifetime in milliseconds, defaults to the cache default
        """
        path = self._key_path(key)
        entry = {
            "data": data,
            "timestamp": _now_ms(),
            "ttl": self.default_ttl if ttl is None else ttl,
        }
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.cache_dir, prefix=".tmp-", suffix=".json"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(entry, handle)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"[Cache] Failed to write {key!r}: {e}")
            if tmp_name:
                self._discard(Path(tmp_name))

    def delete(self, key: str) -> None:
        """Remove one entry if present."""
        self._discard(self._key_path(key))

    def evict_namespace(self) -> int:
        """
        Remove every entry of this namespace.

        Returns:
            Number of entries removed
        """
        removed = 0
        if not self.cache_dir.exists():
            return removed
        for path in self.cache_dir.glob("*.json"):
            self._discard(path)
            removed += 1
        return removed

    async def wrap(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        """
        Return the cached value for key, or await producer and cache its result.

        Args:
            key: Cache key
            producer: Coroutine function computing the value on a miss
            ttl: Lifetime in milliseconds for a newly produced value

        Returns:
            Cached or freshly produced value
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        data = await producer()
        if data is not None:
            self.set(key, data, ttl)
        return data
