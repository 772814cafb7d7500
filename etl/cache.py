"""
Extraction Cache

File-backed JSON cache with a time-to-live. An instance is handed to the
extraction step; when caching is disabled every lookup is a miss and
nothing is written.
"""

import json
import logging
import os
import re
import time
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class FileCache:
    """
    Key -> JSON value cache stored as one file per key.
    """

    def __init__(
        self,
        directory: str = ".cache",
        ttl_minutes: float = 30,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = directory
        self.ttl_seconds = ttl_minutes * 60
        self.enabled = enabled
        self._clock = clock

    @classmethod
    def from_settings(cls, settings) -> "FileCache":
        return cls(
            directory=settings.CACHE_DIR,
            ttl_minutes=settings.CACHE_EXPIRY_MINUTES,
            enabled=settings.ENABLE_CACHING,
        )

    @staticmethod
    def make_key(identifier: str) -> str:
        return _UNSAFE_KEY_CHARS.sub("_", identifier)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{self.make_key(key)}.json")

    def is_valid(self, key: str) -> bool:
        """Check that an entry exists and is younger than the TTL."""
        if not self.enabled:
            return False

        path = self._path(key)
        if not os.path.exists(path):
            return False

        age = self._clock() - os.path.getmtime(path)
        if age > self.ttl_seconds:
            logger.debug(f"Cache expired for key: {key}")
            return False
        return True

    def get(self, key: str) -> Optional[Any]:
        """
        Read a cached value.

        Returns:
            The cached value, or None on a miss, expiry or unreadable entry
        """
        if not self.is_valid(key):
            return None

        try:
            with open(self._path(key), "r", encoding="utf-8") as f:
                value = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Error reading cache for {key}: {e}")
            return None

        logger.info(f"Cache hit for key: {key}")
        return value

    def set(self, key: str, value: Any) -> None:
        """Write a value; write failures are logged and otherwise ignored."""
        if not self.enabled:
            return

        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(self._path(key), "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2)
        except (OSError, TypeError) as e:
            logger.error(f"Error writing cache for {key}: {e}")
            return

        logger.info(f"Cache written for key: {key}")

    def invalidate(self, key: str) -> None:
        path = self._path(key)
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"Cache invalidated for key: {key}")

    def clear(self) -> int:
        """Remove every cache entry and return how many were deleted."""
        if not os.path.isdir(self.directory):
            return 0

        removed = 0
        for name in os.listdir(self.directory):
            if name.endswith(".json"):
                os.remove(os.path.join(self.directory, name))
                removed += 1

        logger.info(f"All cache cleared ({removed} entries)")
        return removed

    def stats(self) -> Dict[str, Any]:
        """Summarize cached entries: name, size in bytes and age in seconds."""
        files = []
        if os.path.isdir(self.directory):
            now = self._clock()
            for name in sorted(os.listdir(self.directory)):
                if not name.endswith(".json"):
                    continue
                path = os.path.join(self.directory, name)
                files.append({
                    "name": name,
                    "size": os.path.getsize(path),
                    "age_seconds": now - os.path.getmtime(path),
                })
        return {"total_files": len(files), "files": files}
