#!/usr/bin/env python3
"""Process-wide set of article URLs that have already been handled."""

from threading import Lock
from typing import Iterable

from config import get_logger

logger = get_logger("registry")


class DedupRegistry:
    """Concurrent membership set of seen URLs.

    Preloaded once from the store, then grown as feeds discover new articles.
    Entries are never removed for the lifetime of the process.
    """

    def __init__(self):
        self._urls: set[str] = set()
        self._lock = Lock()

    def preload(self, urls: Iterable[str]) -> int:
        """Bulk-insert the starting set; returns the registry size afterwards."""
        with self._lock:
            self._urls.update(urls)
            size = len(self._urls)
        logger.info(f"Dedup registry preloaded with {size} URLs")
        return size

    def contains(self, url: str) -> bool:
        with self._lock:
            return url in self._urls

    def add(self, url: str) -> None:
        """Add a URL; adding one that is already present is a no-op."""
        with self._lock:
            self._urls.add(url)

    def claim(self, url: str) -> bool:
        """Atomically add a URL if absent.

        Returns:
            True if this call added the URL, False if it was already known.
        """
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def __contains__(self, url: str) -> bool:
        return self.contains(url)

    def __len__(self) -> int:
        with self._lock:
            return len(self._urls)
