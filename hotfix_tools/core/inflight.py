"""Registry of remote URLs currently being fetched by the serving path.

A request that finds its URL already registered is redirected to the origin
instead of waiting for the first fetch to finish. The registry lives in
memory only and starts empty with every process.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

logger = structlog.get_logger()


class InFlightRegistry:
    """Thread-safe set of in-flight URLs; ``add`` and ``discard`` are the only mutators."""

    def __init__(self) -> None:
        self._urls: set[str] = set()
        self._lock = threading.Lock()

    def add(self, url: str) -> bool:
        """Register a URL.

        Returns:
            True if the caller now owns the fetch, False if it was already in flight
        """
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def discard(self, url: str) -> None:
        """Unregister a URL; unknown URLs are ignored."""
        with self._lock:
            self._urls.discard(url)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._urls

    def __len__(self) -> int:
        with self._lock:
            return len(self._urls)

    @contextmanager
    def claim(self, url: str) -> Iterator[bool]:
        """Register ``url`` for the duration of the block.

        Yields True when the caller owns the fetch. The URL is released on exit
        only if this block registered it.
        """
        owned = self.add(url)
        if not owned:
            logger.debug("inflight_busy", url=url)
        try:
            yield owned
        finally:
            if owned:
                self.discard(url)
