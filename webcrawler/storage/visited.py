"""
Shared record of which URLs have been fetched during a crawl.
"""

import asyncio
import logging
from typing import Dict, FrozenSet, Set


class VisitedSet:
    """
    Concurrency-safe set of normalized URLs.

    A worker claims a URL right before fetching it. The claim either becomes
    a visit (successful fetch), is held for a queued retry (failed fetch with
    attempts left), or ends as failed once retries are used up. Claim is an
    atomic check-then-insert, so two workers can never fetch the same URL at
    the same time, and a URL has at most one retry chain.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._lock = asyncio.Lock()
        self._visited: Set[str] = set()
        self._in_flight: Set[str] = set()
        self._retrying: Set[str] = set()
        self._failed: Set[str] = set()
        self._skipped: Set[str] = set()

    def _known(self, url: str) -> bool:
        return (url in self._visited or url in self._in_flight or url in self._retrying
                or url in self._failed or url in self._skipped)

    async def claim(self, url: str, retry: bool = False) -> bool:
        """
        Reserve a URL for fetching.

        A URL held for retry can only be claimed by its retry item
        (`retry=True`); any other copy of it is a duplicate.
        """
        async with self._lock:
            if retry and url in self._retrying:
                self._retrying.discard(url)
                self._in_flight.add(url)
                return True
            if self._known(url):
                return False
            self._in_flight.add(url)
            return True

    async def mark_visited(self, url: str) -> bool:
        """Record a successful fetch. Returns False if it was already recorded."""
        async with self._lock:
            self._in_flight.discard(url)
            self._retrying.discard(url)
            if url in self._visited:
                return False
            self._visited.add(url)

        self.logger.debug(f"Marked URL as visited: {url}")
        return True

    async def hold_for_retry(self, url: str):
        """Keep a failed URL reserved while its retry item waits in the frontier."""
        async with self._lock:
            self._in_flight.discard(url)
            if url not in self._visited:
                self._retrying.add(url)

    async def mark_failed(self, url: str):
        """Record a URL whose retries are used up. It is never fetched again."""
        async with self._lock:
            self._in_flight.discard(url)
            self._retrying.discard(url)
            if url not in self._visited:
                self._failed.add(url)

    async def release(self, url: str):
        """Drop a claim without visiting (the fetch was interrupted)."""
        async with self._lock:
            self._in_flight.discard(url)

    async def mark_skipped(self, url: str):
        """Record a URL that must never be fetched (e.g. robots.txt denies it)."""
        async with self._lock:
            self._in_flight.discard(url)
            if url not in self._visited:
                self._skipped.add(url)

    async def seen(self, url: str) -> bool:
        """True if the URL is visited, being fetched or retried, failed, or skipped."""
        async with self._lock:
            return self._known(url)

    async def is_visited(self, url: str) -> bool:
        async with self._lock:
            return url in self._visited

    async def snapshot(self) -> FrozenSet[str]:
        async with self._lock:
            return frozenset(self._visited)

    def __len__(self) -> int:
        return len(self._visited)

    def __contains__(self, url: object) -> bool:
        return url in self._visited

    def get_stats(self) -> Dict[str, int]:
        return {
            'visited': len(self._visited),
            'in_flight': len(self._in_flight),
            'retrying': len(self._retrying),
            'failed': len(self._failed),
            'skipped': len(self._skipped)
        }
