"""
Frontier queue for managing URLs to crawl.
Workers both consume and refill it, so drain detection uses a pending
counter rather than queue emptiness.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Deque, Dict, Optional

from .context import CancelToken
from ..errors import Cancelled, QueueClosed


@dataclass(frozen=True)
class WorkItem:
    """Represents a URL crawling task."""
    url: str
    depth: int = 0
    retry_count: int = 0
    parent_url: Optional[str] = None
    discovered_time: float = field(default_factory=time.time, compare=False)

    def __post_init__(self):
        if self.depth < 0:
            raise ValueError(f"depth must be non-negative, got {self.depth}")
        if self.retry_count < 0:
            raise ValueError(f"retry_count must be non-negative, got {self.retry_count}")

    def child(self, url: str) -> 'WorkItem':
        """Work item for a link discovered on this page."""
        return WorkItem(url=url, depth=self.depth + 1, retry_count=0, parent_url=self.url)

    def retry(self) -> 'WorkItem':
        """The same URL, one attempt further along."""
        return replace(self, retry_count=self.retry_count + 1)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'url': self.url,
            'depth': self.depth,
            'retry_count': self.retry_count,
            'parent_url': self.parent_url,
            'discovered_time': self.discovered_time
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'WorkItem':
        """Create WorkItem from dictionary."""
        return cls(
            url=data['url'],
            depth=data.get('depth', 0),
            retry_count=data.get('retry_count', 0),
            parent_url=data.get('parent_url'),
            discovered_time=data.get('discovered_time', time.time())
        )


class FrontierQueue:
    """
    Unbounded FIFO of pending work items shared by all fetch workers.

    Every push increments `pending` before the item becomes visible and
    every `task_done()` decrements it, all under one condition lock. When
    `pending` drops to zero with nothing queued, no worker can produce more
    work: the frontier is drained and blocked consumers are released with
    QueueClosed. `close()` stops pushes; once closed with nothing pending,
    the done event fires exactly once.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

        self._items: Deque[WorkItem] = deque()
        self._pending = 0
        self._closed = False
        self._drained = False
        self._cond = asyncio.Condition()
        self._done = asyncio.Event()

        # Statistics
        self.stats = {
            'pushed': 0,
            'popped': 0,
            'completed': 0
        }

    @property
    def pending(self) -> int:
        """Items pushed but not yet finished with task_done()."""
        return self._pending

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def drained(self) -> bool:
        return self._drained

    @property
    def is_done(self) -> bool:
        return self._done.is_set()

    def qsize(self) -> int:
        return len(self._items)

    def empty(self) -> bool:
        return not self._items

    async def push(self, item: WorkItem):
        """Append an item. Raises QueueClosed once the frontier is closed or drained."""
        async with self._cond:
            if self._closed:
                raise QueueClosed(f"Frontier is closed, dropping {item.url}")
            if self._drained:
                raise QueueClosed(f"Frontier is drained, dropping {item.url}")

            self._pending += 1
            self._items.append(item)
            self.stats['pushed'] += 1
            self._cond.notify()

        self.logger.debug(f"Queued {item.url} (depth={item.depth}, retry={item.retry_count})")

    async def pop(self, token: CancelToken) -> WorkItem:
        """
        Take the next item, waiting until one is available.

        Raises:
            QueueClosed: the frontier is closed or drained and has nothing left
            Cancelled: the token fired while waiting
        """
        async with self._cond:
            while True:
                if self._items:
                    item = self._items.popleft()
                    self.stats['popped'] += 1
                    return item

                if self._closed or self._drained:
                    raise QueueClosed("Frontier has no more work")

                if token.cancelled:
                    raise Cancelled(token.reason or "cancelled")

                await token.run(self._cond.wait())

    async def task_done(self):
        """Mark a popped item as fully handled, successfully or not."""
        async with self._cond:
            if self._pending <= 0:
                raise ValueError("task_done() called more times than items were pushed")

            self._pending -= 1
            self.stats['completed'] += 1

            if self._pending == 0 and not self._items:
                if not self._drained:
                    self._drained = True
                    self.logger.debug("Frontier drained")
                    self._cond.notify_all()
                self._check_done()

    async def close(self):
        """Refuse further pushes; queued items can still be popped."""
        async with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
            self._check_done()

        self.logger.debug(f"Frontier closed with {self._pending} pending item(s)")

    def _check_done(self):
        # Caller holds the condition lock
        if self._closed and self._pending == 0 and not self._done.is_set():
            self._done.set()
            self.logger.debug("Frontier done")

    def done(self) -> asyncio.Event:
        """Event set once the frontier is closed and fully drained."""
        return self._done

    async def wait_done(self):
        await self._done.wait()

    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        return {
            'queued': len(self._items),
            'pending': self._pending,
            'in_progress': self._pending - len(self._items),
            **self.stats
        }
