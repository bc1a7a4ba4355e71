"""
Cooperative cancellation for crawl tasks.

A CancelToken is passed explicitly into every blocking call made by the
crawler. Firing it wakes everything waiting on it; work that is not
waiting notices it at the next check.
"""

import asyncio
import contextlib
import logging
from typing import Awaitable, List, Optional, TypeVar

from ..errors import Cancelled

T = TypeVar('T')


class CancelToken:
    """Broadcast cancellation signal with an optional deadline."""

    def __init__(self, parent: Optional['CancelToken'] = None):
        self.logger = logging.getLogger(__name__)
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._children: List['CancelToken'] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._parent = parent

        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled"):
        """Fire the token. Only the first reason is kept."""
        if self._event.is_set():
            return

        self._reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        self.logger.debug(f"Cancel token fired: {reason}")
        for child in list(self._children):
            child.cancel(reason)

        # A fired child needs nothing more from its parent
        if self._parent is not None:
            with contextlib.suppress(ValueError):
                self._parent._children.remove(self)
            self._parent = None

    def cancel_after(self, delay: float):
        """Fire the token with reason "timeout" after `delay` seconds."""
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self.cancel, "timeout")

    def child(self) -> 'CancelToken':
        """Create a token that fires whenever this one does."""
        return CancelToken(parent=self)

    def raise_if_cancelled(self):
        if self.cancelled:
            raise Cancelled(self._reason or "cancelled")

    async def wait(self):
        await self._event.wait()

    async def run(self, aw: Awaitable[T]) -> T:
        """
        Await `aw` unless the token fires first.

        When the token wins, `aw` is cancelled and Cancelled is raised. If
        both finish together the result of `aw` is returned.
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not waiter.done():
                waiter.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if task.cancelled():
            raise Cancelled(self._reason or "cancelled")
        return task.result()

    async def sleep(self, delay: float):
        """Sleep for `delay` seconds, raising Cancelled as soon as the token fires."""
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise Cancelled(self._reason or "cancelled")
