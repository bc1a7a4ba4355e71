"""
Shared fakes for crawler tests.

FakeFetcher serves an in-memory site where each page's content is its list
of links, one per line; LineExtractor reads them back.
"""

import asyncio
import contextlib
from collections import Counter
from typing import Dict, Iterable, Iterator, List, Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from webcrawler.crawler.fetcher import FetchResult
from webcrawler.utils.config import CrawlConfiguration


class FakeFetcher:
    """In-memory fetcher with per-URL transient failures and optional delays."""

    def __init__(self, pages: Dict[str, List[str]], failures: Optional[Dict[str, int]] = None,
                 delay: float = 0.0, delays: Optional[Dict[str, float]] = None):
        self.pages = pages
        self.failures = dict(failures or {})
        self.delay = delay
        self.delays = dict(delays or {})
        self.calls: Counter = Counter()
        self.active = 0
        self.max_active = 0

    async def fetch(self, url: str) -> FetchResult:
        self.calls[url] += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            delay = self.delays.get(url, self.delay)
            if delay:
                await asyncio.sleep(delay)

            if self.failures.get(url, 0) > 0:
                self.failures[url] -= 1
                return FetchResult(url=url, status_code=503, error="HTTP 503")

            if url not in self.pages:
                return FetchResult(url=url, status_code=404, error="HTTP 404")

            return FetchResult(
                url=url,
                status_code=200,
                content="\n".join(self.pages[url]),
                content_type='text/html'
            )
        finally:
            self.active -= 1


class LineExtractor:
    def extract(self, url: str, content: str) -> Iterator[str]:
        for line in content.splitlines():
            if line.strip():
                yield line.strip()


class FakeRobots:
    def __init__(self, denied: Iterable[str] = ()):
        self.denied = set(denied)
        self.checked: List[str] = []

    async def can_fetch(self, url: str, user_agent: str) -> bool:
        self.checked.append(url)
        return url not in self.denied


@contextlib.asynccontextmanager
async def serve(app: web.Application):
    """Run an aiohttp app on a local port for the duration of the block."""
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


def page_url(path: str) -> str:
    return f"http://example.com{path}"


@pytest.fixture
def config() -> CrawlConfiguration:
    return CrawlConfiguration(
        worker_count=3,
        max_depth=2,
        max_retries=2,
        per_request_delay=0.0,
        timeout=10,
        progress_interval=0
    )
