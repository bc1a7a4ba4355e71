"""
Web page fetcher and robots.txt policy, built on aiohttp.
"""

import asyncio
import aiohttp
import logging
import time
from typing import Dict, Optional, Protocol
from urllib.parse import urljoin, urlparse
from urllib.robotparser import RobotFileParser
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    content: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    error: Optional[str] = None
    fetch_time: float = 0.0
    content_type: Optional[str] = None
    encoding: Optional[str] = None

    @property
    def ok(self) -> bool:
        """True for a 2xx response without a transport error."""
        return self.error is None and 200 <= self.status_code < 300


class Fetcher(Protocol):
    """Anything that can fetch a URL. Errors are reported in the result, not raised."""

    async def fetch(self, url: str) -> FetchResult:
        ...


class RobotsPolicy(Protocol):
    """Allow/deny decision for a URL and user agent."""

    async def can_fetch(self, url: str, user_agent: str) -> bool:
        ...


class RobotsChecker:
    """Manages robots.txt checking for domains."""

    def __init__(self, session: Optional[ClientSession] = None,
                 cache_ttl: float = 3600, request_timeout: float = 10):
        self.session = session
        self._owns_session = session is None
        self.robots_cache: Dict[str, RobotFileParser] = {}
        self.robots_check_time: Dict[str, float] = {}
        self.cache_ttl = cache_ttl
        self.request_timeout = request_timeout
        self.logger = logging.getLogger(__name__)

        # One robots.txt download per origin even with many workers asking
        self._locks: Dict[str, asyncio.Lock] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None

    def _get_origin(self, url: str) -> str:
        """Extract scheme://host[:port] from URL."""
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    async def can_fetch(self, url: str, user_agent: str) -> bool:
        """Check if URL can be fetched according to robots.txt."""
        origin = self._get_origin(url)
        lock = self._locks.setdefault(origin, asyncio.Lock())

        async with lock:
            current_time = time.time()
            rp = self.robots_cache.get(origin)

            # Refresh robots.txt if missing or expired
            if (rp is None or
                    current_time - self.robots_check_time.get(origin, 0) >= self.cache_ttl):
                rp = await self._load_robots(origin)
                if rp is None:
                    return True
                self.robots_cache[origin] = rp
                self.robots_check_time[origin] = current_time

        return rp.can_fetch(user_agent, url)

    async def _load_robots(self, origin: str) -> Optional[RobotFileParser]:
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True

        robots_url = urljoin(origin, '/robots.txt')
        rp = RobotFileParser()
        rp.set_url(robots_url)

        try:
            timeout = ClientTimeout(total=self.request_timeout)
            async with self.session.get(robots_url, timeout=timeout) as response:
                if response.status == 200:
                    rp.parse((await response.text()).splitlines())
                elif response.status in (401, 403):
                    # Same reading as urllib.robotparser: access-restricted robots.txt denies all
                    rp.disallow_all = True
                else:
                    # If robots.txt doesn't exist, allow all
                    rp.parse([])
            return rp

        except (ClientError, asyncio.TimeoutError) as e:
            # If we can't fetch robots.txt, allow by default and retry next time
            self.logger.warning(f"Could not fetch robots.txt for {origin}: {e}")
            return None


class WebFetcher:
    """
    Fetches web pages over a shared aiohttp session.
    """

    def __init__(self, user_agent: str, request_timeout: float = 30,
                 max_concurrent_requests: int = 10,
                 max_content_size: int = 10 * 1024 * 1024):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.max_content_size = max_content_size

        self.logger = logging.getLogger(__name__)

        # Session management
        self.session: Optional[ClientSession] = None

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_concurrent_requests * 2,
                    limit_per_host=self.max_concurrent_requests,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    def robots_checker(self, cache_ttl: float = 3600) -> RobotsChecker:
        """A robots.txt checker sharing this fetcher's session."""
        if self.session is None:
            raise RuntimeError("WebFetcher.start() must be called first")
        return RobotsChecker(self.session, cache_ttl=cache_ttl,
                             request_timeout=self.request_timeout)

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult object containing the response data or error information
        """
        if self.session is None:
            await self.start()

        start_time = time.time()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url) as response:
                headers = dict(response.headers)
                content_type = response.headers.get('content-type', '').lower()

                if not 200 <= response.status < 300:
                    self.stats['failed_requests'] += 1
                    self.logger.debug(f"HTTP {response.status} for {url}")
                    return FetchResult(
                        url=url,
                        status_code=response.status,
                        headers=headers,
                        content_type=content_type,
                        error=f"HTTP {response.status}",
                        fetch_time=time.time() - start_time
                    )

                # Non-text pages are fetched but yield no links
                content = None
                if self._is_text_content(content_type):
                    content = await self._read_content_safely(response)
                else:
                    self.logger.debug(f"Skipping body of non-text content: {url} ({content_type})")

                if content:
                    self.stats['total_bytes_downloaded'] += len(content)
                self.stats['successful_requests'] += 1

                result = FetchResult(
                    url=url,
                    status_code=response.status,
                    content=content,
                    headers=headers,
                    content_type=content_type,
                    encoding=response.charset,
                    fetch_time=time.time() - start_time
                )

                self.logger.debug(f"Fetched {url}: {response.status} ({len(content) if content else 0} bytes)")
                return result

        except asyncio.TimeoutError:
            error_msg = "Request timeout"
            self.logger.warning(f"Timeout fetching {url}")

        except ClientError as e:
            error_msg = f"Client error: {str(e)}"
            self.logger.warning(f"Client error fetching {url}: {e}")

        except ValueError as e:
            # aiohttp raises ValueError/InvalidURL for URLs it cannot request
            error_msg = f"Invalid URL: {str(e)}"
            self.logger.warning(f"Cannot request {url}: {e}")

        self.stats['failed_requests'] += 1
        return FetchResult(
            url=url,
            status_code=0,
            error=error_msg,
            fetch_time=time.time() - start_time
        )

    def _is_text_content(self, content_type: str) -> bool:
        """Check if content type is text-based."""
        text_types = [
            'text/html',
            'text/plain',
            'text/xml',
            'application/xml',
            'application/xhtml+xml'
        ]

        return any(text_type in content_type for text_type in text_types)

    async def _read_content_safely(self, response) -> Optional[str]:
        """
        Read the response body, giving up past max_content_size.

        Returns:
            Content string or None if too large
        """
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_size:
            self.logger.warning(f"Content too large ({content_length} bytes): {response.url}")
            return None

        # Read content in chunks to respect size limit
        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            chunks.append(chunk)
            size += len(chunk)
            if size > self.max_content_size:
                self.logger.warning(f"Content exceeded size limit during reading: {response.url}")
                return None
        content_bytes = b''.join(chunks)

        # Decode content
        encoding = response.charset or 'utf-8'
        try:
            return content_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            # Try common encodings
            for fallback_encoding in ['utf-8', 'cp1252']:
                try:
                    return content_bytes.decode(fallback_encoding)
                except UnicodeDecodeError:
                    continue

            # If all else fails, decode with errors ignored
            return content_bytes.decode('utf-8', errors='ignore')

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
