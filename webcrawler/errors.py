"""
Exception hierarchy for the crawler.

Fatal errors (InvalidStartURL, ConfigurationError) abort a crawl before or
during the run. QueueClosed and Cancelled are control-flow signals. The
remaining errors describe the fate of a single URL and never abort a crawl.
"""

from typing import Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""
    pass


class InvalidStartURL(CrawlerError):
    """The start URL could not be parsed or is not an http(s) URL."""

    def __init__(self, url: str, reason: str = "unparseable URL"):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid start URL {url!r}: {reason}")


class ConfigurationError(CrawlerError):
    """Configuration values are missing or out of range."""
    pass


class QueueClosed(CrawlerError):
    """The frontier accepts no more pushes, or has nothing left to pop."""
    pass


class Cancelled(CrawlerError):
    """The shared cancel token fired (timeout or explicit cancellation)."""

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Crawl cancelled: {reason}")


class FetchError(CrawlerError):
    """A transport error or non-2xx response. Retryable."""

    def __init__(self, url: str, status_code: int = 0, message: Optional[str] = None):
        self.url = url
        self.status_code = status_code
        self.message = message or f"HTTP {status_code}"
        super().__init__(f"Failed to fetch {url}: {self.message}")


class RetriesExhausted(CrawlerError):
    """A URL failed on every allowed attempt."""

    def __init__(self, url: str, attempts: int, last_error: Optional[FetchError] = None):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Giving up on {url} after {attempts} attempt(s): {last_error}")


class RobotsDenied(CrawlerError):
    """robots.txt disallows the URL for our user agent."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Blocked by robots.txt: {url}")
