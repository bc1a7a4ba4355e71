"""
Web crawler core components.
"""

from .context import CancelToken
from .url_frontier import FrontierQueue, WorkItem
from .fetcher import WebFetcher, FetchResult, RobotsChecker
from .parser import HtmlLinkExtractor, LinkExtractor
from .validator import is_eligible, normalize_url
from .worker import FetchWorker
from .scheduler import CrawlCoordinator, CrawlResult, CrawlOutcome, CrawlState

__all__ = [
    'CancelToken',
    'FrontierQueue', 'WorkItem',
    'WebFetcher', 'FetchResult', 'RobotsChecker',
    'HtmlLinkExtractor', 'LinkExtractor',
    'is_eligible', 'normalize_url',
    'FetchWorker',
    'CrawlCoordinator', 'CrawlResult', 'CrawlOutcome', 'CrawlState'
]
