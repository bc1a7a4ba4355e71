"""
Crawl coordinator: owns the worker pool, the visited set and the
cancellation context, and decides how a crawl ends.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .context import CancelToken
from .fetcher import Fetcher, RobotsChecker, RobotsPolicy, WebFetcher
from .parser import HtmlLinkExtractor, LinkExtractor
from .url_frontier import FrontierQueue, WorkItem
from .validator import get_host, parse_start_url
from .worker import FetchWorker
from ..errors import Cancelled
from ..storage.visited import VisitedSet
from ..utils.config import CrawlConfiguration
from ..utils.monitoring import CrawlerMonitor


class CrawlState(Enum):
    """Lifecycle of a crawl run."""
    IDLE = 'idle'
    SEEDED = 'seeded'
    RUNNING = 'running'
    DRAINING = 'draining'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    FAILED = 'failed'


class CrawlOutcome(Enum):
    """How a crawl run ended."""
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    FAILED = 'failed'


@dataclass
class CrawlResult:
    """Summary of a finished crawl."""
    start_url: str
    visited_urls: FrozenSet[str] = field(default_factory=frozenset)
    error_count: int = 0
    duration: float = 0.0
    outcome: CrawlOutcome = CrawlOutcome.COMPLETED
    cancel_reason: Optional[str] = None
    fetches: int = 0
    retries: int = 0
    robots_denied: int = 0

    @property
    def visited_count(self) -> int:
        return len(self.visited_urls)

    def summary(self) -> Dict[str, Any]:
        return {
            'start_url': self.start_url,
            'outcome': self.outcome.value,
            'visited': self.visited_count,
            'errors': self.error_count,
            'duration_seconds': round(self.duration, 3),
            'fetches': self.fetches,
            'retries': self.retries,
            'robots_denied': self.robots_denied,
            'cancel_reason': self.cancel_reason
        }


class CrawlCoordinator:
    """
    Runs one crawl at a time with a fixed pool of fetch workers.

    The crawl ends with whichever comes first: the frontier reports done
    (every worker exited and nothing is pending), a worker fails with an
    unexpected error, or the cancel token fires (timeout or caller).
    Per-URL failures are counted in the result and never end the crawl.
    """

    def __init__(self, config: CrawlConfiguration,
                 fetcher: Optional[Fetcher] = None,
                 extractor: Optional[LinkExtractor] = None,
                 robots: Optional[RobotsPolicy] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.fetcher = fetcher
        self.extractor = extractor or HtmlLinkExtractor()
        self.robots = robots
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

        self.state = CrawlState.IDLE
        self.last_result: Optional[CrawlResult] = None
        self.workers: List[FetchWorker] = []

        self._error_lock: Optional[asyncio.Lock] = None
        self._error_count = 0
        self._active_workers = 0
        self._failure: Optional[asyncio.Future] = None

    def _set_state(self, state: CrawlState):
        if state is not self.state:
            self.logger.debug(f"Crawl state {self.state.value} -> {state.value}")
            self.state = state

    async def record_error(self, item: WorkItem, error: Exception):
        """Count a per-URL failure. Never aborts the crawl."""
        async with self._error_lock:
            self._error_count += 1

        self.logger.warning(f"Crawl error for {item.url}: {error}")
        if self.monitor:
            self.monitor.record_error(item.url)

    @property
    def error_count(self) -> int:
        return self._error_count

    async def start(self, start_url: str, token: Optional[CancelToken] = None) -> CrawlResult:
        """
        Crawl from `start_url` and return the result summary.

        Args:
            start_url: First URL to fetch, at depth 0
            token: Optional caller token; firing it cancels the crawl

        Raises:
            InvalidStartURL: start_url is not a usable http(s) URL
            ConfigurationError: the configuration is invalid
            Exception: whatever a worker failed with (FAILED outcome); the
                partial result is kept in `last_result`
        """
        if self.state not in (CrawlState.IDLE, CrawlState.COMPLETED,
                              CrawlState.CANCELLED, CrawlState.FAILED):
            raise RuntimeError("Crawl already in progress")

        start_url = parse_start_url(start_url)
        config = self.config.validate()

        if not config.allowed_domains:
            config = config.with_allowed_domains({get_host(start_url)})

        self.logger.info(f"Starting crawl of {start_url} "
                         f"(workers={config.worker_count}, max_depth={config.max_depth}, "
                         f"max_retries={config.max_retries}, "
                         f"domains={', '.join(sorted(config.allowed_domains))})")

        # Built per run so each run binds to the loop that executes it
        self._error_lock = asyncio.Lock()
        self._error_count = 0
        self._active_workers = 0
        self._failure = asyncio.get_running_loop().create_future()

        frontier = FrontierQueue()
        visited = VisitedSet()
        await frontier.push(WorkItem(url=start_url, depth=0, retry_count=0))
        self._set_state(CrawlState.SEEDED)

        crawl_token = token.child() if token is not None else CancelToken()
        if config.timeout:
            crawl_token.cancel_after(config.timeout)

        started = time.monotonic()
        outcome = CrawlOutcome.CANCELLED
        failure: Optional[BaseException] = None

        async with contextlib.AsyncExitStack() as stack:
            fetcher, robots = await self._open_collaborators(stack, config)

            self.workers = [
                FetchWorker(
                    worker_id=f"worker-{i}",
                    config=config,
                    frontier=frontier,
                    visited=visited,
                    fetcher=fetcher,
                    extractor=self.extractor,
                    report_error=self.record_error,
                    robots=robots,
                    monitor=self.monitor
                )
                for i in range(config.worker_count)
            ]
            tasks = [
                asyncio.create_task(self._run_worker(worker, crawl_token))
                for worker in self.workers
            ]
            self._set_state(CrawlState.RUNNING)

            joiner = asyncio.create_task(self._join_workers(tasks, frontier, crawl_token))
            done_waiter = asyncio.create_task(frontier.wait_done())
            cancel_waiter = asyncio.create_task(crawl_token.wait())
            reporter = None
            if config.progress_interval > 0:
                reporter = asyncio.create_task(
                    self._report_progress(frontier, visited, crawl_token, config.progress_interval)
                )

            try:
                await asyncio.wait(
                    {done_waiter, cancel_waiter, self._failure},
                    return_when=asyncio.FIRST_COMPLETED
                )
                duration = time.monotonic() - started

                if self._failure.done():
                    outcome = CrawlOutcome.FAILED
                    failure = self._failure.result()
                elif done_waiter.done():
                    outcome = CrawlOutcome.COMPLETED

            except BaseException:
                # Our own task was cancelled (e.g. Ctrl-C)
                self._set_state(CrawlState.CANCELLED)
                raise

            finally:
                # Stop anything still running, then wait for the workers to exit
                crawl_token.cancel("crawl finished")
                for waiter in (done_waiter, cancel_waiter, reporter):
                    if waiter is not None and not waiter.done():
                        waiter.cancel()
                await asyncio.gather(joiner, return_exceptions=True)

        result = CrawlResult(
            start_url=start_url,
            visited_urls=await visited.snapshot(),
            error_count=self._error_count,
            duration=duration,
            outcome=outcome,
            cancel_reason=crawl_token.reason if outcome is CrawlOutcome.CANCELLED else None,
            fetches=sum(w.stats['fetches'] for w in self.workers),
            retries=sum(w.stats['retries'] for w in self.workers),
            robots_denied=sum(w.stats['robots_denied'] for w in self.workers)
        )
        self.last_result = result
        self._set_state(CrawlState(outcome.value))
        self._log_final_stats(result, frontier)

        if failure is not None:
            raise failure
        return result

    async def _open_collaborators(self, stack: contextlib.AsyncExitStack,
                                  config: CrawlConfiguration) -> Tuple[Fetcher, Optional[RobotsPolicy]]:
        """Use the injected fetcher/robots policy, or open default ones for this run."""
        fetcher = self.fetcher
        if fetcher is None:
            fetcher = await stack.enter_async_context(WebFetcher(
                user_agent=config.user_agent,
                request_timeout=config.request_timeout,
                max_concurrent_requests=config.worker_count,
                max_content_size=config.max_content_size
            ))

        robots = None
        if config.respect_robots:
            robots = self.robots
            if robots is None and isinstance(fetcher, WebFetcher):
                robots = fetcher.robots_checker()
            elif robots is None:
                robots = await stack.enter_async_context(
                    RobotsChecker(request_timeout=config.request_timeout)
                )

        return fetcher, robots

    async def _run_worker(self, worker: FetchWorker, token: CancelToken):
        self._active_workers += 1
        if self.monitor:
            self.monitor.update_active_workers(self._active_workers)

        try:
            await worker.run(token)
        except Cancelled as e:
            worker.logger.debug(f"Worker stopped: {e.reason}")
        except Exception as e:
            worker.logger.error(f"Worker failed: {e}", exc_info=True)
            if not self._failure.done():
                self._failure.set_result(e)
            token.cancel("worker failed")
        finally:
            self._active_workers -= 1
            if self.monitor:
                self.monitor.update_active_workers(self._active_workers)

    async def _join_workers(self, tasks: List[asyncio.Task], frontier: FrontierQueue,
                            token: CancelToken):
        """Close the frontier once every worker has exited."""
        try:
            await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            if self.state is CrawlState.RUNNING and not token.cancelled:
                self._set_state(CrawlState.DRAINING)
            await frontier.close()

    async def _report_progress(self, frontier: FrontierQueue, visited: VisitedSet,
                               token: CancelToken, interval: float):
        """Periodically log crawl progress."""
        with contextlib.suppress(Cancelled):
            while True:
                await token.sleep(interval)
                stats = frontier.get_stats()
                if self.monitor:
                    self.monitor.update_queue_size(stats['queued'])
                self.logger.info(
                    f"Crawl Progress: "
                    f"Visited={len(visited)}, "
                    f"Queued={stats['queued']}, "
                    f"InProgress={stats['in_progress']}, "
                    f"Errors={self._error_count}, "
                    f"ActiveWorkers={self._active_workers}"
                )

    def _log_final_stats(self, result: CrawlResult, frontier: FrontierQueue):
        """Log final crawl statistics."""
        self.logger.info(f"=== CRAWL {result.outcome.value.upper()} ===")
        self.logger.info(f"URLs visited: {result.visited_count}")
        self.logger.info(f"Errors: {result.error_count}")
        self.logger.info(f"Retries: {result.retries}")
        self.logger.info(f"Robots denied: {result.robots_denied}")
        self.logger.info(f"Total time: {result.duration:.2f} seconds")
        if result.cancel_reason:
            self.logger.info(f"Cancel reason: {result.cancel_reason}")
        self.logger.debug(f"Frontier stats: {frontier.get_stats()}")

    def get_stats(self) -> Dict[str, Any]:
        """Get current crawl statistics."""
        return {
            'state': self.state.value,
            'errors': self._error_count,
            'active_workers': self._active_workers,
            'workers': {w.worker_id: w.get_stats() for w in self.workers}
        }
