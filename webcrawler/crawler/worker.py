"""
Fetch worker: one sequential loop that pops work items, fetches them and
feeds discovered links back into the frontier.
"""

from typing import Awaitable, Callable, Dict, Optional

from .context import CancelToken
from .fetcher import FetchResult, Fetcher, RobotsPolicy
from .parser import LinkExtractor
from .url_frontier import FrontierQueue, WorkItem
from .validator import is_allowed_domain, is_eligible, normalize_url
from ..errors import (
    Cancelled, ConfigurationError, FetchError, QueueClosed, RetriesExhausted, RobotsDenied
)
from ..storage.visited import VisitedSet
from ..utils.config import CrawlConfiguration
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor

ErrorReporter = Callable[[WorkItem, Exception], Awaitable[None]]


class FetchWorker:
    """
    Processes work items until the frontier drains or the token fires.

    For each item the worker claims the URL, checks robots.txt (if a policy
    is given), fetches it, and on success queues every eligible, allowed,
    unseen link one level deeper. Failed fetches are re-queued until
    max_retries is used up, then handed to `report_error`.
    """

    def __init__(self, worker_id: str, config: CrawlConfiguration,
                 frontier: FrontierQueue, visited: VisitedSet,
                 fetcher: Fetcher, extractor: LinkExtractor,
                 report_error: ErrorReporter,
                 robots: Optional[RobotsPolicy] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.worker_id = worker_id
        self.config = config
        self.frontier = frontier
        self.visited = visited
        self.fetcher = fetcher
        self.extractor = extractor
        self.report_error = report_error
        self.robots = robots
        self.monitor = monitor
        self.logger = get_crawler_logger(__name__, worker=worker_id)

        # Only this worker's task writes these
        self.stats = {
            'fetches': 0,
            'succeeded': 0,
            'failed': 0,
            'retries': 0,
            'duplicates_skipped': 0,
            'robots_denied': 0,
            'links_queued': 0
        }

    async def run(self, token: CancelToken):
        """
        Work until the frontier has nothing left.

        Returns normally once the frontier is drained or closed. Raises
        Cancelled when the token fires.
        """
        self.logger.debug("Worker started")

        while True:
            token.raise_if_cancelled()

            try:
                item = await self.frontier.pop(token)
            except QueueClosed:
                self.logger.debug("Frontier exhausted, worker exiting")
                return

            try:
                fetched = await self._process(item, token)
            finally:
                await self.frontier.task_done()

            if fetched:
                await token.sleep(self.config.per_request_delay)

    async def _process(self, item: WorkItem, token: CancelToken) -> bool:
        """Handle one work item. Returns True if a fetch was issued."""
        url = item.url

        # Another parent may have queued the same URL before either was fetched
        if not await self.visited.claim(url, retry=item.retry_count > 0):
            self.stats['duplicates_skipped'] += 1
            self.logger.debug(f"Skipping already seen URL: {url}")
            return False

        try:
            if not await self._robots_allow(url, token):
                raise RobotsDenied(url)

            result = await self._fetch(url, token)

        except RobotsDenied as e:
            await self.visited.mark_skipped(url)
            self.stats['robots_denied'] += 1
            if self.monitor:
                self.monitor.record_robots_denied(url)
            self.logger.info(str(e))
            return False

        except BaseException:
            await self.visited.release(url)
            raise

        self.stats['fetches'] += 1
        if self.monitor:
            self.monitor.record_fetch(url, result.status_code, result.fetch_time, result.ok)

        if result.ok:
            self.stats['succeeded'] += 1
            await self.visited.mark_visited(url)
            self.logger.debug(f"Fetched {url} (depth={item.depth}, status={result.status_code})")
            await self._queue_links(item, result, token)
        else:
            self.stats['failed'] += 1
            await self._handle_failure(
                item, FetchError(url, result.status_code, result.error)
            )

        return True

    async def _robots_allow(self, url: str, token: CancelToken) -> bool:
        if self.robots is None:
            return True
        try:
            return await token.run(self.robots.can_fetch(url, self.config.user_agent))
        except (Cancelled, ConfigurationError):
            raise
        except Exception as e:
            # If there's an error, allow by default
            self.logger.warning(f"Error checking robots.txt for {url}: {e}")
            return True

    async def _fetch(self, url: str, token: CancelToken) -> FetchResult:
        try:
            return await token.run(self.fetcher.fetch(url))
        except (Cancelled, ConfigurationError):
            raise
        except Exception as e:
            # A fetcher that raises instead of returning an error result
            self.logger.debug(f"Fetcher raised for {url}: {e!r}")
            return FetchResult(url=url, status_code=0, error=str(e) or type(e).__name__)

    async def _handle_failure(self, item: WorkItem, error: FetchError):
        """Re-queue a failed item, or report it once retries are used up."""
        if item.retry_count < self.config.max_retries:
            retry = item.retry()
            # Rediscovered copies of the URL stay duplicates until the retry runs
            await self.visited.hold_for_retry(item.url)
            await self.frontier.push(retry)
            self.stats['retries'] += 1
            if self.monitor:
                self.monitor.record_retry(item.url)
            self.logger.info(
                f"Retrying URL ({retry.retry_count}/{self.config.max_retries}): "
                f"{item.url} ({error.message})"
            )
        else:
            await self.visited.mark_failed(item.url)
            await self.report_error(
                item, RetriesExhausted(item.url, item.retry_count + 1, error)
            )

    async def _queue_links(self, item: WorkItem, result: FetchResult, token: CancelToken):
        """Queue the links of a fetched page one level deeper."""
        # Links found at max_depth would land beyond it
        if item.depth >= self.config.max_depth or not result.content:
            return

        queued = set()
        try:
            for link in self.extractor.extract(item.url, result.content):
                token.raise_if_cancelled()

                if not is_eligible(link):
                    continue

                link = normalize_url(link)
                if link in queued or not is_allowed_domain(link, self.config.allowed_domains):
                    continue

                if await self.visited.seen(link):
                    continue

                await self.frontier.push(item.child(link))
                queued.add(link)

        except (Cancelled, ConfigurationError, QueueClosed):
            raise
        except Exception as e:
            # The page itself was fetched; only its links are lost
            self.logger.error(f"Link extraction failed for {item.url}: {e}", exc_info=True)
            await self.report_error(item, e)

        self.stats['links_queued'] += len(queued)
        if queued:
            self.logger.debug(f"Queued {len(queued)} new URLs from {item.url}")

    def get_stats(self) -> Dict[str, int]:
        return self.stats.copy()
