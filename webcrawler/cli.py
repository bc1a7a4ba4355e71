"""
Command line interface for the web crawler.
"""

import asyncio
import argparse
import logging
import signal
import sys
from typing import List, Optional

from . import __version__
from .crawler.context import CancelToken
from .crawler.scheduler import CrawlCoordinator, CrawlResult
from .errors import ConfigurationError, InvalidStartURL
from .utils.config import Config, load_config
from .utils.logger import log_system_info, setup_logging
from .utils.monitoring import CrawlerMonitor, initialize_monitoring

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


class CrawlerApp:
    """Main application class for the web crawler."""

    def __init__(self):
        self.coordinator: Optional[CrawlCoordinator] = None
        self.monitor: Optional[CrawlerMonitor] = None
        self.logger = logging.getLogger(__name__)
        self._token: Optional[CancelToken] = None

    def setup_logging(self, config: Config):
        """Setup logging configuration."""
        setup_logging(
            {
                'level': config.logging.level,
                'file': config.logging.file,
                'format': config.logging.format,
            },
            enable_json=config.logging.json
        )
        log_system_info()

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            self._token.cancel("interrupted")

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform/loop; Ctrl-C still raises KeyboardInterrupt
                pass

    async def run(self, start_url: str, config: Config) -> int:
        """Run the web crawler."""
        self._token = CancelToken()
        self.setup_signal_handlers()

        crawler = config.crawler
        self.logger.info("=== WEB CRAWLER STARTING ===")
        self.logger.info(f"Start URL: {start_url}")
        self.logger.info(f"Workers: {crawler.worker_count}")
        self.logger.info(f"Max depth: {crawler.max_depth}")
        self.logger.info(f"Max retries: {crawler.max_retries}")
        self.logger.info(f"Per-request delay: {crawler.per_request_delay}s")
        self.logger.info(f"Timeout: {crawler.timeout or 'none'}")
        self.logger.info(f"Respect robots.txt: {crawler.respect_robots}")

        if config.monitoring.metrics_enabled or config.monitoring.prometheus_port:
            self.monitor = initialize_monitoring(config.monitoring.prometheus_port)

        self.coordinator = CrawlCoordinator(crawler, monitor=self.monitor)

        try:
            result = await self.coordinator.start(start_url, self._token)

        except InvalidStartURL as e:
            self.logger.error(str(e))
            return EXIT_ERROR

        except ConfigurationError as e:
            self.logger.error(f"Configuration error: {e}")
            return EXIT_ERROR

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return EXIT_ERROR

        finally:
            self.logger.info("=== WEB CRAWLER FINISHED ===")

        self.print_summary(result)
        return EXIT_OK

    def print_summary(self, result: CrawlResult):
        print(f"Outcome:  {result.outcome.value}"
              + (f" ({result.cancel_reason})" if result.cancel_reason else ""))
        print(f"Visited:  {result.visited_count}")
        print(f"Errors:   {result.error_count}")
        print(f"Duration: {result.duration:.2f}s")


def _comma_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='webcrawler',
        description="Bounded-concurrency, depth-limited web crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  webcrawler https://example.com/                      # Crawl with defaults
  webcrawler https://example.com/ --workers 8 --depth 3
  webcrawler https://example.com/ --timeout 60 --delay 0.5 --respect-robots
  webcrawler https://example.com/ --domains example.com,docs.example.com
  webcrawler https://example.com/ --config crawler.yaml
        """
    )

    parser.add_argument('start_url', help='URL to start crawling from')
    parser.add_argument('--workers', type=int, help='Number of concurrent fetch workers')
    parser.add_argument('--depth', type=int, help='Maximum link depth from the start URL')
    parser.add_argument('--retries', type=int, help='Retries per URL after a failed fetch')
    parser.add_argument('--timeout', type=float, help='Overall crawl timeout in seconds')
    parser.add_argument('--respect-robots', action='store_true', default=None,
                        help='Skip URLs disallowed by robots.txt')
    parser.add_argument('--domains', type=_comma_list,
                        help='Comma separated allowed domains (default: start URL host)')
    parser.add_argument('--delay', type=float, help='Delay in seconds between fetches per worker')
    parser.add_argument('--user-agent', help='User-Agent header to send')
    parser.add_argument('--config', help='Path to a YAML configuration file')
    parser.add_argument('--log-level', help='Log level (DEBUG, INFO, WARNING, ...)')
    parser.add_argument('--log-file', help='Also write logs to this file')
    parser.add_argument('--json-logs', action='store_true', default=None,
                        help='Emit logs as JSON lines')
    parser.add_argument('--metrics-port', type=int,
                        help='Expose Prometheus metrics on this port')
    parser.add_argument('--version', action='version',
                        version=f'Web Crawler System {__version__}')
    return parser


def config_overrides(args: argparse.Namespace) -> dict:
    """Map command line flags onto configuration sections."""
    return {
        'crawler': {
            'worker_count': args.workers,
            'max_depth': args.depth,
            'max_retries': args.retries,
            'timeout': args.timeout,
            'respect_robots': args.respect_robots,
            'allowed_domains': args.domains,
            'per_request_delay': args.delay,
            'user_agent': args.user_agent,
        },
        'logging': {
            'level': args.log_level,
            'file': args.log_file,
            'json': args.json_logs,
        },
        'monitoring': {
            'prometheus_port': args.metrics_port,
        },
    }


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, config_overrides(args))
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    app = CrawlerApp()
    app.setup_logging(config)

    try:
        return asyncio.run(app.run(args.start_url, config))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
