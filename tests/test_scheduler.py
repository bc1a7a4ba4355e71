"""
End-to-end crawl behaviour against an in-memory site.
"""

import asyncio
import time
from dataclasses import replace

import pytest

from webcrawler.crawler.context import CancelToken
from webcrawler.crawler.scheduler import CrawlCoordinator, CrawlOutcome, CrawlState
from webcrawler.errors import ConfigurationError, InvalidStartURL
from webcrawler.utils.monitoring import CrawlerMonitor

from conftest import FakeFetcher, FakeRobots, LineExtractor, page_url

A, B, C, D = (page_url(p) for p in ("/a", "/b", "/c", "/d"))


def make_coordinator(config, fetcher, **kwargs):
    return CrawlCoordinator(config, fetcher=fetcher, extractor=LineExtractor(), **kwargs)


@pytest.mark.asyncio
async def test_back_links_and_depth_bound(config):
    fetcher = FakeFetcher({A: [B, C], B: [A, D], C: [], D: []})
    coordinator = make_coordinator(replace(config, max_depth=1), fetcher)

    result = await coordinator.start(A)

    assert result.outcome is CrawlOutcome.COMPLETED
    assert result.visited_urls == {A, B, C}
    assert fetcher.calls[A] == 1
    assert fetcher.calls[D] == 0
    assert result.error_count == 0
    assert coordinator.state is CrawlState.COMPLETED


@pytest.mark.asyncio
async def test_each_url_fetched_once_however_often_linked(config):
    pages = {
        A: [B, C, D],
        B: [C, D, A],
        C: [D, B, A],
        D: [A, B, C],
    }
    fetcher = FakeFetcher(pages, delay=0.01)
    coordinator = make_coordinator(replace(config, worker_count=4, max_depth=5), fetcher)

    result = await coordinator.start(A)

    assert result.visited_urls == {A, B, C, D}
    assert all(count == 1 for count in fetcher.calls.values())
    assert result.fetches == 4


@pytest.mark.asyncio
async def test_chain_stops_at_max_depth(config):
    E = page_url("/e")
    fetcher = FakeFetcher({A: [B], B: [C], C: [D], D: [E], E: []})
    coordinator = make_coordinator(replace(config, max_depth=2), fetcher)

    result = await coordinator.start(A)

    assert result.visited_urls == {A, B, C}
    assert set(fetcher.calls) == {A, B, C}


@pytest.mark.asyncio
async def test_zero_depth_fetches_only_the_start_url(config):
    fetcher = FakeFetcher({A: [B, C]})
    coordinator = make_coordinator(replace(config, max_depth=0), fetcher)

    result = await coordinator.start(A)

    assert result.visited_urls == {A}


@pytest.mark.asyncio
async def test_transient_failures_then_success_is_not_an_error(config):
    fetcher = FakeFetcher({A: [B], B: []}, failures={B: 2})
    coordinator = make_coordinator(replace(config, max_retries=2), fetcher)

    result = await coordinator.start(A)

    assert result.visited_urls == {A, B}
    assert fetcher.calls[B] == 3
    assert result.error_count == 0
    assert result.retries == 2


@pytest.mark.asyncio
async def test_retries_are_bounded_and_counted_once(config):
    fetcher = FakeFetcher({A: [B, C], C: []}, failures={B: 100})
    coordinator = make_coordinator(replace(config, max_retries=2), fetcher)

    result = await coordinator.start(A)

    assert result.outcome is CrawlOutcome.COMPLETED
    assert fetcher.calls[B] == 3
    assert result.error_count == 1
    assert result.visited_urls == {A, C}


@pytest.mark.parametrize("slow_page_delay", [0.01, 0.2])
@pytest.mark.asyncio
async def test_rediscovered_failing_url_keeps_one_retry_chain(config, slow_page_delay):
    X = page_url("/x")
    # C links back to X while X is waiting for its retry (fast C) or after
    # X has already used up its retries (slow C)
    fetcher = FakeFetcher({A: [X, C], C: [X]}, failures={X: 100},
                          delays={C: slow_page_delay})
    coordinator = make_coordinator(
        replace(config, worker_count=2, max_retries=1, per_request_delay=0.03), fetcher
    )

    result = await coordinator.start(A)

    assert result.outcome is CrawlOutcome.COMPLETED
    assert fetcher.calls[X] == 2
    assert result.error_count == 1
    assert result.visited_urls == {A, C}


@pytest.mark.asyncio
async def test_missing_page_counts_as_error_without_aborting(config):
    fetcher = FakeFetcher({A: [B, C], C: []})
    coordinator = make_coordinator(replace(config, max_retries=0), fetcher)

    result = await coordinator.start(A)

    assert result.outcome is CrawlOutcome.COMPLETED
    assert fetcher.calls[B] == 1
    assert result.error_count == 1


@pytest.mark.asyncio
async def test_failing_start_url_completes_with_error(config):
    fetcher = FakeFetcher({})
    coordinator = make_coordinator(replace(config, max_retries=1), fetcher)

    result = await coordinator.start(A)

    assert result.outcome is CrawlOutcome.COMPLETED
    assert result.visited_urls == frozenset()
    assert result.error_count == 1
    assert fetcher.calls[A] == 2


@pytest.mark.asyncio
async def test_timeout_mid_fetch_returns_partial_result(config):
    fetcher = FakeFetcher({A: [B], B: []}, delay=5)
    coordinator = make_coordinator(replace(config, worker_count=1, timeout=0.2), fetcher)

    started = time.monotonic()
    result = await asyncio.wait_for(coordinator.start(A), timeout=3)
    elapsed = time.monotonic() - started

    assert result.outcome is CrawlOutcome.CANCELLED
    assert result.cancel_reason == "timeout"
    assert result.visited_urls == frozenset()
    assert 0.15 <= result.duration < 1.0
    assert elapsed < 2.0
    assert coordinator.state is CrawlState.CANCELLED


@pytest.mark.asyncio
async def test_caller_token_cancels_crawl(config):
    fetcher = FakeFetcher({A: [B], B: []}, delay=5)
    coordinator = make_coordinator(replace(config, timeout=None), fetcher)
    token = CancelToken()
    asyncio.get_running_loop().call_later(0.1, token.cancel, "user stop")

    result = await asyncio.wait_for(coordinator.start(A, token), timeout=3)

    assert result.outcome is CrawlOutcome.CANCELLED
    assert result.cancel_reason == "user stop"


@pytest.mark.asyncio
async def test_no_new_fetches_after_cancellation(config):
    pages = {page_url(f"/{i}"): [page_url(f"/{i + 1}")] for i in range(100)}
    fetcher = FakeFetcher(pages, delay=0.05)
    coordinator = make_coordinator(
        replace(config, worker_count=2, max_depth=100, timeout=0.3), fetcher
    )

    result = await coordinator.start(page_url("/0"))
    calls_at_return = sum(fetcher.calls.values())
    await asyncio.sleep(0.2)

    assert result.outcome is CrawlOutcome.CANCELLED
    assert 0 < result.visited_count < 100
    assert sum(fetcher.calls.values()) == calls_at_return


@pytest.mark.asyncio
async def test_worker_count_bounds_concurrent_fetches(config):
    leaves = [page_url(f"/leaf{i}") for i in range(20)]
    pages = {A: leaves, **{leaf: [] for leaf in leaves}}
    fetcher = FakeFetcher(pages, delay=0.01)
    coordinator = make_coordinator(replace(config, worker_count=3), fetcher)

    result = await coordinator.start(A)

    assert result.visited_count == 21
    assert fetcher.max_active <= 3


@pytest.mark.asyncio
async def test_per_request_delay_paces_each_worker(config):
    fetcher = FakeFetcher({A: [B, C], B: [], C: []})
    coordinator = make_coordinator(
        replace(config, worker_count=1, per_request_delay=0.1), fetcher
    )

    result = await coordinator.start(A)

    assert result.visited_count == 3
    assert result.duration >= 0.2


@pytest.mark.asyncio
async def test_links_outside_start_host_are_not_followed(config):
    outside = "http://other.test/page"
    fetcher = FakeFetcher({A: [B, outside], B: [], outside: []})
    coordinator = make_coordinator(config, fetcher)

    result = await coordinator.start(A)

    assert result.visited_urls == {A, B}
    assert fetcher.calls[outside] == 0


@pytest.mark.asyncio
async def test_configured_domains_replace_the_default(config):
    outside = "http://other.test/page"
    fetcher = FakeFetcher({A: [B, outside], B: [], outside: []})
    coordinator = make_coordinator(
        replace(config, allowed_domains=frozenset({"example.com", "other.test"})), fetcher
    )

    result = await coordinator.start(A)

    assert result.visited_urls == {A, B, outside}


@pytest.mark.asyncio
async def test_ineligible_links_are_ignored(config):
    links = [B + "#section", page_url("/logo.png"), "mailto:me@example.com", C]
    fetcher = FakeFetcher({A: links, C: []})
    coordinator = make_coordinator(config, fetcher)

    result = await coordinator.start(A)

    assert result.visited_urls == {A, C}


@pytest.mark.asyncio
async def test_robots_denial_is_a_skip_not_an_error(config):
    robots = FakeRobots(denied={B})
    fetcher = FakeFetcher({A: [B, C], B: [], C: []})
    coordinator = make_coordinator(replace(config, respect_robots=True), fetcher, robots=robots)

    result = await coordinator.start(A)

    assert result.visited_urls == {A, C}
    assert fetcher.calls[B] == 0
    assert result.robots_denied == 1
    assert result.error_count == 0
    assert B in robots.checked


@pytest.mark.asyncio
async def test_robots_policy_ignored_unless_enabled(config):
    robots = FakeRobots(denied={B})
    fetcher = FakeFetcher({A: [B], B: []})
    coordinator = make_coordinator(config, fetcher, robots=robots)

    result = await coordinator.start(A)

    assert result.visited_urls == {A, B}
    assert robots.checked == []


@pytest.mark.asyncio
async def test_invalid_start_url_fails_fast(config):
    fetcher = FakeFetcher({})
    coordinator = make_coordinator(config, fetcher)

    with pytest.raises(InvalidStartURL):
        await coordinator.start("ftp://example.com/")
    with pytest.raises(InvalidStartURL):
        await coordinator.start("not a url")

    assert sum(fetcher.calls.values()) == 0


@pytest.mark.asyncio
async def test_invalid_configuration_fails_fast(config):
    fetcher = FakeFetcher({A: []})
    coordinator = make_coordinator(replace(config, worker_count=0), fetcher)

    with pytest.raises(ConfigurationError):
        await coordinator.start(A)

    assert fetcher.calls[A] == 0


@pytest.mark.asyncio
async def test_broken_extractor_is_counted_not_fatal(config):
    class BrokenExtractor:
        def extract(self, url, content):
            raise RuntimeError("parser bug")

    fetcher = FakeFetcher({A: [B]})
    coordinator = CrawlCoordinator(config, fetcher=fetcher, extractor=BrokenExtractor())

    result = await coordinator.start(A)

    assert result.outcome is CrawlOutcome.COMPLETED
    assert result.visited_urls == {A}
    assert result.error_count == 1


@pytest.mark.asyncio
async def test_configuration_error_from_worker_fails_crawl(config):
    class MisconfiguredExtractor:
        def extract(self, url, content):
            raise ConfigurationError("extractor not configured")

    fetcher = FakeFetcher({A: [B], B: []})
    coordinator = CrawlCoordinator(config, fetcher=fetcher, extractor=MisconfiguredExtractor())

    with pytest.raises(ConfigurationError):
        await asyncio.wait_for(coordinator.start(A), timeout=3)

    assert coordinator.state is CrawlState.FAILED
    assert coordinator.last_result.outcome is CrawlOutcome.FAILED


@pytest.mark.asyncio
async def test_coordinator_can_run_again(config):
    fetcher = FakeFetcher({A: [B], B: []})
    coordinator = make_coordinator(config, fetcher)

    first = await coordinator.start(A)
    second = await coordinator.start(A)

    assert first.visited_urls == second.visited_urls == {A, B}
    assert fetcher.calls[A] == 2


@pytest.mark.asyncio
async def test_caller_token_does_not_collect_finished_runs(config):
    token = CancelToken()
    coordinator = make_coordinator(config, FakeFetcher({A: [B], B: []}))

    for _ in range(3):
        result = await coordinator.start(A, token)
        assert result.outcome is CrawlOutcome.COMPLETED

    assert token._children == []
    assert not token.cancelled


def test_coordinator_built_outside_the_running_loop(config):
    fetcher = FakeFetcher({A: [B, C], C: []})
    coordinator = make_coordinator(replace(config, max_retries=0), fetcher)

    first = asyncio.run(coordinator.start(A))
    second = asyncio.run(coordinator.start(A))

    assert first.visited_urls == second.visited_urls == {A, C}
    assert first.error_count == second.error_count == 1


@pytest.mark.asyncio
async def test_monitor_records_crawl_activity(config):
    monitor = CrawlerMonitor()
    fetcher = FakeFetcher({A: [B, C], C: []}, failures={B: 100})
    coordinator = make_coordinator(replace(config, max_retries=1), fetcher, monitor=monitor)

    await coordinator.start(A)

    values = monitor.metrics.get_current_values()
    assert values['fetches_total{outcome=success}'] == 2
    assert values['fetches_total{outcome=failure}'] == 2
    assert values['retries_total'] == 1
    assert values['errors_total'] == 1
    assert values['active_workers'] == 0
