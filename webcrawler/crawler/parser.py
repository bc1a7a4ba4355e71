"""
Link extraction from fetched pages.
"""

import logging
from typing import Iterable, Iterator, Protocol
from urllib.parse import urljoin, urldefrag

from bs4 import BeautifulSoup

SKIP_HREF_PREFIXES = ('#', 'mailto:', 'javascript:', 'tel:', 'data:')


class LinkExtractor(Protocol):
    """Produces the absolute URLs found on a fetched page."""

    def extract(self, url: str, content: str) -> Iterable[str]:
        ...


class HtmlLinkExtractor:
    """
    Extracts <a href> targets from HTML with BeautifulSoup.

    Links are resolved against the page URL (or its <base href>) and have
    their fragment stripped, so '/docs#intro' and '/docs' yield the same
    link. Each link is yielded once per page.
    """

    def __init__(self, parser: str = 'lxml'):
        self.parser = parser
        self.logger = logging.getLogger(__name__)

    def extract(self, url: str, content: str) -> Iterator[str]:
        if not content:
            return

        soup = BeautifulSoup(content, self.parser)

        base_url = url
        base_tag = soup.find('base', href=True)
        if base_tag:
            base_url = urljoin(url, base_tag['href'].strip())

        seen = set()
        for link in soup.find_all('a', href=True):
            href = link['href'].strip()
            if not href or href.lower().startswith(SKIP_HREF_PREFIXES):
                continue

            try:
                absolute_url, _ = urldefrag(urljoin(base_url, href))
            except ValueError:
                self.logger.debug(f"Skipping malformed link {href!r} on {url}")
                continue

            if absolute_url not in seen:
                seen.add(absolute_url)
                yield absolute_url
