from webcrawler.crawler.parser import HtmlLinkExtractor

PAGE = """
<html>
  <head><title>Index</title></head>
  <body>
    <a href="/docs">Docs</a>
    <a href="guide/intro.html#setup">Guide</a>
    <a href="https://other.test/x">Other</a>
    <a href="#top">Top</a>
    <a href="mailto:team@example.com">Mail</a>
    <a href="javascript:void(0)">JS</a>
    <a href="/docs">Docs again</a>
    <a>No href</a>
  </body>
</html>
"""


def test_extracts_absolute_links_once():
    links = list(HtmlLinkExtractor().extract("https://example.com/base/page", PAGE))

    assert links == [
        "https://example.com/docs",
        "https://example.com/base/guide/intro.html",
        "https://other.test/x",
    ]


def test_respects_base_href():
    page = '<html><head><base href="https://cdn.example.com/root/"></head>' \
           '<body><a href="a.html">A</a></body></html>'

    links = list(HtmlLinkExtractor().extract("https://example.com/", page))

    assert links == ["https://cdn.example.com/root/a.html"]


def test_empty_content_yields_nothing():
    assert list(HtmlLinkExtractor().extract("https://example.com/", "")) == []


def test_extraction_is_lazy():
    links = HtmlLinkExtractor().extract("https://example.com/", PAGE)
    assert next(links) == "https://example.com/docs"
