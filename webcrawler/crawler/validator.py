"""
URL checks shared by the crawler: eligibility, normalization and the
domain allow-list.
"""

from typing import Iterable
from urllib.parse import urlparse, urlunparse

from ..errors import InvalidStartURL

ALLOWED_SCHEMES = ('http', 'https')

DEFAULT_PORTS = {'http': 80, 'https': 443}

# Non-page resources; matched against the lower-cased path
SKIP_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.ico', '.tif', '.tiff',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx', '.odt', '.ods', '.rtf',
    '.zip', '.rar', '.tar', '.gz', '.tgz', '.bz2', '.7z', '.xz',
    '.exe', '.dmg', '.iso', '.bin', '.msi', '.apk', '.deb', '.rpm',
    '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv', '.mkv', '.webm', '.wav', '.ogg', '.m4a',
    '.css', '.js', '.woff', '.woff2', '.ttf', '.eot',
)


def is_eligible(raw_url: str) -> bool:
    """Check if a discovered link may be crawled. Never raises."""
    try:
        if not raw_url or not isinstance(raw_url, str):
            return False

        parsed = urlparse(raw_url.strip())

        if parsed.scheme.lower() not in ALLOWED_SCHEMES:
            return False

        if not parsed.hostname:
            return False

        # A trailing '#' counts as a fragment too
        if parsed.fragment or '#' in raw_url:
            return False

        # Raises ValueError for out-of-range ports
        _ = parsed.port

        path = parsed.path.lower()
        if any(path.endswith(ext) for ext in SKIP_EXTENSIONS):
            return False

        return True

    except (ValueError, TypeError):
        return False


def normalize_url(url: str) -> str:
    """
    Canonical form used for dedup and domain checks.

    Lower-cases scheme and host, drops default ports and the fragment, and
    turns an empty path into '/'. Query strings are kept as-is.
    """
    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or '').lower()

    netloc = host
    if parsed.port is not None and parsed.port != DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{parsed.port}"
    if parsed.username:
        userinfo = parsed.username
        if parsed.password:
            userinfo += f":{parsed.password}"
        netloc = f"{userinfo}@{netloc}"

    return urlunparse((
        scheme,
        netloc,
        parsed.path or '/',
        parsed.params,
        parsed.query,
        ''
    ))


def get_host(url: str) -> str:
    """Extract the lower-cased host name from a URL ('' if there is none)."""
    try:
        return (urlparse(url).hostname or '').lower()
    except ValueError:
        return ''


def is_allowed_domain(url: str, allowed_domains: Iterable[str]) -> bool:
    """
    Check a URL against the domain allow-list.

    A host is allowed when it equals an allowed domain or is one of its
    subdomains. An empty allow-list allows every host.
    """
    allowed = [d.lower().lstrip('.') for d in allowed_domains if d]
    if not allowed:
        return True

    host = get_host(url)
    if not host:
        return False

    return any(host == domain or host.endswith('.' + domain) for domain in allowed)


def parse_start_url(url: str) -> str:
    """Validate and normalize the start URL, raising InvalidStartURL."""
    if not url or not isinstance(url, str):
        raise InvalidStartURL(str(url), "empty URL")

    try:
        parsed = urlparse(url.strip())
        _ = parsed.port
    except ValueError as e:
        raise InvalidStartURL(url, str(e)) from e

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidStartURL(url, f"unsupported scheme {parsed.scheme!r}")

    if not parsed.hostname:
        raise InvalidStartURL(url, "missing host")

    return normalize_url(url)
