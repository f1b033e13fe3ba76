"""
Contact-email lookup over plain HTTP.

A listing's website is fetched (root page first, then a couple of likely
contact pages) and email addresses are pulled from mailto links and the page
text. The first page that yields anything ends the lookup.
"""

import asyncio
import re
from typing import List, Optional, Sequence
from urllib.parse import urljoin, urlparse

import aiohttp
from bs4 import BeautifulSoup

from mapsharvest.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CANDIDATE_PATHS = ("", "/contact", "/contact-us")

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")

HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; mapsharvest/1.0)"}

BLOCKED_FRAGMENTS = ("@example", "@test", "@sentry", "@wix", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", "@2x")
BLOCKED_SUFFIXES = (".js", ".css")
MAX_EMAIL_LENGTH = 80


def is_plausible_email(email: str) -> bool:
    """
    Reject placeholder domains, asset file names and overlong matches.

    Example:
        >>> is_plausible_email("hello@cafe-luna.de")
        True
        >>> is_plausible_email("logo@2x.png")
        False
    """
    e = (email or "").strip().lower()
    if not e or len(e) > MAX_EMAIL_LENGTH or not EMAIL_RE.fullmatch(e):
        return False
    if any(frag in e for frag in BLOCKED_FRAGMENTS):
        return False
    return not e.endswith(BLOCKED_SUFFIXES)


def extract_emails(html_text: str) -> List[str]:
    """
    Emails found in mailto links and page text, lowercased, in discovery order.

    Example:
        >>> extract_emails('<a href="mailto:Info@Cafe.de?subject=x">mail</a> or sales@cafe.de')
        ['info@cafe.de', 'sales@cafe.de']
    """
    if not html_text:
        return []
    found: List[str] = []

    soup = BeautifulSoup(html_text, "html.parser")
    for a in soup.select('a[href^="mailto:"], a[href^="MAILTO:"]'):
        href = a.get("href", "")
        found.append(href.split(":", 1)[1].split("?", 1)[0].strip())

    found.extend(EMAIL_RE.findall(html_text))

    out: List[str] = []
    seen = set()
    for email in found:
        e = email.strip().lower()
        if e not in seen and is_plausible_email(e):
            seen.add(e)
            out.append(e)
    return out


def candidate_urls(key: str, candidate_paths: Sequence[str] = DEFAULT_CANDIDATE_PATHS) -> List[str]:
    """
    Example:
        >>> candidate_urls("cafe-luna.de")
        ['https://cafe-luna.de', 'https://cafe-luna.de/contact', 'https://cafe-luna.de/contact-us']
    """
    base = (key or "").strip()
    if not base:
        return []
    if not base.startswith(("http://", "https://")):
        base = f"https://{base}"
    if not urlparse(base).netloc:
        return []
    urls: List[str] = []
    for path in candidate_paths:
        url = base if not path else urljoin(base, path)
        if url not in urls:
            urls.append(url)
    return urls


class EmailLookupProvider:
    """
    Secondary lookup provider backed by one shared aiohttp session.

    Each request carries its own timeout; a failing or slow page is skipped,
    never raised.

    Example:
        >>> provider = EmailLookupProvider()
        >>> # emails = await provider.lookup("https://cafe-luna.de", timeout_ms=5000)
        >>> await provider.aclose()
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self._owns_session = session is None

    async def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=20, limit_per_host=4, ssl=False)
            self._session = aiohttp.ClientSession(headers=HEADERS, connector=connector)
            self._owns_session = True
        return self._session

    async def _fetch(self, url: str, timeout_ms: int) -> Optional[str]:
        client = await self._client()
        timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)
        try:
            async with client.get(url, timeout=timeout, allow_redirects=True) as resp:
                if resp.status >= 400:
                    logger.debug(f"[email] HTTP {resp.status} for {url}")
                    return None
                return await resp.text(errors="replace")
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.debug(f"[email] fetch failed for {url}: {type(e).__name__}")
            return None

    async def lookup(self, key: str, candidate_paths: Sequence[str] = DEFAULT_CANDIDATE_PATHS,
                     timeout_ms: int = 5_000) -> List[str]:
        for url in candidate_urls(key, candidate_paths):
            html_text = await self._fetch(url, timeout_ms)
            emails = extract_emails(html_text or "")
            if emails:
                logger.debug(f"[email] {len(emails)} address(es) on {url}")
                return emails
        return []

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
