"""
HTTP retrieval from the Wayback Machine with bounded retries.

The archive rate-limits aggressive clients, so every request carries
browser-like headers, failed attempts back off exponentially, and each
successful asset download is followed by a fixed pause.
"""

import time

import requests
from bs4 import UnicodeDammit

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

MAX_REDIRECTS = 5


def browser_headers(archive_origin: str) -> dict[str, str]:
    return {
        'User-Agent': USER_AGENT,
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.5',
        'Connection': 'keep-alive',
        'Referer': archive_origin.rstrip('/') + '/',
    }


class FetchError(Exception):
    """A GET failed on every attempt."""

    def __init__(self, url: str, attempts: int, reason: Exception | None = None):
        self.url = url
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"Failed to fetch {url} after {attempts} attempt(s): {reason}")


class RetryingFetcher:
    def __init__(
        self,
        archive_origin: str = 'https://web.archive.org',
        retries: int = 3,
        retry_delay: float = 10,
        page_timeout: float = 15,
        asset_timeout: float = 10,
        download_pause: float = 5,
        session: requests.Session | None = None,
        sleep=time.sleep,
    ):
        self.retries = max(1, int(retries))
        self.retry_delay = retry_delay
        self.page_timeout = page_timeout
        self.asset_timeout = asset_timeout
        self.download_pause = download_pause
        self.sleep = sleep
        self.session = session if session is not None else requests.Session()
        self.session.headers.update(browser_headers(archive_origin))
        self.session.max_redirects = MAX_REDIRECTS

    def fetch(self, url: str, binary: bool = False, timeout: float | None = None) -> bytes | str:
        """GET a URL, retrying with exponential backoff. Raises FetchError when exhausted."""
        delay = self.retry_delay
        for attempt in range(1, self.retries + 1):
            try:
                response = self.session.get(url, timeout=timeout, allow_redirects=True)
                response.raise_for_status()
                return response.content if binary else response.text
            except requests.RequestException as e:
                if attempt == self.retries:
                    raise FetchError(url, attempt, e) from e
                print(f"  Attempt {attempt} failed for {url} ({e}), retrying in {delay}s...")
                self.sleep(delay)
                delay *= 2

    def fetch_page(self, url: str) -> str:
        """Download the page as bytes and decode it from its own markup.

        Archived headers often omit the charset, in which case requests would
        fall back to ISO-8859-1; <meta charset> and byte sniffing win here.
        """
        content = self.fetch(url, binary=True, timeout=self.page_timeout)
        return UnicodeDammit(content, is_html=True).unicode_markup

    def fetch_asset(self, url: str) -> bytes:
        """Download an asset, then pause to stay under the archive's rate limit."""
        content = self.fetch(url, binary=True, timeout=self.asset_timeout)
        if self.download_pause:
            self.sleep(self.download_pause)
        return content
