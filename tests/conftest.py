"""Shared fixtures for unit tests."""

import pytest
import requests
from bs4 import BeautifulSoup

SNAPSHOT_URL = "https://web.archive.org/web/20160328000145/http://www.example.com/"
ARCHIVE = "https://web.archive.org/web/20160328000145"


class FakeResponse:
    def __init__(self, url, body=b'', status_code=200, encoding='utf-8'):
        self.url = url
        self.status_code = status_code
        self.encoding = encoding
        self.content = body if isinstance(body, bytes) else body.encode('utf-8')

    @property
    def text(self):
        return self.content.decode(self.encoding, errors='replace')

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}", response=self)


class FakeSession:
    """Stands in for requests.Session, serving canned bodies by URL.

    A route maps to a body (str/bytes), an HTTP status code (int), a
    prepared FakeResponse, an exception instance, or a list of those
    consumed one per request.
    Unknown URLs raise ConnectionError.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.headers = {}
        self.max_redirects = 30
        self.calls = []

    def get(self, url, timeout=None, allow_redirects=True):
        self.calls.append((url, timeout))
        result = self.routes.get(url)
        if isinstance(result, list):
            result = result.pop(0) if result else None
        if result is None:
            raise requests.ConnectionError(f"No route for {url}")
        if isinstance(result, Exception):
            raise result
        if isinstance(result, FakeResponse):
            return result
        if isinstance(result, int):
            return FakeResponse(url, b'', status_code=result)
        return FakeResponse(url, result)

    def requested(self):
        return [url for url, _ in self.calls]


@pytest.fixture
def make_soup():
    """Factory fixture to create BeautifulSoup from HTML string."""
    return lambda html: BeautifulSoup(html, 'html.parser')


@pytest.fixture
def fake_session():
    """Factory fixture to create a FakeSession from a route table."""
    return FakeSession


@pytest.fixture
def sample_page_html():
    """A snapshot page as served by the archive, with its injected markup."""
    return f'''<!DOCTYPE html>
<html lang="en">
<head><script src="//archive.org/includes/athena.js" type="text/javascript"></script>
<script type="text/javascript">window.RufflePlayer=window.RufflePlayer||{{}};</script>
<link rel="stylesheet" type="text/css" href="/_static/css/banner-styles.css"/>
<!-- End Wayback Rewrite JS Include -->
<title>Example Domain</title>
<link rel="stylesheet" href="/web/20160328000145cs_/http://www.example.com/css/site.css"/>
<script src="/web/20160328000145js_/http://www.example.com/js/app.js"></script>
</head>
<body>
<!-- BEGIN WAYBACK TOOLBAR INSERT -->
<div id="wm-ipp-base">toolbar</div>
<!-- END WAYBACK TOOLBAR INSERT -->
<div id="header"><img src="/web/20160328000145im_/http://www.example.com/img/logo.png" alt="logo"/></div>
<div id="menu">
<a href="{ARCHIVE}/http://www.example.com/about.html">about</a>
</div>
</body>
</html>
<!--
     FILE ARCHIVED ON 00:01:45 Mar 28, 2016 AND RETRIEVED FROM THE
     INTERNET ARCHIVE ON 12:00:00 Jan 01, 2024.
-->'''
