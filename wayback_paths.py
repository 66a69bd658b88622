"""
Wayback Machine addressing helpers.

Parses a snapshot URL into its timestamp and original site, qualifies any URL
found inside an archived page so it routes through the snapshot, and maps
archive URLs onto a safe relative layout for the local mirror.
"""

import functools
import hashlib
import posixpath
import re
import urllib.parse
from dataclasses import dataclass

# /web/<timestamp>[modifier]/<original-url>
SNAPSHOT_PATH_PATTERN = re.compile(r'^/web/(\d+(?:[a-z]{2}_)?)/(.+)$')

# Timestamp segment, optionally carrying an archive rewrite marker (im_, cs_, js_, id_)
TIMESTAMP_SEGMENT = re.compile(r'^\d+(?:[a-z]{2}_)?$')

SCHEME_PATTERN = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.\-]*:')
SCHEME_SEGMENT = re.compile(r'^https?:$', re.IGNORECASE)

UNSAFE_PATH_CHARS = re.compile(r'[<>:"|?*]')

# References that never point at a downloadable resource
SKIPPED_PREFIXES = ('data:', 'javascript:', 'mailto:', 'tel:', 'about:', '#')


class MalformedSnapshotURLError(ValueError):
    """The snapshot URL is not of the form <origin>/web/<timestamp>/<url>."""


class PathResolutionError(ValueError):
    """An asset URL cannot be turned into a safe local path."""


@dataclass(frozen=True)
class SnapshotReference:
    timestamp: str
    original_url: str
    domain: str
    archive_origin: str = 'https://web.archive.org'

    @property
    def archive_host(self) -> str:
        return urllib.parse.urlparse(self.archive_origin).hostname or ''

    @property
    def mirror_dir_name(self) -> str:
        return f"{self.domain}_{self.timestamp}"

    def archive_url(self, url: str) -> str:
        """Route an original-site URL through this snapshot."""
        return f"{self.archive_origin}/web/{self.timestamp}/{url}"

    def default_favicon_url(self) -> str:
        return self.archive_url(f"http://{self.domain}/favicon.ico")


def parse_snapshot(snapshot_url: str) -> SnapshotReference:
    """Split a snapshot URL into timestamp, original URL and domain."""
    try:
        parsed = urllib.parse.urlparse(snapshot_url.strip())
    except ValueError as err:
        raise MalformedSnapshotURLError(f"Cannot parse snapshot URL: {snapshot_url}") from err

    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise MalformedSnapshotURLError(f"Not an http(s) archive URL: {snapshot_url}")

    match = SNAPSHOT_PATH_PATTERN.match(parsed.path)
    if not match:
        raise MalformedSnapshotURLError(
            f"Expected /web/<timestamp>/<original-url> in: {snapshot_url}"
        )

    timestamp, original_url = match.groups()
    if parsed.query:
        original_url = f"{original_url}?{parsed.query}"

    # Bare hosts ("www.example.com/") are captured without a scheme
    host_source = original_url if SCHEME_PATTERN.match(original_url) else 'http://' + original_url
    try:
        domain = urllib.parse.urlparse(host_source).hostname
    except ValueError as err:
        raise MalformedSnapshotURLError(f"Cannot parse original URL: {original_url}") from err
    if not domain:
        raise MalformedSnapshotURLError(f"No domain in original URL: {original_url}")

    return SnapshotReference(
        timestamp=timestamp,
        original_url=original_url,
        domain=domain,
        archive_origin=f"{parsed.scheme}://{parsed.netloc}",
    )


def is_archive_url(url: str, ref: SnapshotReference) -> bool:
    """Check if an absolute URL already points at the archive host."""
    try:
        host = urllib.parse.urlparse(url).hostname
    except ValueError:
        return False
    return host is not None and host == ref.archive_host


def resolve_url(raw_url: str, ref: SnapshotReference) -> str | None:
    """Qualify a URL found in the page so it routes through the snapshot.

    Returns None for references that are never downloaded (data: URLs,
    javascript:, fragments and the like).
    """
    if not raw_url or not raw_url.strip():
        return None

    url = raw_url.strip()
    if url.lower().startswith(SKIPPED_PREFIXES):
        return None

    if url.startswith('//'):
        url = 'https:' + url

    # Root-relative references are already served from the archive origin
    if url.startswith('/'):
        return ref.archive_origin + url

    if is_archive_url(url, ref):
        return url

    if not SCHEME_PATTERN.match(url):
        try:
            url = urllib.parse.urljoin(ref.original_url, url)
        except ValueError:
            return None
    return ref.archive_url(url)


@functools.lru_cache(maxsize=None)
def _archive_prefix_pattern(archive_host: str) -> re.Pattern:
    # Absolute or protocol-relative anywhere; root-relative at the start of the
    # value or of a srcset candidate, url() argument, or quoted string
    return re.compile(
        r'(?:https?:)?//' + re.escape(archive_host) + r'/web/\d+\w*/'
        r'|(?:^|(?<=[\s,(\'"]))/web/\d+\w*/'
    )


def strip_archive_prefix(value: str, ref: SnapshotReference) -> str:
    """Remove archive addressing, leaving whatever followed it."""
    if '/web/' not in value:
        return value
    return _archive_prefix_pattern(ref.archive_host).sub('', value)


def local_path(asset_url: str) -> str:
    """Convert an archive URL to a relative, filesystem-safe path."""
    try:
        parsed = urllib.parse.urlparse(asset_url)
    except ValueError as err:
        raise PathResolutionError(f"Cannot parse asset URL: {asset_url}") from err

    segments = parsed.path.lstrip('/').split('/')

    # Drop the web/<timestamp> scaffolding
    if len(segments) > 1 and segments[0] == 'web' and TIMESTAMP_SEGMENT.match(segments[1]):
        segments = segments[2:]

    # Drop the embedded http://host of the original URL
    if segments and SCHEME_SEGMENT.match(segments[0]):
        segments = segments[1:]
        while segments and not segments[0]:
            segments.pop(0)
        segments = segments[1:]

    if not segments or not segments[-1]:
        raise PathResolutionError(f"No file name in asset URL: {asset_url}")

    safe = [UNSAFE_PATH_CHARS.sub('_', s) for s in segments if s not in ('', '.', '..')]
    if not safe:
        raise PathResolutionError(f"No file name in asset URL: {asset_url}")

    if parsed.query:
        query_hash = hashlib.md5(parsed.query.encode()).hexdigest()[:8]
        base, ext = posixpath.splitext(safe[-1])
        safe[-1] = f"{base}_{query_hash}{ext}"

    return '/'.join(safe)
