#!/usr/bin/env python3
"""
Script to mirror a single Wayback Machine snapshot into a local directory.

Downloads the archived page, every stylesheet, script, image and favicon it
references, and rewrites the page so it renders from disk. The archive's
injected toolbar and rewrite scripts are stripped out.

Usage:
    python mirror_snapshot.py https://web.archive.org/web/20160328000145/http://www.google.com/
"""

import re
import sys
from pathlib import Path, PurePosixPath
from concurrent.futures import ThreadPoolExecutor, as_completed

import yaml
from bs4 import BeautifulSoup

from wayback_fetcher import FetchError, RetryingFetcher
from wayback_paths import (
    MalformedSnapshotURLError,
    PathResolutionError,
    SnapshotReference,
    local_path,
    parse_snapshot,
    resolve_url,
    strip_archive_prefix,
)

# Configuration
CONFIG_FILE = "config.yaml"

DEFAULT_SETTINGS = {
    'retries': 3,
    'retry_delay': 10,
    'page_timeout': 15,
    'asset_timeout': 10,
    'download_pause': 5,
    'max_workers': 1,
    'sanitize': True,
}

INDEX_FILE = 'index.html'

EXAMPLE_URL = "https://web.archive.org/web/20160328000145/http://www.google.com/"

FAVICON_RELS = {'icon', 'apple-touch-icon'}

# Archive rewrite scripts and styles injected at the top of <head>
HEAD_INJECTION_PATTERN = re.compile(
    r'(<head\b[^>]*>).*?<!--\s*End Wayback Rewrite JS Include\s*-->',
    re.DOTALL | re.IGNORECASE
)

TOOLBAR_PATTERN = re.compile(
    r'<!--\s*BEGIN WAYBACK TOOLBAR INSERT\s*-->.*?<!--\s*END WAYBACK TOOLBAR INSERT\s*-->',
    re.DOTALL | re.IGNORECASE
)

# The archive appends capture metadata comments after the document
TRAILING_MARKUP_PATTERN = re.compile(r'(</html\s*>).*\Z', re.DOTALL | re.IGNORECASE)

# CSS url() pattern
CSS_URL_PATTERN = re.compile(r'url\(["\']?([^)"\']+)["\']?\)')


class FilesystemError(OSError):
    """The mirror directory or one of its files could not be written."""


class ConfigError(ValueError):
    """config.yaml is malformed or holds a value of the wrong kind."""


def load_config() -> dict:
    """Load configuration from YAML file."""
    config_path = Path(CONFIG_FILE)
    if config_path.exists():
        with open(config_path, 'r') as f:
            return yaml.safe_load(f) or {}
    return {}


def load_settings() -> dict:
    """Merge config.yaml over the defaults, ignoring unknown keys.

    Values are coerced to the type of their default so a typo in the file
    surfaces here as a ConfigError rather than mid-download.
    """
    try:
        config = load_config()
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {CONFIG_FILE}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"{CONFIG_FILE} must be a mapping of settings")

    settings = {}
    for key, default in DEFAULT_SETTINGS.items():
        value = config.get(key, default)
        try:
            if key in ('retries', 'max_workers'):
                settings[key] = _coerce_count(value)
            elif key == 'sanitize':
                settings[key] = _coerce_flag(value)
            else:
                settings[key] = _coerce_seconds(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid {key} in {CONFIG_FILE}: {value!r}") from None
    return settings


def _coerce_count(value) -> int:
    if isinstance(value, bool) or int(value) != value or value < 1:
        raise ValueError(value)
    return int(value)


def _coerce_seconds(value) -> float:
    if isinstance(value, bool) or float(value) < 0:
        raise ValueError(value)
    return float(value)


def _coerce_flag(value) -> bool:
    if not isinstance(value, bool):
        raise ValueError(value)
    return value


def sanitize_html(html: str) -> str:
    """Strip the archive's injected head scripts, toolbar, and trailing comments."""
    html = HEAD_INJECTION_PATTERN.sub(r'\1', html, count=1)
    html = TOOLBAR_PATTERN.sub('', html)
    return TRAILING_MARKUP_PATTERN.sub(r'\1', html, count=1)


def rel_tokens(element) -> set[str]:
    rel = element.get('rel') or []
    if isinstance(rel, str):
        rel = rel.split()
    return {token.lower() for token in rel}


def srcset_candidates(srcset: str) -> list[tuple[str, str]]:
    """Split a srcset into (url, descriptor) pairs."""
    candidates = []
    for part in srcset.split(','):
        tokens = part.strip().split(None, 1)
        if tokens:
            candidates.append((tokens[0], tokens[1] if len(tokens) > 1 else ''))
    return candidates


def discover_assets(soup: BeautifulSoup, ref: SnapshotReference) -> dict[str, None]:
    """Collect every asset the page references, as archive URLs in discovery order."""
    assets = {}

    def add(raw_url):
        resolved = resolve_url(raw_url, ref)
        if resolved:
            assets.setdefault(resolved, None)

    links = soup.find_all('link', href=True)

    favicons = [link['href'] for link in links if rel_tokens(link) & FAVICON_RELS]
    for href in favicons:
        add(href)
    if not favicons:
        add(ref.default_favicon_url())

    for link in links:
        if 'stylesheet' in rel_tokens(link):
            add(link['href'])

    for script in soup.find_all('script', src=True):
        add(script['src'])

    for img in soup.find_all('img'):
        add(img.get('src'))
        add(img.get('data-src'))
        if img.get('srcset'):
            for url, _ in srcset_candidates(img['srcset']):
                add(url)

    for element in soup.find_all(style=True):
        style = element['style']
        if 'background' in style:
            for match in CSS_URL_PATTERN.finditer(style):
                add(match.group(1).strip())

    return assets


def _rewrite_srcset(srcset: str, ref: SnapshotReference, asset_map: dict[str, str]) -> str:
    entries = []
    for url, descriptor in srcset_candidates(srcset):
        resolved = resolve_url(url, ref)
        if resolved in asset_map:
            entries.append(f"{asset_map[resolved]} {descriptor}".strip())
    return ', '.join(entries) if entries else srcset


def _strip_archive_prefixes(element, ref: SnapshotReference, skip=()) -> None:
    for name, value in list(element.attrs.items()):
        if name in skip:
            continue
        if isinstance(value, str):
            element[name] = strip_archive_prefix(value, ref)
        elif isinstance(value, list):
            element[name] = [strip_archive_prefix(v, ref) if isinstance(v, str) else v for v in value]


def rewrite_document(soup: BeautifulSoup, ref: SnapshotReference, asset_map: dict[str, str]) -> None:
    """Point mirrored references at their local paths and strip leftover archive prefixes.

    A single pass over the tree. Asset references without a mapping (failed
    or skipped downloads) are left as they were so they still resolve against
    the archive; every other attribute, navigation links included, loses the
    archive prefix.
    """
    def replace(element, attr):
        resolved = resolve_url(element.get(attr) or '', ref)
        if resolved in asset_map:
            element[attr] = asset_map[resolved]

    def replace_css_url(match):
        resolved = resolve_url(match.group(1).strip(), ref)
        if resolved in asset_map:
            return f'url("{asset_map[resolved]}")'
        return match.group(0)

    for element in soup.find_all(True):
        asset_attrs = ()
        if element.name == 'link' and rel_tokens(element) & (FAVICON_RELS | {'stylesheet'}):
            asset_attrs = ('href',)
        elif element.name == 'script':
            asset_attrs = ('src',)
        elif element.name == 'img':
            asset_attrs = ('src', 'data-src', 'srcset')

        for attr in asset_attrs:
            if attr == 'srcset':
                if element.get('srcset'):
                    element['srcset'] = _rewrite_srcset(element['srcset'], ref, asset_map)
            else:
                replace(element, attr)

        if element.get('style'):
            element['style'] = CSS_URL_PATTERN.sub(replace_css_url, element['style'])

        _strip_archive_prefixes(element, ref, skip=asset_attrs)


class SnapshotMirror:
    def __init__(self, snapshot_url: str, base_dir: str | Path = '.', fetcher: RetryingFetcher | None = None,
                 settings: dict | None = None):
        self.snapshot_url = snapshot_url
        self.base_dir = Path(base_dir)
        self.fetcher = fetcher
        self.settings = {**DEFAULT_SETTINGS, **(settings or {})}

    def _build_fetcher(self, ref: SnapshotReference) -> RetryingFetcher:
        return RetryingFetcher(
            ref.archive_origin,
            retries=self.settings['retries'],
            retry_delay=self.settings['retry_delay'],
            page_timeout=self.settings['page_timeout'],
            asset_timeout=self.settings['asset_timeout'],
            download_pause=self.settings['download_pause'],
        )

    def plan_paths(self, assets) -> dict[str, str]:
        """Assign each asset a local path. First writer wins on collision."""
        planned = {}
        files = {INDEX_FILE}
        dirs = set()

        for url in assets:
            try:
                path = local_path(url)
            except PathResolutionError as e:
                print(f"  Skipped: {e}")
                continue

            parents = {str(p) for p in PurePosixPath(path).parents if str(p) != '.'}
            if path in files or path in dirs or parents & files:
                print(f"  Warning: {url} maps to {path}, which is already taken; skipping")
                continue

            files.add(path)
            dirs.update(parents)
            planned[url] = path

        return planned

    def _save(self, target: Path, content: bytes | str) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content, encoding='utf-8')
        except OSError as e:
            raise FilesystemError(f"Cannot write {target}: {e}") from e

    def download_assets(self, planned: dict[str, str], output_dir: Path, fetcher: RetryingFetcher) -> dict[str, str]:
        """Fetch and save planned assets. Returns the mapping for those that succeeded."""
        saved = set()
        workers = max(1, int(self.settings['max_workers']))

        if workers == 1:
            for url, path in planned.items():
                try:
                    content = fetcher.fetch_asset(url)
                except FetchError as e:
                    print(f"  Failed: {url} ({e.reason})")
                    continue
                self._save(output_dir / path, content)
                saved.add(url)
                print(f"  Saved: {path}")
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {executor.submit(fetcher.fetch_asset, url): url for url in planned}
                try:
                    for future in as_completed(futures):
                        url = futures[future]
                        try:
                            content = future.result()
                        except FetchError as e:
                            print(f"  Failed: {url} ({e.reason})")
                            continue
                        self._save(output_dir / planned[url], content)
                        saved.add(url)
                        print(f"  Saved: {planned[url]}")
                except FilesystemError:
                    # Drop queued downloads; running ones finish on exit
                    executor.shutdown(wait=False, cancel_futures=True)
                    raise

        return {url: path for url, path in planned.items() if url in saved}

    def run(self) -> Path:
        """Mirror the snapshot and return the output directory."""
        ref = parse_snapshot(self.snapshot_url)
        output_dir = self.base_dir / ref.mirror_dir_name
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create {output_dir}: {e}") from e

        fetcher = self.fetcher or self._build_fetcher(ref)

        print(f"Using snapshot from {ref.timestamp}")
        print(f"Original URL: {ref.original_url}")

        print("\nDownloading main page...")
        html = fetcher.fetch_page(self.snapshot_url)
        if self.settings['sanitize']:
            html = sanitize_html(html)
        soup = BeautifulSoup(html, 'html.parser')

        assets = discover_assets(soup, ref)
        print(f"\nFound {len(assets)} assets")
        planned = self.plan_paths(assets)

        print(f"\nDownloading {len(planned)} assets...")
        asset_map = self.download_assets(planned, output_dir, fetcher)

        rewrite_document(soup, ref, asset_map)
        self._save(output_dir / INDEX_FILE, str(soup))

        print(f"\n{'='*50}")
        print("Mirror complete!")
        print(f"Output directory: {output_dir.absolute()}")
        print(f"Assets saved: {len(asset_map)}")
        print(f"Assets failed: {len(planned) - len(asset_map)}")
        print(f"Assets skipped: {len(assets) - len(planned)}")
        print(f"{'='*50}")

        return output_dir


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("Please provide a web.archive.org snapshot URL as a command line argument")
        print(f"Example: mirror-snapshot {EXAMPLE_URL}")
        return 1

    try:
        mirror = SnapshotMirror(args[0], settings=load_settings())
        mirror.run()
    except (MalformedSnapshotURLError, FetchError, FilesystemError, ConfigError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
