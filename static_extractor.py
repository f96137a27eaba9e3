"""
Static image extraction

Works on server-delivered HTML only (scripts are never executed). Seven
independent signal scans run in priority order and feed an ImageSet; a scan
that blows up is logged and skipped so the remaining signals still count.
"""

import re
import json
import asyncio
import logging
from typing import Any, Iterable, Iterator, List, Optional

import aiohttp
from bs4 import BeautifulSoup, Comment

from config import (
    CLIENT_RENDER_MIN_TEXT, DESKTOP_USER_AGENT, MOBILE_USER_AGENT, PAGE_FETCH_TIMEOUT,
)
from image_set import ImageSet, StageReport
from url_rules import is_candidate, normalize_image_url

logger = logging.getLogger(__name__)


LAZY_IMAGE_ATTRIBUTES = (
    'data-src', 'data-lazy-src', 'data-original', 'data-zoom-image',
    'data-large-image', 'data-image', 'data-full-size-image-url',
)
SRCSET_ATTRIBUTES = ('srcset', 'data-srcset')
PRODUCT_PATH_TOKENS = ('product', 'media', 'image', 'photo', 'catalog', 'asset')

IMAGE_EXTENSION_RE = re.compile(r'\.(?:jpg|jpeg|png|webp)', re.I)
INLINE_IMAGE_URL_RE = re.compile(r'"(https?://[^"\s]+?\.(?:jpg|jpeg|png|webp)[^"\s]*)"', re.I)

# Markup signatures of anti-bot interstitials and script-only shells
CHALLENGE_SIGNATURES = (
    'cf-challenge', 'cf-turnstile', 'challenge-platform', 'checking your browser',
    'g-recaptcha', 'h-captcha', 'px-captcha', 'datadome',
    'please enable javascript', 'you need to enable javascript',
    'enable javascript to run this app',
)
SPA_MOUNT_RE = re.compile(
    r'<div[^>]+id=["\'](?:root|app|__next|__nuxt)["\'][^>]*>\s*</div>', re.I
)

PAGE_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'Cache-Control': 'no-cache',
}


async def fetch_page_html(url: str, user_agent: str = DESKTOP_USER_AGENT) -> Optional[str]:
    """GET a page with browser-like headers; None on any network error or non-2xx status."""
    headers = dict(PAGE_HEADERS)
    headers['User-Agent'] = user_agent
    timeout = aiohttp.ClientTimeout(total=PAGE_FETCH_TIMEOUT)
    try:
        async with aiohttp.ClientSession(headers=headers, timeout=timeout) as session:
            async with session.get(url, allow_redirects=True) as response:
                if not 200 <= response.status < 300:
                    logger.warning(f"HTTP {response.status} fetching page {url}")
                    return None
                return await response.text(errors='replace')
    except (asyncio.TimeoutError, aiohttp.ClientError) as e:
        logger.warning(f"Error fetching page {url}: {e}")
        return None


# -----------------------------
# JSON-LD helpers
# -----------------------------

def _has_type(node: dict, type_name: str) -> bool:
    declared = node.get('@type')
    types = declared if isinstance(declared, list) else [declared]
    return any(isinstance(t, str) and t.rsplit('/', 1)[-1].rsplit(':', 1)[-1] == type_name for t in types)


def image_field_urls(value: Any) -> List[str]:
    """Flatten a schema.org image field: a string, an object with url/contentUrl, or a list of either."""
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, dict):
        url = value.get('url') or value.get('contentUrl')
        return image_field_urls(url) if url else []
    if isinstance(value, list):
        urls: List[str] = []
        for item in value:
            urls.extend(image_field_urls(item))
        return urls
    return []


def json_ld_image_urls(data: Any) -> List[str]:
    """Image URLs from Product nodes, ItemList entries and @graph Product nodes, in document order."""
    urls: List[str] = []
    schemas = data if isinstance(data, list) else [data]
    for schema in schemas:
        if not isinstance(schema, dict):
            continue
        if _has_type(schema, 'Product'):
            urls.extend(image_field_urls(schema.get('image')))
        if _has_type(schema, 'ItemList'):
            for entry in schema.get('itemListElement') or []:
                if not isinstance(entry, dict):
                    continue
                # ListItem wrappers keep the product under "item"
                node = entry
                if not entry.get('image') and isinstance(entry.get('item'), dict):
                    node = entry['item']
                urls.extend(image_field_urls(node.get('image')))
        graph = schema.get('@graph')
        if isinstance(graph, list):
            for node in graph:
                if isinstance(node, dict) and _has_type(node, 'Product'):
                    urls.extend(image_field_urls(node.get('image')))
    return urls


# -----------------------------
# Signal scans
# -----------------------------

def _meta_contents(soup: BeautifulSoup, keys: Iterable[str]) -> Iterator[str]:
    wanted = set(keys)
    for meta in soup.find_all('meta'):
        key = (meta.get('property') or meta.get('name') or '').strip().lower()
        if key in wanted and meta.get('content'):
            yield meta['content']


def _scan_open_graph(soup: BeautifulSoup, html: str) -> Iterator[str]:
    return _meta_contents(soup, ('og:image',))


def _scan_twitter_card(soup: BeautifulSoup, html: str) -> Iterator[str]:
    return _meta_contents(soup, ('twitter:image', 'twitter:image:src'))


def _scan_json_ld(soup: BeautifulSoup, html: str) -> Iterator[str]:
    blocks = soup.find_all('script', type=lambda t: bool(t) and t.strip().lower() == 'application/ld+json')
    for index, script in enumerate(blocks):
        text = (script.string or script.get_text() or '').strip()
        if not text:
            continue
        try:
            data = json.loads(text)
        except ValueError as e:
            logger.debug(f"Skipping invalid JSON-LD block #{index}: {e}")
            continue
        yield from json_ld_image_urls(data)


def _scan_lazy_attributes(soup: BeautifulSoup, html: str) -> Iterator[str]:
    for attr in LAZY_IMAGE_ATTRIBUTES:
        for el in soup.find_all(attrs={attr: True}):
            value = el.get(attr)
            if isinstance(value, str) and IMAGE_EXTENSION_RE.search(value):
                yield value


def _scan_img_src(soup: BeautifulSoup, html: str) -> Iterator[str]:
    for img in soup.find_all('img', src=True):
        if IMAGE_EXTENSION_RE.search(img['src']):
            yield img['src']


def last_srcset_url(srcset: str) -> Optional[str]:
    """Last (by convention the widest) URL of a srcset descriptor list."""
    parts = [p.strip() for p in (srcset or '').split(',') if p.strip()]
    if not parts:
        return None
    return parts[-1].split()[0]


def _scan_srcset(soup: BeautifulSoup, html: str) -> Iterator[str]:
    for el in soup.find_all(lambda tag: any(tag.has_attr(a) for a in SRCSET_ATTRIBUTES)):
        for attr in SRCSET_ATTRIBUTES:
            url = last_srcset_url(el.get(attr) or '')
            if url:
                yield url


def _scan_inline_urls(soup: BeautifulSoup, html: str) -> Iterator[str]:
    text = html.replace('\\/', '/').replace('\\u002F', '/').replace('\\u002f', '/')
    for match in INLINE_IMAGE_URL_RE.finditer(text):
        url = match.group(1)
        lower = url.lower()
        if any(token in lower for token in PRODUCT_PATH_TOKENS):
            yield url


# Priority order = insertion order in the ImageSet
STATIC_SCANS = (
    ('og:image', _scan_open_graph),
    ('twitter:image', _scan_twitter_card),
    ('json-ld', _scan_json_ld),
    ('lazy-attributes', _scan_lazy_attributes),
    ('img-src', _scan_img_src),
    ('srcset', _scan_srcset),
    ('inline-script', _scan_inline_urls),
)


def extract_static_candidates(html: str, page_url: str, images: ImageSet,
                              soup: Optional[BeautifulSoup] = None) -> int:
    """Run every static scan over the HTML, adding matches to images. Returns how many were new."""
    if soup is None:
        soup = BeautifulSoup(html or '', 'lxml')
    before = len(images)
    for name, scan in STATIC_SCANS:
        try:
            for raw in scan(soup, html):
                images.add(raw, page_url, source=name)
        except Exception as e:
            logger.warning(f"Static scan '{name}' failed for {page_url}: {e}")
    return len(images) - before


def visible_text_length(soup: BeautifulSoup) -> int:
    root = soup.body or soup
    total = 0
    for s in root.find_all(string=True):
        if isinstance(s, Comment) or s.parent.name in ('script', 'style', 'noscript', 'template'):
            continue
        total += len(s.strip())
    return total


def looks_client_rendered(html: str, soup: Optional[BeautifulSoup] = None) -> bool:
    """Heuristic: the markup is a script shell or a bot challenge, so a real browser would see more."""
    lower = (html or '').lower()
    if any(sig in lower for sig in CHALLENGE_SIGNATURES):
        return True
    if SPA_MOUNT_RE.search(lower):
        return True
    if soup is None:
        soup = BeautifulSoup(html or '', 'lxml')
    return visible_text_length(soup) < CLIENT_RENDER_MIN_TEXT


# -----------------------------
# Primary image (single best guess)
# -----------------------------

def _first(values: Iterable[str]) -> Optional[str]:
    return next(iter(values), None)


def _product_looking_img(soup: BeautifulSoup) -> Optional[str]:
    for img in soup.find_all('img'):
        src = img.get('src') or img.get('data-src')
        if not src:
            continue
        classes = ' '.join(img.get('class') or []).lower()
        element_id = (img.get('id') or '').lower()
        alt = (img.get('alt') or '').lower()
        if re.search(r'product|main|primary|hero', classes) or re.search(r'product|main|primary', element_id):
            return src
        if img.get('src') and 'product' in alt:
            return img['src']
    return None


def _first_plain_img(soup: BeautifulSoup, page_url: str) -> Optional[str]:
    for src in _scan_img_src(soup, ''):
        if is_candidate(normalize_image_url(src, page_url)):
            return src
    return None


def pick_primary_image(html: str, page_url: str) -> Optional[str]:
    """
    Best single guess at the page's product photo, first hit wins:
    og:image, twitter:image, JSON-LD product image, product-looking <img>, first usable <img>.
    """
    soup = BeautifulSoup(html or '', 'lxml')
    finders = (
        lambda: _first(_scan_open_graph(soup, html)),
        lambda: _first(_scan_twitter_card(soup, html)),
        lambda: _first(_scan_json_ld(soup, html)),
        lambda: _product_looking_img(soup),
        lambda: _first_plain_img(soup, page_url),
    )
    for finder in finders:
        raw = finder()
        if raw:
            url = normalize_image_url(raw, page_url)
            if url:
                return url
    return None


# -----------------------------
# Strategies
# -----------------------------

class StaticExtractor:
    """Fetch the page with a desktop browser identity and run the static scans."""

    name = 'static'
    user_agent = DESKTOP_USER_AGENT

    async def extract(self, page_url: str, images: ImageSet) -> StageReport:
        html = await fetch_page_html(page_url, self.user_agent)
        if not html:
            return StageReport(self.name)
        soup = BeautifulSoup(html, 'lxml')
        added = extract_static_candidates(html, page_url, images, soup=soup)
        client_rendered = looks_client_rendered(html, soup)
        logger.info(f"[{self.name}] {added} new candidates from {page_url}"
                    f"{' (looks client-rendered)' if client_rendered else ''}")
        return StageReport(self.name, added=added, client_rendered=client_rendered)


class MobileStaticExtractor(StaticExtractor):
    """Same scans against the markup served to a mobile browser, which some shops render server-side."""

    name = 'mobile'
    user_agent = MOBILE_USER_AGENT
