import re
import logging
from typing import Callable, Optional, Tuple
from urllib.parse import urlparse, urlsplit, urlunsplit

from config import DATA_URI_MIN_LENGTH

logger = logging.getLogger(__name__)


class InvalidPageUrl(ValueError):
    """Raised when a page URL is missing or cannot be parsed into an absolute http(s) URL."""


# -----------------------------
# Rule tables
# -----------------------------

# Substrings marking a URL as page chrome rather than a product photo (matched case-insensitively)
DENYLIST_TOKENS: Tuple[str, ...] = (
    # icons and branding
    'icon', 'logo', 'favicon', 'sprite',
    # tracking pixels and spacers
    'pixel', 'tracking', 'spacer', 'blank', '1x1',
    # UI chrome
    'badge', 'button', 'arrow', 'loading', 'spinner', 'avatar', 'emoji', 'flag',
    # social networks
    'social', 'share', 'facebook', 'twitter', 'instagram', 'pinterest',
    # payment networks
    'payment', 'visa', 'mastercard', 'paypal', 'amex',
    # placeholders
    'placeholder', 'transparent', 'gradient',
)

_SIZE_PARAM_RE = re.compile(r'[?&](?:w|h|width|height)=\d+|[?&]size=\w+', re.I)
_SIZE_INFIX_RES = (
    (re.compile(r'_\d+x\d+\.'), '.'),
    (re.compile(r'-\d+x\d+\.'), '.'),
    (re.compile(r'/\d+x\d+/'), '/'),
)
_SCHEME_RE = re.compile(r'^[a-z][a-z0-9+.\-]*:', re.I)


def _drop_query(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, '', ''))


def _strip_size_hints(url: str) -> str:
    """Default rule: remove size parameters and WxH filename infixes, then every query parameter."""
    parts = urlsplit(url)
    path = parts.path
    previous = None
    # Repeat until stable so chained infixes like name_1x2_300x400.jpg fully collapse
    while previous != path:
        previous = path
        # Size hints glued onto the path without a '?' survive urlsplit
        path = _SIZE_PARAM_RE.sub('', path)
        for pattern, replacement in _SIZE_INFIX_RES:
            path = pattern.sub(replacement, path)
    return urlunsplit((parts.scheme, parts.netloc, path, '', ''))


def _upgrade_zara(url: str) -> str:
    upgraded = re.sub(r'/w/\d+/', '/w/1920/', url)
    return re.sub(r'\?ts=.*$', '', upgraded)


# Ordered (host substring, rewrite) pairs; first match wins, _strip_size_hints otherwise
SITE_UPGRADE_RULES: Tuple[Tuple[str, Callable[[str], str]], ...] = (
    ('zara.com', _upgrade_zara),
    ('hm.com', _drop_query),
    ('hmgroup', _drop_query),
)


# -----------------------------
# Normalizer
# -----------------------------

def page_origin(base_url: str) -> Optional[str]:
    try:
        p = urlparse(base_url or '')
    except ValueError:
        return None
    if p.scheme.lower() not in ('http', 'https') or not p.netloc:
        return None
    return f"{p.scheme}://{p.netloc}"


def normalize_page_url(raw: Optional[str]) -> str:
    """
    Normalize the page a scrape starts from, defaulting to https when no scheme is given.

    Raises:
        InvalidPageUrl: if the input is empty or not an http(s) URL with a host
    """
    url = (raw or '').strip()
    if not url:
        raise InvalidPageUrl('URL is required')
    if url.startswith('//'):
        url = 'https:' + url
    elif not re.match(r'^[a-z][a-z0-9+.\-]*://', url, re.I):
        url = 'https://' + url
    if page_origin(url) is None:
        raise InvalidPageUrl(f'Invalid page URL: {raw}')
    return url


def normalize_image_url(raw: Optional[str], base_url: str) -> Optional[str]:
    """
    Turn a raw src/href value into an absolute URL, or None when it cannot be resolved.

    Protocol-relative values get https, root-relative and bare relative values are
    joined onto the page origin, absolute http(s) and data: URLs pass through.
    """
    src = (raw or '').strip()
    if not src:
        return None
    if src.startswith('//'):
        return 'https:' + src
    lower = src.lower()
    if lower.startswith(('http://', 'https://', 'data:')):
        return src
    if _SCHEME_RE.match(src):
        # javascript:, blob:, mailto: and friends
        return None
    origin = page_origin(base_url)
    if origin is None:
        return None
    if src.startswith('/'):
        return origin + src
    return origin + '/' + src


# -----------------------------
# Candidate filter
# -----------------------------

def is_candidate(url: Optional[str]) -> bool:
    """True unless the URL carries a denylisted token or is a tiny inline placeholder."""
    if not url:
        return False
    lower = url.lower()
    if any(token in lower for token in DENYLIST_TOKENS):
        return False
    if lower.startswith('data:') and len(url) < DATA_URI_MIN_LENGTH:
        return False
    return True


# -----------------------------
# Resolution upgrader
# -----------------------------

def upgrade_resolution(url: str) -> str:
    """Rewrite a normalized URL to request the largest rendition the host is known to serve."""
    if not url or url.lower().startswith('data:'):
        return url
    try:
        host = urlsplit(url).netloc.lower()
        rule = next((rewrite for pattern, rewrite in SITE_UPGRADE_RULES if pattern in host), _strip_size_hints)
        upgraded = rule(url)
    except ValueError as e:
        logger.debug(f"Could not upgrade {url}: {e}")
        return url
    return upgraded or url
