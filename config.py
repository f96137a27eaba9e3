"""
Runtime configuration

All tunables are read from the environment (a local .env file is loaded first)
so thresholds and delays can be adjusted per deployment without code changes.
"""

import os
from dotenv import load_dotenv

# Load environment variables at module level
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# Extraction limits
MAX_IMAGES = _env_int('MAX_IMAGES', 30)
ESCALATION_THRESHOLD = _env_int('ESCALATION_THRESHOLD', 3)
DATA_URI_MIN_LENGTH = _env_int('DATA_URI_MIN_LENGTH', 500)
CLIENT_RENDER_MIN_TEXT = _env_int('CLIENT_RENDER_MIN_TEXT', 200)

# Network (seconds)
PAGE_FETCH_TIMEOUT = _env_int('PAGE_FETCH_TIMEOUT', 20)
IMAGE_FETCH_TIMEOUT = _env_int('IMAGE_FETCH_TIMEOUT', 30)
MAX_IMAGE_BYTES = _env_int('MAX_IMAGE_BYTES', 20 * 1024 * 1024)

# Rendered browser (milliseconds)
BROWSER_NAV_TIMEOUT_MS = _env_int('BROWSER_NAV_TIMEOUT_MS', 30000)
BROWSER_SETTLE_MS = _env_int('BROWSER_SETTLE_MS', 2000)
BROWSER_SCROLL_SETTLE_MS = _env_int('BROWSER_SCROLL_SETTLE_MS', 1000)
MIN_RENDERED_AREA = _env_int('MIN_RENDERED_AREA', 10000)
BROWSER_VIEWPORT = {'width': 1366, 'height': 900}

# Batch CLI
BATCH_CONCURRENCY = _env_int('BATCH_CONCURRENCY', 3)

# Garment classifier
GEMINI_API_KEY = os.getenv('GEMINI_API_KEY')
GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-2.5-flash')

DESKTOP_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36'
)
MOBILE_USER_AGENT = (
    'Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 '
    '(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1'
)

# Set to "false" where no Chromium can be launched (e.g. serverless)
ENABLE_BROWSER = os.getenv('ENABLE_BROWSER', 'true').strip().lower() not in ('0', 'false', 'no')
