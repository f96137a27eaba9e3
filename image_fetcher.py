import base64
import asyncio
import binascii
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import unquote_to_bytes

import aiohttp

from config import DESKTOP_USER_AGENT, IMAGE_FETCH_TIMEOUT, MAX_IMAGE_BYTES
from url_rules import page_origin

logger = logging.getLogger(__name__)

NOT_AN_IMAGE = 'URL does not point to an image'
READ_CHUNK_SIZE = 64 * 1024

IMAGE_HEADERS = {
    'Accept': 'image/avif,image/webp,image/apng,image/*,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
}


class ImageFetchError(Exception):
    """Fetching a chosen image failed; the message is safe to show to the caller."""


@dataclass
class FetchedImage:
    payload: str  # data:<content type>;base64,<body>
    content_type: str
    byte_size: int
    data: bytes = field(default=b'', repr=False)


def encode_payload(content_type: str, data: bytes) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_uri(uri: str) -> FetchedImage:
    """Materialize an inline data: image without touching the network."""
    header, sep, body = uri.partition(',')
    if not sep:
        raise ImageFetchError('Malformed data URI')
    params = [p.strip() for p in header[len('data:'):].split(';')]
    content_type = params[0].lower() or 'text/plain'
    if not content_type.startswith('image/'):
        raise ImageFetchError(NOT_AN_IMAGE)
    if 'base64' in (p.lower() for p in params[1:]):
        try:
            data = base64.b64decode(body)
        except (binascii.Error, ValueError):
            raise ImageFetchError('Malformed data URI')
    else:
        data = unquote_to_bytes(body)
    return FetchedImage(encode_payload(content_type, data), content_type, len(data), data)


async def fetch_image(image_url: Optional[str], referer: Optional[str] = None) -> FetchedImage:
    """
    Download one image with browser-like headers and the page as referer.

    Single attempt, no retries.

    Raises:
        ImageFetchError: missing/invalid URL, unreachable host, non-2xx status,
            non-image content type or an oversized body
    """
    url = (image_url or '').strip()
    if not url:
        raise ImageFetchError('Image URL is required')
    if url.lower().startswith('data:'):
        return decode_data_uri(url)
    if url.startswith('//'):
        url = 'https:' + url
    if page_origin(url) is None:
        raise ImageFetchError(f'Invalid image URL: {image_url}')

    headers = dict(IMAGE_HEADERS)
    headers['User-Agent'] = DESKTOP_USER_AGENT
    headers['Referer'] = referer or url
    timeout = aiohttp.ClientTimeout(total=IMAGE_FETCH_TIMEOUT)

    try:
        async with aiohttp.ClientSession(headers=headers, timeout=timeout) as session:
            async with session.get(url, allow_redirects=True) as response:
                if not 200 <= response.status < 300:
                    raise ImageFetchError(f'Could not fetch image ({response.status})')
                declared = response.headers.get('Content-Type') or 'image/jpeg'
                content_type = declared.split(';')[0].strip().lower()
                if not content_type.startswith('image/'):
                    logger.warning(f"Not an image ({declared}): {url}")
                    raise ImageFetchError(NOT_AN_IMAGE)
                if response.content_length and response.content_length > MAX_IMAGE_BYTES:
                    raise ImageFetchError(f'Image too large ({response.content_length} bytes)')
                # Chunked responses carry no length, so the cap is enforced while reading
                body = bytearray()
                async for chunk in response.content.iter_chunked(READ_CHUNK_SIZE):
                    body.extend(chunk)
                    if len(body) > MAX_IMAGE_BYTES:
                        raise ImageFetchError(f'Image too large (over {MAX_IMAGE_BYTES} bytes)')
                data = bytes(body)
    except (asyncio.TimeoutError, aiohttp.ClientError) as e:
        logger.warning(f"Network error fetching image {url}: {e!r}")
        raise ImageFetchError(f'Could not reach image URL ({type(e).__name__})') from e

    logger.info(f"Fetched {len(data)} bytes ({content_type}) from {url}")
    return FetchedImage(encode_payload(content_type, data), content_type, len(data), data)
