import base64
import unittest
from unittest.mock import MagicMock, patch

import aiohttp

from image_fetcher import NOT_AN_IMAGE, ImageFetchError, decode_data_uri, fetch_image

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24


def _fake_client_session(status=200, content_type="image/png", body=PNG_BYTES, error=None,
                         chunks=None, content_length="auto"):
    """ClientSession replacement whose single GET answers with the given response."""
    chunks = list(chunks) if chunks is not None else [body]
    consumed = []

    async def iter_chunked(size):
        for chunk in chunks:
            consumed.append(chunk)
            yield chunk

    response = MagicMock()
    response.status = status
    response.headers = {"Content-Type": content_type} if content_type else {}
    response.content_length = sum(len(c) for c in chunks) if content_length == "auto" else content_length
    response.content.iter_chunked = iter_chunked
    response.consumed = consumed

    response_cm = MagicMock()
    response_cm.__aenter__.return_value = response
    response_cm.__aexit__.return_value = False

    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = response_cm

    session_cm = MagicMock()
    session_cm.__aenter__.return_value = session
    session_cm.__aexit__.return_value = False
    session.response = response
    return MagicMock(return_value=session_cm), session


class TestFetchImage(unittest.IsolatedAsyncioTestCase):
    async def test_success_returns_inline_payload(self) -> None:
        factory, session = _fake_client_session()
        with patch("image_fetcher.aiohttp.ClientSession", factory):
            image = await fetch_image("https://cdn.example.com/p.png", referer="https://shop.example.com/item")
        self.assertEqual(image.content_type, "image/png")
        self.assertEqual(image.byte_size, len(PNG_BYTES))
        self.assertEqual(image.payload, "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode())
        headers = factory.call_args.kwargs["headers"]
        self.assertEqual(headers["Referer"], "https://shop.example.com/item")
        self.assertIn("Mozilla/5.0", headers["User-Agent"])

    async def test_referer_defaults_to_image_url(self) -> None:
        factory, _ = _fake_client_session()
        with patch("image_fetcher.aiohttp.ClientSession", factory):
            await fetch_image("https://cdn.example.com/p.png")
        self.assertEqual(factory.call_args.kwargs["headers"]["Referer"], "https://cdn.example.com/p.png")

    async def test_content_type_parameters_ignored(self) -> None:
        factory, _ = _fake_client_session(content_type="image/webp; charset=binary")
        with patch("image_fetcher.aiohttp.ClientSession", factory):
            image = await fetch_image("https://cdn.example.com/p.webp")
        self.assertEqual(image.content_type, "image/webp")

    async def test_html_response_is_not_an_image(self) -> None:
        factory, _ = _fake_client_session(content_type="text/html; charset=utf-8", body=b"<html></html>")
        with patch("image_fetcher.aiohttp.ClientSession", factory):
            with self.assertRaises(ImageFetchError) as ctx:
                await fetch_image("https://cdn.example.com/p.jpg")
        self.assertEqual(str(ctx.exception), NOT_AN_IMAGE)

    async def test_error_status_reported(self) -> None:
        factory, _ = _fake_client_session(status=403)
        with patch("image_fetcher.aiohttp.ClientSession", factory):
            with self.assertRaises(ImageFetchError) as ctx:
                await fetch_image("https://cdn.example.com/p.jpg")
        self.assertEqual(str(ctx.exception), "Could not fetch image (403)")

    async def test_network_error_reported(self) -> None:
        factory, _ = _fake_client_session(error=aiohttp.ClientConnectionError("refused"))
        with patch("image_fetcher.aiohttp.ClientSession", factory):
            with self.assertRaises(ImageFetchError) as ctx:
                await fetch_image("https://cdn.example.com/p.jpg")
        self.assertIn("Could not reach image URL", str(ctx.exception))

    async def test_declared_length_over_cap_rejected_before_reading(self) -> None:
        factory, session = _fake_client_session(content_length=10_000)
        with patch("image_fetcher.aiohttp.ClientSession", factory), \
                patch("image_fetcher.MAX_IMAGE_BYTES", 100):
            with self.assertRaises(ImageFetchError) as ctx:
                await fetch_image("https://cdn.example.com/p.png")
        self.assertIn("Image too large", str(ctx.exception))
        self.assertEqual(session.response.consumed, [])

    async def test_chunked_body_stops_once_over_cap(self) -> None:
        chunks = [b"\x00" * 60, b"\x00" * 60, b"\x00" * 60, b"\x00" * 60]
        factory, session = _fake_client_session(chunks=chunks, content_length=None)
        with patch("image_fetcher.aiohttp.ClientSession", factory), \
                patch("image_fetcher.MAX_IMAGE_BYTES", 100):
            with self.assertRaises(ImageFetchError) as ctx:
                await fetch_image("https://cdn.example.com/p.png")
        self.assertIn("Image too large", str(ctx.exception))
        self.assertEqual(len(session.response.consumed), 2)

    async def test_chunked_body_reassembled(self) -> None:
        factory, _ = _fake_client_session(chunks=[PNG_BYTES[:10], PNG_BYTES[10:]], content_length=None)
        with patch("image_fetcher.aiohttp.ClientSession", factory):
            image = await fetch_image("https://cdn.example.com/p.png")
        self.assertEqual(image.data, PNG_BYTES)
        self.assertEqual(image.byte_size, len(PNG_BYTES))

    async def test_protocol_relative_url_gets_https(self) -> None:
        factory, session = _fake_client_session()
        with patch("image_fetcher.aiohttp.ClientSession", factory):
            await fetch_image("//cdn.example.com/p.png")
        self.assertEqual(session.get.call_args.args[0], "https://cdn.example.com/p.png")

    async def test_missing_or_invalid_url(self) -> None:
        for raw in (None, "", "   "):
            with self.assertRaises(ImageFetchError):
                await fetch_image(raw)
        with self.assertRaises(ImageFetchError) as ctx:
            await fetch_image("/relative/p.jpg")
        self.assertIn("Invalid image URL", str(ctx.exception))

    async def test_data_uri_decoded_without_network(self) -> None:
        factory, _ = _fake_client_session()
        uri = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
        with patch("image_fetcher.aiohttp.ClientSession", factory):
            image = await fetch_image(uri)
        factory.assert_not_called()
        self.assertEqual(image.payload, uri)
        self.assertEqual(image.data, PNG_BYTES)


class TestDecodeDataUri(unittest.TestCase):
    def test_percent_encoded_body(self) -> None:
        image = decode_data_uri("data:image/svg+xml,%3Csvg%3E%3C/svg%3E")
        self.assertEqual(image.data, b"<svg></svg>")
        self.assertEqual(image.content_type, "image/svg+xml")

    def test_non_image_rejected(self) -> None:
        with self.assertRaises(ImageFetchError) as ctx:
            decode_data_uri("data:text/plain,hello")
        self.assertEqual(str(ctx.exception), NOT_AN_IMAGE)

    def test_malformed(self) -> None:
        with self.assertRaises(ImageFetchError):
            decode_data_uri("data:image/png;base64")
        with self.assertRaises(ImageFetchError):
            decode_data_uri("data:image/png;base64,abc")


if __name__ == "__main__":
    unittest.main()
