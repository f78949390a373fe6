"""
Tests for the image fetcher.

Inline payloads are decoded for real; remote fetches use a mocked
aiohttp session.
"""

import asyncio
import base64

import aiohttp
import pytest

from fxharvest.errors import FetchError
from fxharvest.image_fetcher import (
    ImageFetcher,
    InlineImage,
    RemoteImage,
    decode_inline,
    parse_reference,
)


# ===================================================================
# parse_reference
# ===================================================================

class TestParseReference:

    @pytest.mark.unit
    def test_inline(self, png_data_url):
        source = parse_reference(png_data_url)
        assert isinstance(source, InlineImage)
        assert source.mime_type == "image/png"

    @pytest.mark.unit
    def test_inline_jpeg_mime(self):
        source = parse_reference("data:image/jpeg;base64,AAAA")
        assert source == InlineImage(payload="AAAA", mime_type="image/jpeg")

    @pytest.mark.unit
    @pytest.mark.parametrize("url", ["https://cdn.example.com/a.png", "http://x/y"])
    def test_remote(self, url):
        assert parse_reference(url) == RemoteImage(url=url)

    @pytest.mark.unit
    @pytest.mark.parametrize("ref", ["blob:https://x/123", "", "/relative.png",
                                     "data:image/svg+xml;utf8,<svg/>"])
    def test_unsupported(self, ref):
        with pytest.raises(FetchError):
            parse_reference(ref)


# ===================================================================
# Inline decoding
# ===================================================================

class TestInlineDecode:

    @pytest.mark.unit
    def test_round_trip_exact_bytes(self, other_bytes):
        ref = "data:image/png;base64," + base64.b64encode(other_bytes).decode()
        data = decode_inline(parse_reference(ref))
        assert len(data) == len(other_bytes)
        assert data == other_bytes

    @pytest.mark.unit
    def test_whitespace_in_payload_ignored(self, png_bytes):
        encoded = base64.b64encode(png_bytes).decode()
        wrapped = "\n".join(encoded[i:i + 20] for i in range(0, len(encoded), 20))
        assert decode_inline(InlineImage(payload=wrapped)) == png_bytes

    @pytest.mark.unit
    def test_invalid_base64(self):
        with pytest.raises(FetchError):
            decode_inline(InlineImage(payload="not*base64!"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fetch_inline_does_no_io(self, png_data_url, png_bytes):
        fetcher = ImageFetcher()
        assert await fetcher.fetch(png_data_url) == png_bytes
        assert fetcher._session is None


# ===================================================================
# Remote fetch
# ===================================================================

class TestRemoteFetch:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fetch_returns_body(self, mock_aiohttp_response, mock_aiohttp_session, png_bytes):
        session = mock_aiohttp_session(mock_aiohttp_response(200, png_bytes))
        fetcher = ImageFetcher()
        fetcher._session = session
        data = await fetcher.fetch("https://cdn.example.com/a.png")
        assert data == png_bytes
        session.get.assert_called_once_with("https://cdn.example.com/a.png")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_http_error_status(self, mock_aiohttp_response, mock_aiohttp_session):
        fetcher = ImageFetcher()
        fetcher._session = mock_aiohttp_session(mock_aiohttp_response(404, b"missing"))
        with pytest.raises(FetchError) as info:
            await fetcher.fetch("https://cdn.example.com/gone.png")
        assert info.value.status_code == 404

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transport_error(self, mock_aiohttp_session):
        fetcher = ImageFetcher()
        fetcher._session = mock_aiohttp_session(error=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(FetchError):
            await fetcher.fetch("https://cdn.example.com/a.png")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout(self, mock_aiohttp_session):
        fetcher = ImageFetcher(timeout=0.1)
        fetcher._session = mock_aiohttp_session(error=asyncio.TimeoutError())
        with pytest.raises(FetchError) as info:
            await fetcher.fetch("https://slow.example.com/a.png")
        assert "TimeoutError" in str(info.value)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_session_created_with_timeout(self):
        fetcher = ImageFetcher(timeout=12)
        try:
            session = await fetcher._get_session()
            assert session.timeout.total == 12
        finally:
            await fetcher.close()
        assert fetcher._session is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_closes_session(self, mock_aiohttp_session):
        session = mock_aiohttp_session()
        async with ImageFetcher() as fetcher:
            fetcher._session = session
        session.close.assert_awaited_once()
