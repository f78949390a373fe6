"""
Image Fetcher — resolves an observed image reference into raw bytes.

A reference is either an inline ``data:image/...;base64,`` payload or a
remote ``http(s)://`` address. It is parsed once into a tagged variant
(``InlineImage`` / ``RemoteImage``) and fetched according to its kind.

Usage:
    from fxharvest.image_fetcher import ImageFetcher

    async with ImageFetcher(timeout=30) as fetcher:
        data = await fetcher.fetch("https://example.com/a.png")
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional, Union

import aiohttp

from fxharvest.errors import FetchError

logger = logging.getLogger("image_fetcher")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_FETCH_TIMEOUT = 30.0  # seconds
USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) FXHarvest/1.0"

INLINE_PREFIX = "data:image"
BASE64_MARKER = ";base64,"
REMOTE_PREFIXES = ("http://", "https://")


# ---------------------------------------------------------------------------
# Reference variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InlineImage:
    """Base64 image data embedded in the reference itself."""
    payload: str
    mime_type: str = "image/png"


@dataclass(frozen=True)
class RemoteImage:
    """Image reachable with a plain GET."""
    url: str


ImageSource = Union[InlineImage, RemoteImage]


def parse_reference(reference: str) -> ImageSource:
    """Classify *reference*; raise FetchError for unsupported forms."""
    ref = (reference or "").strip()
    if ref.startswith(INLINE_PREFIX):
        header, sep, payload = ref.partition(BASE64_MARKER)
        if not sep:
            raise FetchError("Inline image is not base64 encoded", reference=ref)
        mime_type = header[len("data:"):] or "image/png"
        return InlineImage(payload=payload, mime_type=mime_type)
    if ref.startswith(REMOTE_PREFIXES):
        return RemoteImage(url=ref)
    raise FetchError(f"Unsupported image reference: {ref[:40]!r}", reference=ref)


def decode_inline(image: InlineImage) -> bytes:
    payload = "".join(image.payload.split())
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FetchError(f"Invalid base64 payload: {exc}", reference=image.payload) from exc


# ---------------------------------------------------------------------------
# ImageFetcher
# ---------------------------------------------------------------------------

class ImageFetcher:
    """
    Fetches image bytes for page references.

    Remote fetches share one aiohttp session and are bounded by
    ``timeout`` seconds; expiry raises FetchError like any transport error.
    """

    def __init__(self, timeout: float = DEFAULT_FETCH_TIMEOUT):
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    # -- Session management -------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": USER_AGENT, "Accept": "image/*,*/*;q=0.8"},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # -- Fetch --------------------------------------------------------------

    async def fetch(self, reference: str) -> bytes:
        """Return the raw bytes behind *reference*."""
        source = parse_reference(reference)
        if isinstance(source, InlineImage):
            data = decode_inline(source)
            logger.debug("Decoded inline %s (%d bytes)", source.mime_type, len(data))
            return data
        return await self._fetch_remote(source)

    async def _fetch_remote(self, source: RemoteImage) -> bytes:
        session = await self._get_session()
        try:
            async with session.get(source.url) as resp:
                if resp.status >= 400:
                    raise FetchError(
                        f"HTTP {resp.status} fetching image",
                        reference=source.url,
                        status_code=resp.status,
                    )
                data = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError(
                f"Network error fetching image ({type(exc).__name__}): {exc}",
                reference=source.url,
            ) from exc
        logger.debug("Fetched %s (%d bytes)", source.url[:80], len(data))
        return data
