"""
Blob fetch for synthesized audio assets.

Resolves ``data:`` URLs locally and fetches ``http(s)`` URLs with httpx.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Optional

import httpx

from errors import AssemblyError
from services.cache import TTLCache
from config import get_settings, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FetchedAsset:
    content: bytes
    content_type: str

    @property
    def is_wav(self) -> bool:
        return "wav" in self.content_type.lower()


class AudioFetcher:
    """
    Fetches audio assets by URL.

    Any failure (bad data URL, transport error, non-2xx status) raises
    AssemblyError. An injected TTLCache avoids refetching assets that were
    just read during synthesis.
    """

    DEFAULT_CONTENT_TYPE = "audio/mpeg"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[TTLCache] = None,
        timeout: float = None
    ):
        self.settings = get_settings()
        self.timeout = timeout or self.settings.fetch_timeout
        self._client = client
        self.cache = cache

    async def fetch(self, url: str) -> FetchedAsset:
        if not url:
            raise AssemblyError("Empty audio URL", url=url)

        if self.cache is not None:
            cached = self.cache.get(url)
            if cached is not None:
                return cached

        if url.startswith("data:"):
            asset = self._decode_data_url(url)
        elif url.startswith(("http://", "https://")):
            asset = await self._fetch_http(url)
        else:
            raise AssemblyError(f"Unsupported audio URL scheme: {url[:32]}", url=url)

        if self.cache is not None:
            self.cache.set(url, asset)
        return asset

    def _decode_data_url(self, url: str) -> FetchedAsset:
        header, sep, payload = url.partition(",")
        if not sep or ";base64" not in header:
            raise AssemblyError("Invalid data URL audio", url=url[:32])
        content_type = header[len("data:"):].split(";")[0] or self.DEFAULT_CONTENT_TYPE
        try:
            content = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AssemblyError(f"Invalid base64 audio payload: {e}", url=url[:32]) from e
        return FetchedAsset(content=content, content_type=content_type)

    async def _fetch_http(self, url: str) -> FetchedAsset:
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            logger.error(f"Audio fetch failed for {url}: {e}")
            raise AssemblyError(f"Failed to fetch audio: {e}", url=url) from e

        if response.status_code >= 400:
            raise AssemblyError(f"Failed to fetch audio ({response.status_code})", url=url)

        content_type = response.headers.get("content-type", self.DEFAULT_CONTENT_TYPE)
        return FetchedAsset(content=response.content, content_type=content_type)
