"""
Read-through CDN path for public objects.

Non-JSON reads try the CDN before the bucket. The CDN may serve stale
content after a write, so callers that assert durability read the bucket
directly and JSON keys never come here.

Outcomes of `fetch`:
- CdnResponse: 2xx with a body within the cap
- None: any failure, timeout or non-2xx (caller falls back to the bucket)
- ObjectTooLargeError: advertised or streamed size above the cap
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx

from blobcoord.core import constants as C
from blobcoord.storage.backends import ObjectTooLargeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CdnResponse:
    key: str
    body: bytes
    content_type: Optional[str] = None


class CdnReader:
    """
    GET objects from a CDN base URL with a fixed timeout and size cap.

    Example:
        async with CdnReader("https://cdn.example.com") as cdn:
            hit = await cdn.fetch("images/logo.png")
    """

    __slots__ = ("_base_url", "_timeout_ms", "_max_bytes", "_client", "_owns_client")

    def __init__(
        self,
        base_url: str,
        *,
        timeout_ms: int = C.CDN_TIMEOUT_MS,
        max_bytes: int = C.MAX_READ_BYTES,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be non-empty")
        self._base_url = base_url.rstrip("/")
        self._timeout_ms = timeout_ms
        self._max_bytes = max_bytes
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_ms / 1000),
            headers={"User-Agent": C.CDN_USER_AGENT},
            follow_redirects=True,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def url_for(self, key: str) -> str:
        return f"{self._base_url}/{quote(key.lstrip('/'), safe='/')}"

    async def fetch(self, key: str) -> Optional[CdnResponse]:
        """
        Fetch an object through the CDN.

        Raises:
            ObjectTooLargeError: Body is larger than the cap.
        """
        url = self.url_for(key)
        try:
            return await asyncio.wait_for(self._get(key, url), timeout=self._timeout_ms / 1000)
        except ObjectTooLargeError:
            raise
        except asyncio.TimeoutError:
            logger.warning(f"CDN fetch for {key} timed out after {self._timeout_ms}ms")
        except httpx.HTTPError as e:
            logger.warning(f"CDN fetch for {key} failed: {e}")
        except Exception as e:
            logger.warning(f"CDN fetch for {key} failed: {type(e).__name__}: {e}")
        return None

    async def _get(self, key: str, url: str) -> Optional[CdnResponse]:
        async with self._client.stream("GET", url) as response:
            if not response.is_success:
                logger.debug(f"CDN returned {response.status_code} for {key}")
                return None

            declared = response.headers.get("Content-Length")
            if declared is not None and declared.isdigit() and int(declared) > self._max_bytes:
                raise ObjectTooLargeError(key, int(declared), self._max_bytes)

            chunks: list[bytes] = []
            total = 0
            async for chunk in response.aiter_bytes():
                total += len(chunk)
                if total > self._max_bytes:
                    raise ObjectTooLargeError(key, total, self._max_bytes)
                chunks.append(chunk)

            return CdnResponse(
                key=key,
                body=b"".join(chunks),
                content_type=response.headers.get("Content-Type"),
            )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> CdnReader:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
