from __future__ import annotations
import logging
from typing import Optional, Protocol

import aiohttp

from ..config import API_KEY_HEADER, CaptureOptions
from ..events import UploadBatch

log = logging.getLogger(__name__)


class Collector(Protocol):
    async def upload(self, batch: UploadBatch) -> None:
        """Ship one batch. Raise on any failure; the engine decides what that means."""
        ...

    async def close(self) -> None:
        """Release connections. The engine calls this from its own close()."""
        ...


class HttpCollector:
    """POSTs batches as JSON to `{endpoint}/ingest` with a static api key header."""

    def __init__(self, url: str, api_key: str = "", timeout_s: float = 30.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.url = url
        self.api_key = api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_options(cls, opts: CaptureOptions) -> "HttpCollector":
        return cls(opts.ingest_url, opts.api_key)

    async def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def upload(self, batch: UploadBatch) -> None:
        client = await self._client()
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers[API_KEY_HEADER] = self.api_key
        body = batch.model_dump_json(by_alias=True, exclude_none=True)
        async with client.post(self.url, data=body, headers=headers) as resp:
            resp.raise_for_status()
        log.debug("uploaded batch for %s (%d frames)", batch.session_id, len(batch.frames))

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
