"""
HTTP API Source: GET/POST the collection over the catalog HTTP API.

Endpoints (relative to CATALOG_API_URL):
    /api/tests     catalog snapshot
    /api/settings  settings snapshot

Static deployments answer unknown routes with an HTML page and status 200.
Only application/json bodies count as data; anything else means the API is
not there, which is UNREACHABLE, never MALFORMED.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from ..errors import ErrorKind, SyncError
from ..models import Collection, Snapshot, parse_snapshot
from .base import SourceAdapter, SourceResult, Tier

API_PATHS = {
    Collection.CATALOG: "/api/tests",
    Collection.SETTINGS: "/api/settings",
}


def is_json_response(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    return "application/json" in content_type.lower()


class HttpApiSource(SourceAdapter):
    """Reads/writes a collection through the HTTP API."""

    tier = Tier.HTTP_API
    writable = True

    def __init__(
        self,
        collection: Collection,
        base_url: Optional[str],
        logger: Any,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            collection: Which collection this adapter serves
            base_url: API root, e.g. "http://127.0.0.1:3010"; None/"" disables the tier
            logger: LogUtil instance
            timeout: Request timeout in seconds (per-call clients only)
            client: Shared AsyncClient; when omitted a client is opened per call
        """
        super().__init__(collection, logger)
        self._base_url = (base_url or "").rstrip("/")
        self._timeout = timeout
        self._client = client

    @property
    def url(self) -> str:
        return f"{self._base_url}{API_PATHS[self.collection]}"

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                yield client

    async def read(self) -> SourceResult:
        t0 = time.time()

        if not self._base_url:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.UNREACHABLE, "no API endpoint configured", t0,
            )

        try:
            async with self._session() as client:
                response = await client.get(self.url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.UNREACHABLE,
                f"{type(e).__name__}: {e}", t0,
            )

        if not is_json_response(response):
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.UNREACHABLE,
                f"unstructured response ({response.headers.get('content-type', 'no content-type')}, "
                f"HTTP {response.status_code})", t0,
            )

        if response.status_code != 200:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.UNREACHABLE,
                f"HTTP {response.status_code}", t0,
            )

        try:
            snapshot = parse_snapshot(self.collection, response.json())
        except ValueError as e:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.MALFORMED, str(e)[:300], t0,
            )

        return self._classify(snapshot, t0)

    async def write(self, snapshot: Snapshot) -> None:
        if not self._base_url:
            raise SyncError(ErrorKind.UNREACHABLE, "no API endpoint configured")

        try:
            async with self._session() as client:
                response = await client.post(self.url, json=snapshot.to_wire())
        except httpx.HTTPError as e:
            raise SyncError(ErrorKind.UNREACHABLE, f"{type(e).__name__}: {e}") from e

        if not is_json_response(response):
            raise SyncError(
                ErrorKind.UNREACHABLE,
                f"unstructured response (HTTP {response.status_code}); API not deployed?",
            )

        if response.status_code == 422:
            raise SyncError(ErrorKind.MALFORMED, f"API rejected payload: {response.text[:300]}")

        if response.status_code >= 400:
            raise SyncError(ErrorKind.UNREACHABLE, f"HTTP {response.status_code}: {response.text[:300]}")
