# src/tasksync/sync/client.py

"""
HTTP transport for the sync API (httpx.AsyncClient).

Error mapping:
- timeouts / connection problems / non-2xx  -> NetworkError
- body that is not JSON or not a sync response -> ProtocolError
No retries here: a failed round simply leaves the log intact for the next one.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import NetworkError, ProtocolError
from ..tasks.task_models import Folder
from .folders import folders_from_payload
from .wire import CommandBatch, SyncResponse, parse_response

logger = logging.getLogger(__name__)


def _make_timeout(connect_s: float, read_s: float) -> httpx.Timeout:
    return httpx.Timeout(connect=connect_s, read=read_s, write=10.0, pool=connect_s)


def friendly_sync_error_message(err: Exception) -> str:
    """Short user-facing text for a failed round."""
    if isinstance(err, NetworkError):
        if err.status_code in (401, 403):
            return "Sync rejected (not authorized). Check TASKSYNC_API_TOKEN in .env."
        if err.status_code is not None:
            return f"Sync server answered HTTP {err.status_code}. Will retry later."
        return "Sync server unreachable. Changes are kept locally and will be retried."
    if isinstance(err, ProtocolError):
        return f"Sync response rejected: {err}"
    return str(err).strip() or "Sync error."


class HttpSyncClient:
    """
    SyncTransport + FolderSource over HTTP.

    The underlying AsyncClient is created lazily and must be closed with aclose().
    A custom httpx transport can be injected (tests use httpx.MockTransport).
    """

    def __init__(self, settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        base_url = str(getattr(settings, "api_base_url", "") or "").strip()
        if not base_url:
            raise RuntimeError("Sync API base URL is not set. Set TASKSYNC_API_BASE_URL in your .env.")

        self._base_url = base_url.rstrip("/")
        self._token = getattr(settings, "api_token", None)
        self._sync_path = str(getattr(settings, "sync_path", "/api/v2/sync/commands"))
        self._folders_path = str(getattr(settings, "folders_path", "/api/v2/folders"))
        self._timeout = _make_timeout(
            float(getattr(settings, "connect_timeout_seconds", 5.0)),
            float(getattr(settings, "read_timeout_seconds", 25.0)),
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token and str(self._token).strip():
            headers["Authorization"] = f"Bearer {str(self._token).strip()}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers(),
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, *, json: Any = None) -> Any:
        client = self._get_client()
        try:
            resp = await client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if resp.status_code < 200 or resp.status_code >= 300:
            body = resp.text[:300]
            logger.debug("%s %s -> HTTP %s: %s", method, path, resp.status_code, body)
            raise NetworkError(
                f"{method} {path} -> HTTP {resp.status_code}", status_code=resp.status_code
            )

        try:
            return resp.json()
        except ValueError as e:
            raise ProtocolError(f"{method} {path} returned a non-JSON body") from e

    async def send_batch(self, batch: CommandBatch) -> SyncResponse:
        payload = batch.to_payload()
        logger.info("Sending sync batch: %d command(s)", len(batch.commands))
        logger.debug("Sync batch payload: %r", payload)
        data = await self._request("POST", self._sync_path, json=payload)
        return parse_response(data)

    async def fetch_folders(self) -> list[Folder]:
        data = await self._request("GET", self._folders_path)
        return folders_from_payload(data)
