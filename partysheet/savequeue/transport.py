"""HTTP client for the dashboard action endpoints.

Every call posts a JSON body with an ``action`` field and returns the decoded
``{success, ...}`` response. Connection errors, timeouts and 5xx responses are
retried with exponential backoff inside one call; anything else (including a
``success: false`` body) is returned to the caller as-is.

    DashboardClient.save_field(key, value)      → action "save"
    DashboardClient.batch_save(character, ...)  → action "batch_save"
    DashboardClient.create_backup(category)     → backup endpoint
    DashboardClient.send_unload(character, ...) → one blocking batch_save
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, NamedTuple

import httpx

logger = logging.getLogger(__name__)

SESSION_COOKIE = "portal_session"

_BACKUP_ACTIONS = {
    "session": "create_session_backup",
    "recent": "create_pre_save_backup",
    "manual": "create_backup",
}


class FieldKey(NamedTuple):
    """Identifies one editable field on one character."""

    character: str
    section: str
    field: str
    index: int | None = None

    def as_update(self, value: Any) -> dict[str, Any]:
        update: dict[str, Any] = {"section": self.section, "field": self.field, "value": value}
        if self.index is not None:
            update["index"] = self.index
        return update


class TransportError(RuntimeError):
    """The server could not be reached or kept failing with 5xx."""


class DashboardClient:
    """Async client for ``/api/dashboard`` and ``/api/backups``.

    Args:
        base_url:       Site root, e.g. "http://localhost:13013".
        session_token:  Value of the login cookie.
        timeout:        Per-request timeout in seconds.
        attempts:       Tries per call for retryable failures.
        backoff:        First retry delay; doubles each retry.
        transport:      Optional httpx transport (tests use MockTransport).
        sync_transport: Optional transport for the blocking unload request.
    """

    def __init__(
        self,
        base_url: str,
        session_token: str = "",
        timeout: float = 10.0,
        attempts: int = 3,
        backoff: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
        sync_transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._cookies = {SESSION_COOKIE: session_token} if session_token else {}
        self._timeout = timeout
        self._attempts = max(1, attempts)
        self._backoff = backoff
        self._transport = transport
        self._sync_transport = sync_transport

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        last_error: Exception | None = None
        for attempt in range(1, self._attempts + 1):
            try:
                async with httpx.AsyncClient(
                    base_url=self._base_url,
                    timeout=self._timeout,
                    cookies=self._cookies,
                    transport=self._transport,
                ) as client:
                    resp = await client.post(path, json=body)
            except httpx.TransportError as e:
                last_error = e
            else:
                # only 5xx is retried; a bad body from a live server is final
                if resp.status_code < 500:
                    return self._decode(resp)
                last_error = TransportError(f"{path} returned HTTP {resp.status_code}")
            if attempt == self._attempts:
                break
            delay = self._backoff * 2 ** (attempt - 1)
            logger.debug(
                "%s %s failed (%s), retry %d/%d in %.2fs",
                path, body.get("action"), last_error, attempt, self._attempts - 1, delay,
            )
            await asyncio.sleep(delay)
        logger.warning("%s %s failed after %d attempts", path, body.get("action"), self._attempts)
        raise TransportError(f"{body.get('action')} failed after {self._attempts} attempts") from last_error

    @staticmethod
    def _decode(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(f"Non-JSON response (HTTP {resp.status_code})") from e
        if not isinstance(data, dict):
            raise TransportError("Unexpected response shape")
        return data

    async def load(self, character: str) -> dict[str, Any]:
        return await self._post("/api/dashboard", {"action": "load", "character": character})

    async def save_field(self, key: FieldKey, value: Any) -> dict[str, Any]:
        body = {"action": "save", "character": key.character, **key.as_update(value)}
        return await self._post("/api/dashboard", body)

    async def batch_save(self, character: str, updates: list[dict[str, Any]]) -> dict[str, Any]:
        body = {"action": "batch_save", "character": character, "updates": updates}
        return await self._post("/api/dashboard", body)

    async def create_backup(self, category: str) -> dict[str, Any]:
        action = _BACKUP_ACTIONS.get(category)
        if action is None:
            raise ValueError(f"Unknown backup category: {category}")
        return await self._post("/api/backups", {"action": action})

    def send_unload(self, character: str, updates: list[dict[str, Any]]) -> dict[str, Any]:
        """Blocking single-shot batch save, for use while the page goes away."""
        body = {"action": "batch_save", "character": character, "updates": updates}
        try:
            with httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout,
                cookies=self._cookies,
                transport=self._sync_transport,
            ) as client:
                resp = client.post("/api/dashboard", json=body)
        except httpx.TransportError as e:
            raise TransportError(f"Unload save failed: {e}") from e
        if resp.status_code >= 500:
            raise TransportError(f"Unload save returned HTTP {resp.status_code}")
        return self._decode(resp)
