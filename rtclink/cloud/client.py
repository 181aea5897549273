"""
Async client for the session management API.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import ConfigFetchError, SessionApiError
from ..signaling.session import FALLBACK_CONFIGURATION, Configuration

LOG = logging.getLogger(__name__)


def _unwrap(body: Any) -> Any:
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        return body["data"]
    return body


class SessionApiClient:
    """
    Thin wrapper around ``httpx.AsyncClient``.

    ``transport`` lets tests plug in ``httpx.MockTransport`` or an ASGI app.
    """

    def __init__(
        self,
        base_url: str,
        *,
        user_id: str,
        token: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"X-User-Id": str(user_id), "source": "rtclink"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
            headers["token"] = token
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            transport=transport,
        )

    async def __aenter__(self) -> "SessionApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise SessionApiError(f"{method} {url} failed: {exc}") from exc
        LOG.info("[HTTP] %s %s -> %s", method, url, response.status_code)
        if response.status_code >= 400:
            raise SessionApiError(
                f"{method} {url} returned {response.status_code}", status_code=response.status_code
            )
        try:
            return response.json()
        except ValueError as exc:
            raise SessionApiError(f"{method} {url} returned a non-JSON body") from exc

    async def create_session(self, device_id: str) -> str:
        body = await self._request("POST", "/session", json={"deviceId": device_id, "deviceSn": device_id})
        data = _unwrap(body)
        session_id = data.get("sessionId") if isinstance(data, dict) else None
        if not session_id:
            raise SessionApiError("create session response carries no sessionId")
        return str(session_id)

    async def session_status(self, session_id: str) -> Any:
        return _unwrap(await self._request("GET", f"/session/{session_id}/status"))

    async def session_config(self, session_id: str) -> Configuration:
        try:
            body = await self._request("GET", f"/session/{session_id}/config")
        except SessionApiError as exc:
            raise ConfigFetchError(str(exc), status_code=exc.status_code) from exc
        if not isinstance(body, dict) or "data" not in body:
            raise ConfigFetchError("config response has no data object")
        try:
            return Configuration.from_payload(body["data"])
        except ValueError as exc:
            raise ConfigFetchError(f"config response malformed: {exc}") from exc

    async def config_or_fallback(self, session_id: str) -> Configuration:
        """Fetch the configuration, installing the built-in fallback on any failure."""

        try:
            config = await self.session_config(session_id)
        except ConfigFetchError as exc:
            LOG.error("Fetching P2P configuration failed (%s); using fallback configuration", exc)
            return FALLBACK_CONFIGURATION
        LOG.info("P2P configuration fetched: %s", ", ".join(config.ice_servers()))
        return config


def describe(config: Configuration) -> Dict[str, Any]:
    payload = config.to_payload()
    payload["fallback"] = config.is_fallback
    payload["keepAliveInterval"] = config.keepalive_interval_ms
    return payload


__all__ = ["SessionApiClient", "describe"]
