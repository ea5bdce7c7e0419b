"""HTTP client for the agent helper's loopback gateway."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger("slackzc.gateway")

DEFAULT_TIMEOUT = 15.0
DEFAULT_CONNECT_TIMEOUT = 5.0


class GatewayError(RuntimeError):
    """Raised when the gateway rejects a request or cannot be reached."""


class GatewayClient:
    """Speaks ``/pair``, ``/health`` and ``/webhook`` to a local gateway."""

    def __init__(
        self,
        port: int,
        *,
        bearer: str | None = None,
        host: str = "127.0.0.1",
        timeout: float = DEFAULT_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = f"http://{host}:{port}"
        self._bearer = bearer
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def bearer(self) -> str | None:
        return self._bearer

    def is_paired(self) -> bool:
        return self._bearer is not None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        )

    def _auth_headers(self) -> dict[str, str]:
        if self._bearer is None:
            return {}
        return {"Authorization": f"Bearer {self._bearer}"}

    async def pair(self, code: str) -> str:
        """Exchange a one-time pairing *code* for a bearer token and keep it."""
        try:
            async with self._client() as client:
                response = await client.post("/pair", headers={"X-Pairing-Code": code})
        except httpx.HTTPError as exc:
            raise GatewayError(f"Pairing request failed: {exc}") from exc
        if not response.is_success:
            raise GatewayError(f"Pairing failed: {response.status_code}")
        try:
            token = response.json()["token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise GatewayError("Pairing response has no token") from exc
        if not isinstance(token, str) or not token:
            raise GatewayError("Pairing response has no token")
        self._bearer = token
        logger.info("Successfully paired with agent gateway")
        return token

    async def health_check(self) -> bool:
        """Return ``True`` when ``/health`` answers 2xx; never raises on transport errors."""
        try:
            async with self._client() as client:
                response = await client.get("/health", headers=self._auth_headers())
        except httpx.HTTPError as exc:
            logger.debug("Health check failed: %s", exc)
            return False
        return response.is_success

    async def send_to_agent(self, payload: dict[str, Any]) -> str:
        """POST *payload* to ``/webhook`` and return the agent's reply text."""
        if self._bearer is None:
            raise GatewayError("Not paired with gateway")
        try:
            async with self._client() as client:
                response = await client.post(
                    "/webhook", json=payload, headers=self._auth_headers()
                )
        except httpx.HTTPError as exc:
            raise GatewayError(f"Webhook request failed: {exc}") from exc
        if not response.is_success:
            raise GatewayError(f"Webhook failed: {response.status_code}")
        return response.text
