from __future__ import annotations

from typing import Any

import httpx
import orjson
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.integrations.notifications.base import Notifier


class WebhookNotifier(Notifier):
    """Posts notification payloads to an automation webhook (n8n style)."""

    def __init__(self, url: str, token: str = "", timeout_seconds: float = 10.0) -> None:
        self._url = url
        self._token = token
        self._timeout = timeout_seconds
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
    )
    async def send(self, payload: dict[str, Any]) -> None:
        if not self._url:
            msg = "Notification webhook URL is not configured"
            raise RuntimeError(msg)

        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        response = await self.client.post(self._url, headers=headers, content=orjson.dumps(payload))
        response.raise_for_status()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
