"""Push delivery connectors used by the notification service."""

from __future__ import annotations

from typing import Optional, Protocol

import httpx
from loguru import logger


class PushBackend(Protocol):
    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        ...


class PushDeliveryError(RuntimeError):
    """Raised when the push gateway rejects or cannot receive a message."""


class LoggingPushBackend:
    """Record pushes in the structured log when no gateway is configured."""

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        logger.info("Push notification dispatched", recipient=recipient, title=title, metadata=metadata or {})


class WebhookPushBackend:
    """Forward pushes to an HTTP gateway that owns the device tokens."""

    def __init__(
        self,
        url: str,
        *,
        auth_token: str | None = None,
        timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._auth_token = auth_token
        self._timeout = timeout_seconds
        self._client = http_client

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {self._auth_token}"} if self._auth_token else {}
        message = {"to": recipient, "title": title, "body": body, "data": metadata or {}}
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            response = await client.post(self._url, json=message, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PushDeliveryError(f"Push gateway delivery failed: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()
        logger.debug("Push gateway accepted message", recipient=recipient, status_code=response.status_code)


class InMemoryPushBackend:
    """Collect pushes in memory for tests."""

    def __init__(self) -> None:
        self.sent_messages: list[dict[str, object]] = []

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        self.sent_messages.append(
            {
                "recipient": recipient,
                "title": title,
                "body": body,
                "metadata": metadata or {},
            }
        )
