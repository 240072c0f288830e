"""HTTP client for the workflow-automation webhook (n8n)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class NotifyOutcome:
    """Recorded result of a best-effort notification."""
    delivered: bool
    status_code: Optional[int] = None
    response: Any = None
    error: Optional[str] = None
    warnings: list = field(default_factory=list)


class WebhookClient:
    """HTTP client for the workflow webhook. Notifications are sent once, never retried."""

    def __init__(
        self,
        base_url: str = "http://localhost:5678",
        health_path: str = "/webhook/from-backend",
        notify_path: str = "/webhook/process-upload",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize webhook client.

        Args:
            base_url: Webhook service base URL
            health_path: Path answering 2xx when the service is reachable
            notify_path: Path receiving upload notifications
            timeout: HTTP request timeout in seconds
            transport: Optional httpx transport override
        """
        self.base_url = base_url.rstrip("/")
        self.health_path = health_path
        self.notify_path = notify_path
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(self.base_url + self.health_path)
                return response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"Webhook health check failed: {e}")
            return False

    async def probe(self) -> Dict[str, Any]:
        """Connection report used by the status endpoints."""
        url = self.base_url + self.health_path
        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            return {"status": "disconnected", "url": url, "error": str(e)}
        status = "connected" if response.is_success else "error"
        return {"status": status, "url": url, "status_code": response.status_code}

    async def notify_upload(self, payload: Dict[str, Any]) -> NotifyOutcome:
        """
        Send an upload notification.

        Failures are logged and reported in the outcome, never raised.

        Args:
            payload: JSON envelope describing the upload batch

        Returns:
            NotifyOutcome describing delivery
        """
        upload_id = payload.get("uploadId")
        try:
            async with self._client() as client:
                response = await client.post(self.base_url + self.notify_path, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Webhook notify network error for upload {upload_id}: {e}")
            return NotifyOutcome(
                delivered=False,
                error=str(e),
                warnings=[f"Webhook notification failed: {e}"],
            )

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if response.is_success:
            logger.info(f"Webhook notified for upload {upload_id}")
            return NotifyOutcome(delivered=True, status_code=response.status_code, response=body)

        logger.warning(f"Webhook notify failed with status {response.status_code} for upload {upload_id}")
        return NotifyOutcome(
            delivered=False,
            status_code=response.status_code,
            response=body,
            error=f"HTTP {response.status_code}",
            warnings=[f"Webhook notification failed with status {response.status_code}"],
        )
