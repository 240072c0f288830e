"""
Client for the background-removal (rembg) microservice.

The service is stateless: ``GET /health`` must answer 2xx, and
``POST /remove-background`` takes a multipart ``image`` field and answers with
the raw PNG (with transparency) on success.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from photoflow_runner.errors import DependencyError, DependencyUnavailable

logger = logging.getLogger(__name__)


class BackgroundRemovalClient:
    """HTTP client for the rembg service."""

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize background removal client.

        Args:
            base_url: Service base URL
            timeout: Request timeout in seconds (segmentation can be slow)
            transport: Optional httpx transport override
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def health_check(self) -> bool:
        """
        Check if the service is available.

        Returns:
            True if service responds with 2xx, False otherwise
        """
        try:
            client = await self._get_client()
            response = await client.get("/health")
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"rembg health check failed: {e}")
            return False

    async def probe(self) -> Dict[str, Any]:
        """Connection report used by the status endpoints."""
        try:
            client = await self._get_client()
            response = await client.get("/health")
        except httpx.HTTPError as e:
            return {"status": "disconnected", "url": self.base_url, "error": str(e)}

        if not response.is_success:
            return {"status": "error", "url": self.base_url, "status_code": response.status_code}

        try:
            info: Any = response.json()
        except ValueError:
            info = response.text
        return {"status": "connected", "url": self.base_url, "service_info": info}

    async def remove_background(
        self,
        image_bytes: bytes,
        filename: str,
        content_type: str = "image/jpeg",
    ) -> bytes:
        """
        Submit one image for segmentation.

        Returns:
            Raw image bytes returned by the service

        Raises:
            DependencyUnavailable: Service could not be reached
            DependencyError: Service answered with a non-2xx status
        """
        try:
            client = await self._get_client()
            response = await client.post(
                "/remove-background",
                files={"image": (filename, image_bytes, content_type)},
            )
        except httpx.HTTPError as e:
            raise DependencyUnavailable(f"rembg service unreachable: {e}") from e

        if not response.is_success:
            body = response.text
            logger.error(f"rembg service error: {response.status_code} - {body}")
            raise DependencyError(
                f"rembg service error: {response.status_code} - {body}",
                details={"status_code": response.status_code, "response": body},
            )
        return response.content
