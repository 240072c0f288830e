"""Tests for the rembg and webhook clients."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from photoflow_gateway.rembg_client import BackgroundRemovalClient
from photoflow_gateway.webhook_client import WebhookClient
from photoflow_runner.errors import DependencyError, DependencyUnavailable


def _rembg(handler):
    return BackgroundRemovalClient(base_url="http://rembg.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_rembg_health_check():
    client = _rembg(lambda request: httpx.Response(200, json={"status": "healthy"}))
    assert await client.health_check() is True
    report = await client.probe()
    assert report["status"] == "connected"
    assert report["service_info"] == {"status": "healthy"}
    await client.close()


@pytest.mark.asyncio
async def test_rembg_health_check_unreachable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = _rembg(handler)
    assert await client.health_check() is False


@pytest.mark.asyncio
async def test_rembg_remove_background_sends_image_field():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = request.content
        return httpx.Response(200, content=b"png-with-alpha")

    client = _rembg(handler)
    result = await client.remove_background(b"jpeg-bytes", "coat_processed.jpg")

    assert result == b"png-with-alpha"
    assert seen["path"] == "/remove-background"
    assert b'name="image"' in seen["body"]
    assert b'filename="coat_processed.jpg"' in seen["body"]


@pytest.mark.asyncio
async def test_rembg_error_includes_body():
    client = _rembg(lambda request: httpx.Response(500, text="model crashed"))

    with pytest.raises(DependencyError) as excinfo:
        await client.remove_background(b"x", "a.jpg")

    assert "model crashed" in excinfo.value.message
    assert excinfo.value.details["status_code"] == 500


@pytest.mark.asyncio
async def test_rembg_unreachable_during_submission():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = _rembg(handler)
    with pytest.raises(DependencyUnavailable):
        await client.remove_background(b"x", "a.jpg")


@pytest.mark.asyncio
async def test_webhook_notify_success():
    mock_response = MagicMock()
    mock_response.status_code = 200
    mock_response.is_success = True
    mock_response.json.return_value = {"message": "Workflow was started"}

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client.post.return_value = mock_response
        mock_client_class.return_value.__aenter__.return_value = mock_client

        client = WebhookClient(base_url="http://n8n.test")
        outcome = await client.notify_upload({"uploadId": "u1", "totalFiles": 1, "files": []})

        assert outcome.delivered is True
        assert outcome.response == {"message": "Workflow was started"}
        assert outcome.warnings == []
        args, kwargs = mock_client.post.call_args
        assert args[0] == "http://n8n.test/webhook/process-upload"
        assert kwargs["json"]["uploadId"] == "u1"


@pytest.mark.asyncio
async def test_webhook_notify_failure_is_recorded_not_raised():
    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client.post.side_effect = httpx.ConnectError("refused")
        mock_client_class.return_value.__aenter__.return_value = mock_client

        client = WebhookClient(base_url="http://n8n.test")
        outcome = await client.notify_upload({"uploadId": "u2"})

        assert outcome.delivered is False
        assert "refused" in outcome.error
        assert outcome.warnings


@pytest.mark.asyncio
async def test_webhook_non_2xx_is_a_warning():
    def handler(request):
        return httpx.Response(404, json={"message": "webhook not registered"})

    client = WebhookClient(base_url="http://n8n.test", transport=httpx.MockTransport(handler))
    outcome = await client.notify_upload({"uploadId": "u3"})

    assert outcome.delivered is False
    assert outcome.status_code == 404
    assert outcome.warnings == ["Webhook notification failed with status 404"]


@pytest.mark.asyncio
async def test_webhook_health_uses_configured_path():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200)

    client = WebhookClient(
        base_url="http://n8n.test",
        health_path="/webhook/ping",
        transport=httpx.MockTransport(handler),
    )
    assert await client.health_check() is True
    assert paths == ["/webhook/ping"]
