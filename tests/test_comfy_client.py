"""Tests for the ComfyUI client, including the completion polling loop."""

import json

import httpx
import pytest

from photoflow_gateway.comfy_client import ComfyClient, JobState, job_state
from photoflow_runner.errors import DependencyError, DependencyUnavailable, GenerationTimeout


class FakeClock:
    """Monotonic clock that only advances when the client sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _client(handler, clock=None, **kwargs):
    clock = clock or FakeClock()
    return ComfyClient(
        base_url="http://comfy.test",
        transport=httpx.MockTransport(handler),
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


COMPLETED_ENTRY = {
    "status": {"status_str": "success", "completed": True},
    "outputs": {"9": {"images": [{"filename": "ComfyUI_00001_.png", "subfolder": "", "type": "output"}]}},
}


def test_job_state_classification():
    assert job_state(None) is JobState.PENDING
    assert job_state({}) is JobState.PENDING
    assert job_state({"status": {"status_str": "error", "completed": False}, "outputs": {}}) is JobState.FAILED
    assert job_state(COMPLETED_ENTRY) is JobState.COMPLETED
    assert job_state({"status": {"status_str": "running", "completed": False}}) is JobState.RUNNING


@pytest.mark.asyncio
async def test_queue_prompt_posts_graph():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"prompt_id": "p-1", "number": 3})

    client = _client(handler)
    prompt_id = await client.queue_prompt({"3": {"class_type": "KSampler", "inputs": {}}})
    await client.close()

    assert prompt_id == "p-1"
    assert seen["path"] == "/prompt"
    assert seen["body"]["prompt"]["3"]["class_type"] == "KSampler"


@pytest.mark.asyncio
async def test_queue_prompt_rejected():
    client = _client(lambda request: httpx.Response(400, text="bad graph"))

    with pytest.raises(DependencyError, match="bad graph"):
        await client.queue_prompt({})


@pytest.mark.asyncio
async def test_queue_prompt_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(DependencyUnavailable):
        await client.queue_prompt({})


@pytest.mark.asyncio
async def test_wait_for_completion_polls_until_done():
    responses = [{}, {"p-1": {"status": {"status_str": "running", "completed": False}}}, {"p-1": COMPLETED_ENTRY}]
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json=responses[len(calls) - 1])

    clock = FakeClock()
    client = _client(handler, clock)
    entry = await client.wait_for_completion("p-1")

    assert entry == COMPLETED_ENTRY
    assert calls == ["/history/p-1"] * 3
    assert clock.sleeps == [2.0, 2.0]


@pytest.mark.asyncio
async def test_wait_for_completion_reports_engine_error():
    failed = {"p-1": {"status": {"status_str": "error", "completed": False}, "outputs": {}}}
    client = _client(lambda request: httpx.Response(200, json=failed))

    with pytest.raises(DependencyError) as excinfo:
        await client.wait_for_completion("p-1")
    assert excinfo.value.details["prompt_id"] == "p-1"


@pytest.mark.asyncio
async def test_wait_for_completion_times_out():
    clock = FakeClock()
    client = _client(lambda request: httpx.Response(200, json={}), clock, poll_interval=2.0, max_wait=10.0)

    with pytest.raises(GenerationTimeout) as excinfo:
        await client.wait_for_completion("p-1")

    assert excinfo.value.code == "TIMEOUT"
    assert excinfo.value.status_code == 504
    assert len(clock.sleeps) == 5
    assert clock.now == 10.0


@pytest.mark.asyncio
async def test_wait_for_completion_tolerates_transient_poll_errors():
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(500, text="busy")
        return httpx.Response(200, json={"p-1": COMPLETED_ENTRY})

    client = _client(handler)
    assert await client.wait_for_completion("p-1") == COMPLETED_ENTRY
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_wait_for_completion_retries_non_json_history():
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(200, text="<html>proxy warming up</html>")
        return httpx.Response(200, json={"p-1": COMPLETED_ENTRY})

    client = _client(handler)
    assert await client.wait_for_completion("p-1") == COMPLETED_ENTRY
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_get_history_rejects_unexpected_shapes():
    responses = [
        httpx.Response(200, json=["not", "a", "dict"]),
        httpx.Response(200, json={"p-1": "queued"}),
    ]
    client = _client(lambda request: responses.pop(0))

    with pytest.raises(DependencyError, match="unexpected JSON"):
        await client.get_history("p-1")
    with pytest.raises(DependencyError, match="unexpected JSON"):
        await client.get_history("p-1")


@pytest.mark.asyncio
async def test_invalid_json_is_a_dependency_error():
    client = _client(lambda request: httpx.Response(200, text="not json"))

    with pytest.raises(DependencyError, match="queue prompt returned invalid JSON"):
        await client.queue_prompt({"1": {}})
    with pytest.raises(DependencyError, match="queue returned invalid JSON"):
        await client.get_queue()


@pytest.mark.asyncio
async def test_probe_reports_invalid_json_as_disconnected():
    client = _client(lambda request: httpx.Response(200, text="not json"))

    report = await client.probe()

    assert report["status"] == "disconnected"
    assert report["error"] == "ComfyUI system_stats returned invalid JSON"


@pytest.mark.asyncio
async def test_download_output_passes_image_reference():
    seen = {}

    def handler(request):
        seen.update(dict(request.url.params))
        return httpx.Response(200, content=b"\x89PNG")

    client = _client(handler)
    data = await client.download_output({"filename": "ComfyUI_00001_.png", "subfolder": "", "type": "output"})

    assert data == b"\x89PNG"
    assert seen == {"filename": "ComfyUI_00001_.png", "subfolder": "", "type": "output"}


@pytest.mark.asyncio
async def test_upload_image_returns_assigned_name(tmp_path):
    source = tmp_path / "ref.png"
    source.write_bytes(b"\x89PNG-data")

    def handler(request):
        assert request.url.path == "/upload/image"
        assert b"ref.png" in request.content
        return httpx.Response(200, json={"name": "ref (1).png", "subfolder": "", "type": "input"})

    client = _client(handler)
    assert await client.upload_image(source) == "ref (1).png"


@pytest.mark.asyncio
async def test_get_queue_counts():
    payload = {"queue_running": [[1, "a"]], "queue_pending": [[2, "b"], [3, "c"]]}
    client = _client(lambda request: httpx.Response(200, json=payload))

    queue = await client.get_queue()
    assert queue["running"] == 1
    assert queue["pending"] == 2


@pytest.mark.asyncio
async def test_available_models():
    info = {"CheckpointLoaderSimple": {"input": {"required": {"ckpt_name": [["a.safetensors", "b.ckpt"]]}}}}
    client = _client(lambda request: httpx.Response(200, json=info))
    assert await client.available_models() == ["a.safetensors", "b.ckpt"]


@pytest.mark.asyncio
async def test_available_models_falls_back_to_default():
    client = _client(lambda request: httpx.Response(500), default_checkpoint="fallback.ckpt")
    assert await client.available_models() == ["fallback.ckpt"]


@pytest.mark.asyncio
async def test_health_check_uses_system_stats():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200, json={"system": {}})

    client = _client(handler)
    assert await client.health_check() is True
    assert paths == ["/system_stats"]


@pytest.mark.asyncio
async def test_health_check_false_when_unreachable():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    client = _client(handler)
    assert await client.health_check() is False
    assert (await client.probe())["status"] == "disconnected"
