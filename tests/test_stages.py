"""Tests for the background-removal and generation stages."""

import random
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from photoflow_gateway.comfy_client import ComfyClient
from photoflow_gateway.rembg_client import BackgroundRemovalClient
from photoflow_gateway.stages import (
    generate_text_batch,
    generate_variation_batch,
    generated_name,
    remove_background_batch,
)
from photoflow_runner.catalog import ArtifactNames, ProcessingRecord, Stage
from photoflow_runner.errors import (
    DependencyError,
    DependencyUnavailable,
    GenerationTimeout,
    NotFoundError,
    ValidationError,
)
from photoflow_runner.workflows import MAX_SEED


def _output_entry(filename="ComfyUI_00001_.png"):
    return {
        "status": {"status_str": "success", "completed": True},
        "outputs": {"9": {"images": [{"filename": filename, "subfolder": "", "type": "output"}]}},
    }


@pytest.fixture
def rembg_client():
    client = AsyncMock(spec=BackgroundRemovalClient)
    client.health_check.return_value = True
    client.remove_background.return_value = b"\x89PNG-no-bg"
    return client


@pytest.fixture
def comfy_client():
    client = AsyncMock(spec=ComfyClient)
    client.health_check.return_value = True
    client.queue_prompt.side_effect = [f"{i:08d}-prompt" for i in range(10)]
    client.wait_for_completion.return_value = _output_entry()
    client.download_output.return_value = b"\x89PNG-generated"
    client.upload_image.return_value = "reference.png"
    return client


def _stage_resized(catalog, name="coat_processed.jpg", with_record=True):
    catalog.put_bytes(Stage.RESIZED, name, b"jpeg-bytes")
    if with_record:
        original = f"{ArtifactNames.artifact_id(name)}.jpg"
        catalog.save_record(
            ProcessingRecord(
                artifact_id=ArtifactNames.artifact_id(name),
                original_file=original,
                processed_file=name,
                hash="h",
                processed_at=datetime.now(timezone.utc),
            )
        )


# Background removal

@pytest.mark.asyncio
async def test_remove_background_writes_png_and_merges_metadata(catalog, rembg_client):
    _stage_resized(catalog)

    batch = await remove_background_batch(catalog, rembg_client, ["coat_processed.jpg"])

    item = batch.results[0]
    assert item.success is True
    assert item.warnings == []
    assert item.data["output_file"] == "coat_processed_no_bg.png"
    assert catalog.path(Stage.NO_BACKGROUND, "coat_processed_no_bg.png").read_bytes() == b"\x89PNG-no-bg"

    record = catalog.load_record("coat_processed_no_bg.png")
    assert record.no_background_file == "coat_processed_no_bg.png"
    assert record.background_removed_at is not None
    rembg_client.remove_background.assert_awaited_once_with(b"jpeg-bytes", "coat_processed.jpg", "image/jpeg")


@pytest.mark.asyncio
async def test_missing_resized_file_is_not_found(catalog, rembg_client):
    batch = await remove_background_batch(catalog, rembg_client, ["ghost_processed.jpg"])

    assert batch.processed == 0
    assert batch.failed == 1
    assert batch.results[0].code == NotFoundError.code
    rembg_client.remove_background.assert_not_called()


@pytest.mark.asyncio
async def test_unhealthy_rembg_fails_items_without_submission(catalog, rembg_client):
    _stage_resized(catalog, "a_processed.jpg")
    _stage_resized(catalog, "b_processed.jpg")
    rembg_client.health_check.return_value = False

    batch = await remove_background_batch(catalog, rembg_client)

    assert batch.failed == 2
    assert {r.code for r in batch.results} == {DependencyUnavailable.code}
    rembg_client.remove_background.assert_not_called()


@pytest.mark.asyncio
async def test_service_error_is_isolated_to_one_item(catalog, rembg_client):
    _stage_resized(catalog, "a_processed.jpg")
    _stage_resized(catalog, "b_processed.jpg")
    rembg_client.remove_background.side_effect = [DependencyError("rembg service error: 500"), b"png"]

    batch = await remove_background_batch(catalog, rembg_client, ["a_processed.jpg", "b_processed.jpg"])

    first, second = batch.results
    assert first.success is False
    assert first.code == DependencyError.code
    assert second.success is True


@pytest.mark.asyncio
async def test_missing_metadata_becomes_warning(catalog, rembg_client):
    _stage_resized(catalog, with_record=False)

    batch = await remove_background_batch(catalog, rembg_client, ["coat_processed.jpg"])

    item = batch.results[0]
    assert item.success is True
    assert len(item.warnings) == 1
    assert "metadata not updated" in item.warnings[0]


@pytest.mark.asyncio
async def test_empty_resized_stage_is_rejected(catalog, rembg_client):
    with pytest.raises(ValidationError, match="Run normalization first"):
        await remove_background_batch(catalog, rembg_client)


# Generation

@pytest.mark.asyncio
async def test_unhealthy_engine_aborts_before_submission(catalog, comfy_client):
    comfy_client.health_check.return_value = False

    with pytest.raises(DependencyUnavailable):
        await generate_text_batch(catalog, comfy_client, prompt="a coat", count=3)

    comfy_client.queue_prompt.assert_not_called()


@pytest.mark.asyncio
async def test_pinned_seed_generation(catalog, comfy_client):
    summary = await generate_text_batch(catalog, comfy_client, prompt="a coat", seed=42, count=3)

    assert summary["generated"] == 3
    assert summary["failed"] == 0
    assert summary["seeds"] == [42, 43, 44]
    submitted = [call.args[0]["3"]["inputs"]["seed"] for call in comfy_client.queue_prompt.call_args_list]
    assert submitted == [42, 43, 44]

    first = summary["results"][0]
    assert first["filename"] == generated_name("00000000-prompt", "ComfyUI_00001_.png")
    assert catalog.exists(Stage.GENERATED, first["filename"])


@pytest.mark.asyncio
async def test_random_seeds_for_each_image(catalog, comfy_client):
    summary = await generate_text_batch(catalog, comfy_client, seed=-1, count=2, rng=random.Random(3))

    assert len(summary["seeds"]) == 2
    assert all(0 <= s <= MAX_SEED for s in summary["seeds"])
    assert summary["prompt"].startswith("professional product photography")


@pytest.mark.asyncio
async def test_generation_failures_are_per_image(catalog, comfy_client):
    comfy_client.wait_for_completion.side_effect = [
        GenerationTimeout("Generation timeout after 120s"),
        _output_entry(),
    ]

    summary = await generate_text_batch(catalog, comfy_client, prompt="a coat", seed=1, count=2)

    failed, ok = summary["results"]
    assert failed["success"] is False
    assert failed["code"] == "TIMEOUT"
    assert failed["seed"] == 1
    assert ok["success"] is True
    assert summary["generated"] == 1
    assert summary["failed"] == 1


@pytest.mark.asyncio
async def test_variation_uses_uploaded_reference(catalog, comfy_client):
    catalog.put_bytes(Stage.NO_BACKGROUND, "coat_processed_no_bg.png", b"png")

    summary = await generate_variation_batch(
        catalog, comfy_client, "coat_processed_no_bg.png", strength=0.5, seed=9, count=2
    )

    assert summary["generated"] == 2
    assert summary["source_stage"] == "no_background"
    comfy_client.upload_image.assert_awaited_once()
    graph = comfy_client.queue_prompt.call_args_list[1].args[0]
    assert graph["1"]["inputs"]["image"] == "reference.png"
    assert graph["3"]["inputs"]["denoise"] == 0.5
    assert graph["3"]["inputs"]["seed"] == 10


@pytest.mark.asyncio
async def test_variation_missing_reference(catalog, comfy_client):
    with pytest.raises(NotFoundError):
        await generate_variation_batch(catalog, comfy_client, "nope.png")
    comfy_client.upload_image.assert_not_called()
