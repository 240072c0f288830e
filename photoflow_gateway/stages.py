"""
Service-backed pipeline stages: background removal and generation.

Both stages walk their work items strictly in order. Per-item failures are
recorded on that item's result; only pre-flight problems (empty selection,
missing reference image, generation service down) abort the request.
"""

from __future__ import annotations

import logging
import mimetypes
import random
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiofiles

from photoflow_runner.catalog import ArtifactNames, Stage, StageCatalog
from photoflow_runner.core import BatchResult, ItemResult
from photoflow_runner.errors import (
    DependencyError,
    DependencyUnavailable,
    NotFoundError,
    PipelineError,
    ValidationError,
)
from photoflow_runner.workflows import (
    DEFAULT_CHECKPOINT,
    DEFAULT_NEGATIVE_PROMPT,
    Workflow,
    find_output_image,
    image_to_image_workflow,
    plan_seeds,
    resolve_prompt,
    text_to_image_workflow,
)

from .comfy_client import ComfyClient
from .rembg_client import BackgroundRemovalClient

logger = logging.getLogger(__name__)

BACKGROUND_REMOVAL_SUFFIXES = frozenset({".jpg", ".jpeg", ".png"})
# Where a variation's reference image is looked up, first match wins
VARIATION_SOURCE_STAGES = (Stage.NO_BACKGROUND, Stage.RESIZED, Stage.UPLOADS)


async def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(path, "wb") as out:
        await out.write(data)


def _log_item(label: str, index: int, total: int, item: ItemResult) -> None:
    if item.success:
        logger.info(f"[{index}/{total}] {label} {item.filename}")
    else:
        logger.warning(f"[{index}/{total}] {label} failed for {item.filename}: {item.error}")


# Background removal

def select_background_removal_targets(catalog: StageCatalog, filenames: Optional[Sequence[str]]) -> List[str]:
    """
    Requested filenames, or every JPEG/PNG in the resized stage.

    Raises:
        ValidationError: Nothing to process
    """
    if filenames is not None:
        targets = list(filenames)
    else:
        targets = [
            name for name in catalog.filenames(Stage.RESIZED)
            if Path(name).suffix.lower() in BACKGROUND_REMOVAL_SUFFIXES
        ]
    if not targets:
        raise ValidationError("No images found in resized stage. Run normalization first.")
    return targets


async def _remove_background_one(
    catalog: StageCatalog,
    client: BackgroundRemovalClient,
    filename: str,
) -> ItemResult:
    input_path = catalog.path(Stage.RESIZED, filename)
    if not input_path.is_file():
        raise NotFoundError(f"File not found in resized stage: {filename}")

    if not await client.health_check():
        raise DependencyUnavailable("Background removal service is not available")

    started = time.perf_counter()
    async with aiofiles.open(input_path, "rb") as f:
        image_bytes = await f.read()
    content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    result_bytes = await client.remove_background(image_bytes, filename, content_type)

    output_name = ArtifactNames.no_background(filename)
    output_path = catalog.path(Stage.NO_BACKGROUND, output_name)
    await _write_bytes(output_path, result_bytes)
    elapsed_ms = int((time.perf_counter() - started) * 1000)

    item = ItemResult(
        filename=filename,
        success=True,
        data={
            "output_file": output_name,
            "processing_time_ms": elapsed_ms,
            "size": len(result_bytes),
            "path": str(output_path),
        },
    )

    try:
        catalog.merge_record(
            filename,
            no_background_file=output_name,
            background_removal_time_ms=elapsed_ms,
            background_removed_at=datetime.now(timezone.utc),
        )
    except (NotFoundError, ValueError, OSError) as e:
        message = e.message if isinstance(e, PipelineError) else str(e)
        logger.warning(f"Metadata update failed for {filename} (continuing anyway): {message}")
        item.warnings.append(f"metadata not updated: {message}")
    return item


async def remove_background_batch(
    catalog: StageCatalog,
    client: BackgroundRemovalClient,
    filenames: Optional[Sequence[str]] = None,
) -> BatchResult:
    """
    Strip backgrounds from resized artifacts.

    Args:
        catalog: Storage catalog holding the stage directories
        client: rembg client
        filenames: Resized-stage filenames in processing order; None means all

    Returns:
        BatchResult with one entry per target

    Raises:
        ValidationError: Empty selection
    """
    targets = select_background_removal_targets(catalog, filenames)
    batch = BatchResult()
    logger.info(f"Starting background removal for {len(targets)} files")

    for index, filename in enumerate(targets, start=1):
        try:
            item = await _remove_background_one(catalog, client, filename)
        except PipelineError as e:
            item = ItemResult.failure(filename, e)
        except Exception as e:  # noqa: BLE001
            logger.exception(f"Unexpected error removing background from {filename}")
            item = ItemResult.failure(filename, e)
        batch.add(item)
        _log_item("Background removed", index, len(targets), item)

    batch.log_summary("Background removal")
    return batch


# Generation

def generated_name(prompt_id: str, output_filename: str) -> str:
    """Local filename for an engine output, prefixed to stay unique across runs."""
    return f"{prompt_id[:8]}_{Path(output_filename).name}"


async def _ensure_engine_available(client: ComfyClient) -> None:
    if not await client.health_check():
        raise DependencyUnavailable("ComfyUI is not available. Please start ComfyUI first.")


async def _generate_one(
    catalog: StageCatalog,
    client: ComfyClient,
    workflow: Workflow,
    index: int,
    seed: int,
) -> ItemResult:
    prompt_id = await client.queue_prompt(workflow)
    entry = await client.wait_for_completion(prompt_id)
    image_ref = find_output_image(entry)
    if image_ref is None:
        raise DependencyError("Generation finished without an output image", details={"prompt_id": prompt_id})

    data = await client.download_output(image_ref)
    name = generated_name(prompt_id, image_ref["filename"])
    path = catalog.path(Stage.GENERATED, name)
    await _write_bytes(path, data)

    return ItemResult(
        filename=name,
        success=True,
        data={"index": index, "seed": seed, "prompt_id": prompt_id, "size": len(data), "path": str(path)},
    )


async def _run_generation(
    catalog: StageCatalog,
    client: ComfyClient,
    label: str,
    seeds: Sequence[int],
    build_workflow,
) -> BatchResult:
    batch = BatchResult()
    for index, seed in enumerate(seeds):
        try:
            item = await _generate_one(catalog, client, build_workflow(seed), index, seed)
        except PipelineError as e:
            item = ItemResult.failure(None, e, index=index, seed=seed)
        except Exception as e:  # noqa: BLE001
            logger.exception(f"Unexpected error in {label.lower()} {index + 1}")
            item = ItemResult.failure(None, e, index=index, seed=seed)
        batch.add(item)
        _log_item(label, index + 1, len(seeds), item)

    batch.log_summary(label)
    return batch


async def generate_text_batch(
    catalog: StageCatalog,
    client: ComfyClient,
    *,
    prompt: Optional[str] = None,
    negative_prompt: Optional[str] = None,
    seed: int = -1,
    count: int = 1,
    width: int = 512,
    height: int = 512,
    product_type: Optional[str] = None,
    style: Optional[str] = None,
    checkpoint: str = DEFAULT_CHECKPOINT,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """
    Generate ``count`` text-to-image results, one ComfyUI job each.

    Raises:
        DependencyUnavailable: ComfyUI failed its health check; nothing was submitted
    """
    await _ensure_engine_available(client)

    positive = resolve_prompt(prompt, product_type, style)
    negative = negative_prompt or DEFAULT_NEGATIVE_PROMPT
    seeds = plan_seeds(seed, count, rng)
    logger.info(f"Starting generation of {len(seeds)} images")

    def build(image_seed: int) -> Workflow:
        return text_to_image_workflow(
            positive, negative, image_seed, width=width, height=height, checkpoint=checkpoint
        )

    batch = await _run_generation(catalog, client, "Generation", seeds, build)
    return generation_summary(batch, prompt=positive, negative_prompt=negative, seeds=seeds)


async def generate_variation_batch(
    catalog: StageCatalog,
    client: ComfyClient,
    filename: str,
    *,
    prompt: Optional[str] = None,
    negative_prompt: Optional[str] = None,
    strength: float = 0.75,
    seed: int = -1,
    count: int = 1,
    product_type: Optional[str] = None,
    style: Optional[str] = None,
    checkpoint: str = DEFAULT_CHECKPOINT,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """
    Generate ``count`` image-to-image variations of a catalog artifact.

    Raises:
        ValidationError: Strength outside [0, 1]
        NotFoundError: Reference image not found in any source stage
        DependencyUnavailable: ComfyUI failed its health check; nothing was submitted
        DependencyError: Reference image upload was rejected
    """
    if not 0.0 <= strength <= 1.0:
        raise ValidationError("strength must be between 0.0 and 1.0")
    source = catalog.locate(filename, VARIATION_SOURCE_STAGES)
    await _ensure_engine_available(client)

    uploaded_name = await client.upload_image(source.path)
    positive = resolve_prompt(prompt, product_type, style)
    negative = negative_prompt or DEFAULT_NEGATIVE_PROMPT
    seeds = plan_seeds(seed, count, rng)
    logger.info(f"Starting {len(seeds)} variations of {source.stage.value}/{filename}")

    def build(image_seed: int) -> Workflow:
        return image_to_image_workflow(
            uploaded_name, positive, negative, strength, image_seed, checkpoint=checkpoint
        )

    batch = await _run_generation(catalog, client, "Variation", seeds, build)
    return generation_summary(
        batch,
        prompt=positive,
        negative_prompt=negative,
        seeds=seeds,
        base_image=filename,
        source_stage=source.stage.value,
        strength=strength,
    )


def generation_summary(batch: BatchResult, **extra: Any) -> Dict[str, Any]:
    summary = {
        "success": True,
        "total": batch.total,
        "generated": batch.processed,
        "failed": batch.failed,
        "results": [r.to_dict() for r in batch.results],
    }
    summary.update(extra)
    return summary
