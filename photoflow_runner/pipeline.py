"""
Normalization batch: uploads -> gate -> backup -> resize -> metadata sidecar.

Files are handled strictly in input order. Every per-file problem is folded
into that file's result; nothing raised for one file stops the batch.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from .catalog import ArtifactNames, ProcessingRecord, Stage, StageCatalog
from .core import BatchResult, ItemResult
from .errors import DuplicateError, NotFoundError, ValidationError
from .gate import DuplicateGate, is_corrupted, perceptual_hash
from .normalizer import NormalizerConfig, describe_image, normalize_image, validate_dimensions

logger = logging.getLogger(__name__)


def _normalize_one(
    catalog: StageCatalog,
    filename: str,
    gate: DuplicateGate,
    upload_id: Optional[str],
    config: NormalizerConfig,
) -> ItemResult:
    input_path = catalog.path(Stage.UPLOADS, filename)
    if not input_path.is_file():
        raise NotFoundError("Input file not found")

    digest = gate.admit(input_path)

    backup = catalog.copy_in(Stage.ORIGINALS, input_path)
    processed_name = ArtifactNames.processed(filename)
    processed_path = catalog.path(Stage.RESIZED, processed_name)

    result = normalize_image(input_path, processed_path, config)
    if not result.success:
        return ItemResult(
            filename=filename,
            success=False,
            error=result.error,
            code=result.error_code,
            data={"hash": digest},
        )

    item = ItemResult(
        filename=filename,
        success=True,
        data={
            "original": vars(result.original),
            "processed": vars(result.processed),
            "processing_time_ms": result.processing_time_ms,
            "hash": digest,
            "processed_file": processed_name,
        },
    )

    record = ProcessingRecord.from_facts(
        original_file=filename,
        upload_id=upload_id,
        original=result.original,
        processed=result.processed,
        hash=digest,
        perceptual_hash=perceptual_hash(input_path),
        had_alpha=result.had_alpha,
        processing_time_ms=result.processing_time_ms,
    )
    metadata_path: Optional[Path] = None
    try:
        metadata_path = catalog.save_record(record)
    except OSError as e:
        logger.warning(f"Metadata save failed for {filename} (continuing anyway): {e}")
        item.warnings.append(f"metadata not saved: {e}")

    item.data["paths"] = {
        "original": str(backup.path),
        "processed": str(processed_path),
        "metadata": str(metadata_path) if metadata_path else None,
    }
    return item


def run_normalization_batch(
    catalog: StageCatalog,
    filenames: Optional[Sequence[str]] = None,
    *,
    upload_id: Optional[str] = None,
    config: Optional[NormalizerConfig] = None,
) -> BatchResult:
    """
    Normalize the given uploads, or every file in the uploads stage.

    Args:
        catalog: Storage catalog holding the stage directories
        filenames: Upload filenames in processing order; None means all uploads
        upload_id: Batch identifier recorded in each metadata sidecar
        config: Normalizer limits

    Returns:
        BatchResult with one entry per requested filename
    """
    cfg = config or NormalizerConfig()
    targets = list(filenames) if filenames is not None else catalog.filenames(Stage.UPLOADS)
    gate = DuplicateGate()
    batch = BatchResult()

    logger.info(f"Starting normalization of {len(targets)} files (upload_id={upload_id or 'batch'})")

    for index, filename in enumerate(targets, start=1):
        try:
            item = _normalize_one(catalog, filename, gate, upload_id, cfg)
        except DuplicateError as e:
            batch.duplicate_files.append(filename)
            item = ItemResult.failure(filename, e)
        except (NotFoundError, ValidationError) as e:
            item = ItemResult.failure(filename, e)
        except Exception as e:  # noqa: BLE001
            logger.exception(f"Unexpected error processing {filename}")
            item = ItemResult.failure(filename, e)

        batch.add(item)
        if item.success:
            logger.info(f"[{index}/{len(targets)}] Processed {filename}")
        else:
            logger.warning(f"[{index}/{len(targets)}] Failed {filename}: {item.error}")

    batch.log_summary("Normalization")
    return batch


def normalization_summary(batch: BatchResult, upload_id: Optional[str]) -> Dict[str, Any]:
    summary = batch.summary()
    summary["upload_id"] = upload_id or "batch"
    summary["duplicates"] = batch.duplicates
    summary["duplicate_files"] = list(batch.duplicate_files)
    return summary


def validate_file(path: Union[str, Path], config: Optional[NormalizerConfig] = None) -> Dict[str, Any]:
    """
    Validation-only check of a single image; nothing is written.

    Returns:
        Dictionary with ``valid``, ``image_info`` and, when the image would be
        rejected by normalization, ``meets_requirements`` False plus ``reason``
    """
    cfg = config or NormalizerConfig()
    if is_corrupted(path):
        return {"valid": False, "error": "Image is corrupted or invalid"}

    info = describe_image(path)
    response: Dict[str, Any] = {"valid": True, "image_info": info, "meets_requirements": True}
    try:
        validate_dimensions(info["width"], info["height"], info["format"], cfg)
    except ValidationError as e:
        response["meets_requirements"] = False
        response["reason"] = e.message
    return response
