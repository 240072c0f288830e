"""Resize and re-encode admitted uploads into bounded JPEG artifacts."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from PIL import Image

from .errors import ValidationError
from .utils import flatten_to_rgb, format_file_size, has_alpha

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = frozenset({"jpeg", "png", "webp", "tiff", "gif"})
# Pillow reports some camera JPEGs as multi-picture objects
_FORMAT_ALIASES = {"jpg": "jpeg", "mpo": "jpeg"}
OUTPUT_FORMAT = "JPEG"


@dataclass(frozen=True)
class NormalizerConfig:
    target_max_dimension: int = 2048
    min_acceptable_dimension: int = 512
    output_quality: int = 90


@dataclass
class ImageFacts:
    width: int
    height: int
    format: Optional[str]
    file_size: int


@dataclass
class NormalizeResult:
    success: bool
    original: Optional[ImageFacts] = None
    processed: Optional[ImageFacts] = None
    processing_time_ms: int = 0
    had_alpha: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None


def normalize_format(fmt: Optional[str]) -> Optional[str]:
    if not fmt:
        return None
    lowered = fmt.lower()
    return _FORMAT_ALIASES.get(lowered, lowered)


def validate_dimensions(
    width: int,
    height: int,
    fmt: Optional[str],
    config: NormalizerConfig,
) -> None:
    """Raise ValidationError when the source image is outside accepted bounds."""
    if not width or not height:
        raise ValidationError("Invalid image dimensions")

    min_dimension = min(width, height)
    if min_dimension < config.min_acceptable_dimension:
        raise ValidationError(
            f"Image too small. Minimum dimension is {config.min_acceptable_dimension}px, "
            f"got {min_dimension}px"
        )

    normalized = normalize_format(fmt)
    if normalized not in SUPPORTED_FORMATS:
        raise ValidationError(
            f"Invalid format: {fmt}. Supported: {', '.join(sorted(SUPPORTED_FORMATS))}"
        )


def target_size(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """Fit inside ``max_dimension`` on the longer side, never enlarging."""
    if width > height:
        new_width = min(width, max_dimension)
        new_height = round(height / width * new_width)
    else:
        new_height = min(height, max_dimension)
        new_width = round(width / height * new_height)
    return max(1, new_width), max(1, new_height)


def normalize_image(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    config: Optional[NormalizerConfig] = None,
) -> NormalizeResult:
    """
    Validate, resize and re-encode a single image.

    Failures are reported on the returned result instead of raised so batch
    callers can continue with the next file.
    """
    cfg = config or NormalizerConfig()
    input_path = Path(input_path)
    output_path = Path(output_path)
    start = time.perf_counter()

    try:
        with Image.open(input_path) as im:
            width, height = im.size
            fmt = im.format
            validate_dimensions(width, height, fmt, cfg)

            new_size = target_size(width, height, cfg.target_max_dimension)
            alpha = has_alpha(im)
            logger.info(
                f"Resizing {input_path.name}: {width}x{height} -> {new_size[0]}x{new_size[1]}"
            )
            rgb = flatten_to_rgb(im)
            if new_size != (width, height):
                rgb = rgb.resize(new_size, Image.Resampling.LANCZOS)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            rgb.save(output_path, format=OUTPUT_FORMAT, quality=cfg.output_quality)

        with Image.open(output_path) as out:
            processed_size = out.size
            processed_format = out.format

        original = ImageFacts(
            width=width,
            height=height,
            format=normalize_format(fmt),
            file_size=input_path.stat().st_size,
        )
        processed = ImageFacts(
            width=processed_size[0],
            height=processed_size[1],
            format=normalize_format(processed_format),
            file_size=output_path.stat().st_size,
        )
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Normalized {input_path.name} in {elapsed_ms}ms "
            f"({original.file_size} -> {processed.file_size} bytes)"
        )
        return NormalizeResult(
            success=True,
            original=original,
            processed=processed,
            processing_time_ms=elapsed_ms,
            had_alpha=alpha,
        )
    except ValidationError as e:
        logger.warning(f"Validation failed for {input_path.name}: {e}")
        return NormalizeResult(success=False, error=str(e), error_code=e.code)
    except Exception as e:
        logger.error(f"Processing failed for {input_path.name}: {e}")
        return NormalizeResult(success=False, error=str(e), error_code="PROCESSING_FAILED")


def describe_image(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read image facts without processing.

    Raises:
        ValidationError: Image could not be read
    """
    path = Path(path)
    try:
        with Image.open(path) as im:
            info: Dict[str, Any] = {
                "width": im.size[0],
                "height": im.size[1],
                "format": normalize_format(im.format),
                "mode": im.mode,
                "channels": len(im.getbands()),
                "has_alpha": has_alpha(im),
            }
    except Exception as e:
        raise ValidationError(f"Failed to get image info: {e}") from e

    size = path.stat().st_size
    info["file_size"] = size
    info["file_size_formatted"] = format_file_size(size)
    return info
