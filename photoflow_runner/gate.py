"""
Admission checks run before an upload may enter normalization.

Two probes are applied per file:
- a corruption probe (can Pillow fully decode it?)
- a tiny 8x8 grayscale content hash used to reject repeats within one batch

Duplicate detection is scoped to a single ``DuplicateGate`` instance; nothing
is persisted between batches.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Any, Optional, Set, Union

from PIL import Image

from .errors import DuplicateError, ValidationError
from .utils import pil_image_from_path

logger = logging.getLogger(__name__)

HASH_GRID = (8, 8)


def is_corrupted(path: Union[str, Path]) -> bool:
    """Return True when the file cannot be decoded as an image."""
    im = pil_image_from_path(path)
    if im is None:
        logger.warning(f"Image is corrupted or unreadable: {path}")
        return True
    try:
        width, height = im.size
        return width <= 0 or height <= 0
    finally:
        im.close()


def content_hash(path: Union[str, Path]) -> str:
    """
    Hash an 8x8 single-channel downsample of the image.

    Args:
        path: Image file path

    Returns:
        Hex MD5 digest of the 64 raw intensity bytes

    Raises:
        ValidationError: Image could not be opened
    """
    try:
        with Image.open(path) as im:
            small = im.convert("L").resize(HASH_GRID, Image.Resampling.LANCZOS)
            raw = small.tobytes()
    except Exception as e:
        raise ValidationError(f"Failed to generate hash: {e}") from e
    return hashlib.md5(raw, usedforsecurity=False).hexdigest()


def _hash_to_hex(hash_obj: Any) -> str:
    hex_str = str(hash_obj)
    if not hex_str.startswith("0x"):
        hex_str = "0x" + hex_str
    return hex_str


def perceptual_hash(path: Union[str, Path]) -> Optional[str]:
    """pHash via imagehash, recorded for diagnostics only."""
    import imagehash

    try:
        with Image.open(path) as im:
            return _hash_to_hex(imagehash.phash(im))
    except Exception as e:
        logger.warning(f"Perceptual hash failed for {path}: {e}")
        return None


class DuplicateGate:
    """Admits files one by one, rejecting corrupted inputs and in-batch repeats."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def __contains__(self, digest: str) -> bool:
        return digest in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def admit(self, path: Union[str, Path]) -> str:
        """
        Check a candidate file and remember its hash.

        Returns:
            The content hash of the admitted file

        Raises:
            ValidationError: File is corrupted
            DuplicateError: Same hash already admitted in this batch
        """
        if is_corrupted(path):
            raise ValidationError("Image file is corrupted or invalid")

        digest = content_hash(path)
        if digest in self._seen:
            raise DuplicateError("Duplicate image detected", hash=digest)
        self._seen.add(digest)
        return digest
