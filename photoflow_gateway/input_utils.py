"""
Shared utilities for handling uploaded images across gateway endpoints.

Provides common functions for:
- Unique staging filenames
- Size-limited streaming of multipart uploads to disk
- Temporary file management
"""

from __future__ import annotations

import asyncio
import random
import shutil
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import aiofiles
from fastapi import UploadFile

from photoflow_runner.errors import ValidationError

CHUNK_SIZE = 1024 * 1024


def unique_upload_name(original_name: Optional[str], field_name: str = "images") -> str:
    """
    Staging filename for an upload: ``<field>-<epoch ms>-<random><ext>``.

    Args:
        original_name: Client-supplied filename (only its extension is kept)
        field_name: Multipart field the file arrived in

    Returns:
        Filename safe to place in the uploads stage
    """
    suffix = Path(original_name or "").suffix.lower()
    stamp = int(time.time() * 1000)
    return f"{field_name}-{stamp}-{random.randint(0, 10**9 - 1)}{suffix}"


def check_image_content_type(file: UploadFile) -> None:
    """
    Raises:
        ValidationError: The upload does not declare an ``image/*`` type
    """
    content_type = file.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationError(
            "Only image files are allowed",
            details={"filename": file.filename, "mimetype": content_type},
        )


async def save_upload(file: UploadFile, dest: Path, max_bytes: Optional[int] = None) -> int:
    """
    Stream an upload to ``dest`` in chunks.

    Args:
        file: Uploaded file (multipart)
        dest: Destination path
        max_bytes: Size limit; the partial file is removed when exceeded

    Returns:
        Number of bytes written

    Raises:
        ValidationError: Upload exceeds ``max_bytes``
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    async with aiofiles.open(dest, "wb") as out:
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if max_bytes is not None and written > max_bytes:
                break
            await out.write(chunk)

    if max_bytes is not None and written > max_bytes:
        dest.unlink(missing_ok=True)
        raise ValidationError(
            f"File too large. Maximum size is {max_bytes} bytes",
            details={"filename": file.filename},
        )
    return written


@asynccontextmanager
async def temp_directory(base_path: Path, prefix: str = "temp"):
    """
    Context manager for temporary directory with automatic cleanup.

    Args:
        base_path: Base directory for temp folder
        prefix: Prefix for temp directory name

    Yields:
        Path to temporary directory
    """
    temp_dir = base_path / prefix / uuid.uuid4().hex
    temp_dir.mkdir(parents=True, exist_ok=True)
    try:
        yield temp_dir
    finally:
        if temp_dir.exists():
            await asyncio.to_thread(shutil.rmtree, temp_dir, ignore_errors=True)
