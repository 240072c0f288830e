"""
Directory-backed catalog of pipeline artifacts.

Every stage owns one directory under the storage root. Artifacts belonging to
the same product photo are linked only by filename convention; all of those
rules live in ``ArtifactNames`` so callers never do string surgery themselves.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from .errors import NotFoundError, ValidationError
from .normalizer import ImageFacts
from .utils import format_file_size

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tiff", ".tif"})


class Stage(str, Enum):
    UPLOADS = "uploads"
    ORIGINALS = "originals"
    RESIZED = "resized"
    NO_BACKGROUND = "no_background"
    GENERATED = "generated"


_STAGE_DIRS = {
    Stage.UPLOADS: Path("uploads"),
    Stage.ORIGINALS: Path("processed") / "originals",
    Stage.RESIZED: Path("processed") / "resized",
    Stage.NO_BACKGROUND: Path("processed") / "no-background",
    Stage.GENERATED: Path("processed") / "generated",
}
_METADATA_DIR = Path("processed") / "metadata"


class ArtifactNames:
    """Filename conventions tying derived artifacts back to their upload."""

    PROCESSED_SUFFIX = "_processed"
    NO_BG_SUFFIX = "_no_bg"
    META_SUFFIX = "_meta"

    @classmethod
    def artifact_id(cls, filename: str) -> str:
        """Base stem shared by every artifact derived from one upload."""
        stem = Path(filename).stem
        for suffix in (cls.NO_BG_SUFFIX, cls.PROCESSED_SUFFIX):
            if stem.endswith(suffix):
                stem = stem[: -len(suffix)]
        return stem

    @classmethod
    def processed(cls, filename: str) -> str:
        return f"{cls.artifact_id(filename)}{cls.PROCESSED_SUFFIX}.jpg"

    @classmethod
    def no_background(cls, filename: str) -> str:
        return f"{Path(filename).stem}{cls.NO_BG_SUFFIX}.png"

    @classmethod
    def metadata(cls, filename: str) -> str:
        return f"{cls.artifact_id(filename)}{cls.META_SUFFIX}.json"


@dataclass
class ArtifactInfo:
    filename: str
    stage: Stage
    path: Path
    size: int
    modified_at: datetime

    @property
    def size_formatted(self) -> str:
        return format_file_size(self.size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "stage": self.stage.value,
            "size": self.size,
            "size_formatted": self.size_formatted,
            "modified_at": self.modified_at.isoformat(),
        }


class ProcessingRecord(BaseModel):
    """JSON sidecar describing how one upload moved through the pipeline."""

    artifact_id: str
    original_file: str
    processed_file: str
    upload_id: str = "unknown"
    original: Optional[Dict[str, Any]] = None
    processed: Optional[Dict[str, Any]] = None
    hash: str
    perceptual_hash: Optional[str] = None
    had_alpha: bool = False
    processed_at: datetime
    processing_time_ms: int = 0
    no_background_file: Optional[str] = None
    background_removal_time_ms: Optional[int] = None
    background_removed_at: Optional[datetime] = None

    @classmethod
    def from_facts(
        cls,
        *,
        original_file: str,
        upload_id: Optional[str],
        original: ImageFacts,
        processed: ImageFacts,
        hash: str,
        perceptual_hash: Optional[str],
        had_alpha: bool,
        processing_time_ms: int,
    ) -> "ProcessingRecord":
        return cls(
            artifact_id=ArtifactNames.artifact_id(original_file),
            original_file=original_file,
            processed_file=ArtifactNames.processed(original_file),
            upload_id=upload_id or "unknown",
            original=vars(original).copy(),
            processed=vars(processed).copy(),
            hash=hash,
            perceptual_hash=perceptual_hash,
            had_alpha=had_alpha,
            processed_at=datetime.now(timezone.utc),
            processing_time_ms=processing_time_ms,
        )


class StageCatalog:
    """List/get/put/delete access to stage directories under one root."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def ensure_layout(self) -> None:
        for stage in Stage:
            self.stage_dir(stage).mkdir(parents=True, exist_ok=True)
        self.metadata_dir.mkdir(parents=True, exist_ok=True)

    def stage_dir(self, stage: Stage) -> Path:
        return self.root / _STAGE_DIRS[Stage(stage)]

    @property
    def metadata_dir(self) -> Path:
        return self.root / _METADATA_DIR

    def path(self, stage: Stage, filename: str) -> Path:
        # Reject anything that would escape the stage directory
        name = Path(filename).name
        if not name or name != filename:
            raise ValidationError(f"Invalid filename: {filename}")
        return self.stage_dir(stage) / name

    def exists(self, stage: Stage, filename: str) -> bool:
        try:
            return self.path(stage, filename).is_file()
        except ValidationError:
            return False

    def get(self, stage: Stage, filename: str) -> ArtifactInfo:
        """
        Look up one artifact.

        Raises:
            NotFoundError: File is not present in the stage
        """
        path = self.path(stage, filename)
        if not path.is_file():
            raise NotFoundError(f"{filename} not found in {Stage(stage).value}")
        return self._info(Stage(stage), path)

    def list(self, stage: Stage, suffixes: Optional[Iterable[str]] = None) -> List[ArtifactInfo]:
        """Artifacts in a stage, newest first."""
        directory = self.stage_dir(stage)
        if not directory.is_dir():
            return []
        wanted = {s.lower() for s in suffixes} if suffixes else None
        items: List[ArtifactInfo] = []
        for path in directory.iterdir():
            if not path.is_file():
                continue
            if wanted is not None and path.suffix.lower() not in wanted:
                continue
            try:
                items.append(self._info(Stage(stage), path))
            except OSError as e:
                logger.warning(f"Error reading file {path.name}: {e}")
        items.sort(key=lambda item: item.modified_at, reverse=True)
        return items

    def filenames(self, stage: Stage) -> List[str]:
        directory = self.stage_dir(stage)
        if not directory.is_dir():
            return []
        return sorted(p.name for p in directory.iterdir() if p.is_file())

    def count(self, stage: Stage) -> int:
        return len(self.filenames(stage))

    def put_bytes(self, stage: Stage, filename: str, data: bytes) -> ArtifactInfo:
        path = self.path(stage, filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return self._info(Stage(stage), path)

    def copy_in(self, stage: Stage, source: Path, filename: Optional[str] = None) -> ArtifactInfo:
        path = self.path(stage, filename or source.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, path)
        return self._info(Stage(stage), path)

    def delete(self, stage: Stage, filename: str) -> None:
        path = self.path(stage, filename)
        if not path.is_file():
            raise NotFoundError(f"{filename} not found in {Stage(stage).value}")
        path.unlink()
        logger.info(f"Deleted {Stage(stage).value}/{filename}")

    def locate(self, filename: str, stages: Iterable[Stage]) -> ArtifactInfo:
        """
        First stage (in the given order) holding ``filename``.

        Raises:
            NotFoundError: Not present in any of the stages
        """
        checked = []
        for stage in stages:
            checked.append(Stage(stage).value)
            if self.exists(stage, filename):
                return self.get(stage, filename)
        raise NotFoundError(f"{filename} not found in any of: {', '.join(checked)}")

    @staticmethod
    def _info(stage: Stage, path: Path) -> ArtifactInfo:
        stat = path.stat()
        return ArtifactInfo(
            filename=path.name,
            stage=stage,
            path=path,
            size=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    # Metadata sidecars

    def metadata_path(self, filename: str) -> Path:
        return self.metadata_dir / ArtifactNames.metadata(filename)

    def save_record(self, record: ProcessingRecord) -> Path:
        path = self.metadata_path(record.original_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        return path

    def load_record(self, filename: str) -> Optional[ProcessingRecord]:
        """Sidecar for any artifact derived from ``filename``, or None."""
        path = self.metadata_path(filename)
        if not path.is_file():
            return None
        try:
            return ProcessingRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.warning(f"Unreadable metadata {path.name}: {e}")
            return None

    def merge_record(self, filename: str, **updates: Any) -> ProcessingRecord:
        """
        Update fields on an existing sidecar without replacing the rest.

        Raises:
            NotFoundError: No sidecar exists for the artifact
            ValueError: Sidecar is not valid JSON for a record
        """
        path = self.metadata_path(filename)
        if not path.is_file():
            raise NotFoundError(f"No metadata record for {ArtifactNames.artifact_id(filename)}")
        data = json.loads(path.read_text(encoding="utf-8"))
        data.update(updates)
        record = ProcessingRecord.model_validate(data)
        path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        return record
