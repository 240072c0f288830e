from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import PipelineError

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


@dataclass
class ItemResult:
    filename: Optional[str]
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def failure(cls, filename: Optional[str], exc: BaseException, **data: Any) -> "ItemResult":
        if isinstance(exc, PipelineError):
            data.update(exc.details)
            return cls(filename=filename, success=False, error=exc.message, code=exc.code, data=data)
        return cls(filename=filename, success=False, error=str(exc), code=UNEXPECTED_ERROR, data=data)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"filename": self.filename, "success": self.success}
        out.update(self.data)
        if self.error is not None:
            out["error"] = self.error
            out["code"] = self.code
        if self.warnings:
            out["warnings"] = list(self.warnings)
        return out


@dataclass
class BatchResult:
    """Ordered per-item outcomes of one orchestration call."""

    results: List[ItemResult] = field(default_factory=list)
    duplicate_files: List[str] = field(default_factory=list)

    def add(self, item: ItemResult) -> ItemResult:
        self.results.append(item)
        return item

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def processed(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def duplicates(self) -> int:
        return len(self.duplicate_files)

    def summary(self) -> Dict[str, Any]:
        return {
            "success": True,
            "total_files": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }

    def log_summary(self, label: str) -> None:
        logger.info(
            f"{label} complete: total={self.total} processed={self.processed} "
            f"failed={self.failed} duplicates={self.duplicates}"
        )


def dumps_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, sort_keys=False, default=str)
