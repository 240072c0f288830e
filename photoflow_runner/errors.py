"""Error taxonomy shared by the pipeline stages and the gateway."""

from __future__ import annotations

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    code = "PIPELINE_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class ValidationError(PipelineError):
    """Input image is malformed, unreadable, or out of bounds."""

    code = "VALIDATION_ERROR"
    status_code = 400


class DuplicateError(PipelineError):
    """Content hash already seen earlier in the same batch."""

    code = "DUPLICATE"
    status_code = 409

    def __init__(self, message: str, *, hash: str):
        super().__init__(message, details={"hash": hash})
        self.hash = hash


class DependencyUnavailable(PipelineError):
    """External service failed its health check or could not be reached."""

    code = "DEPENDENCY_UNAVAILABLE"
    status_code = 503


class DependencyError(PipelineError):
    """External service answered a work request with a failure."""

    code = "DEPENDENCY_ERROR"
    status_code = 502


class GenerationTimeout(PipelineError):
    """Generation job did not reach a terminal state within the wait budget."""

    code = "TIMEOUT"
    status_code = 504


class NotFoundError(PipelineError):
    """Referenced source file is not present in any expected stage."""

    code = "NOT_FOUND"
    status_code = 404
