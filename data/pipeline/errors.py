"""
Pipeline Errors

Failure taxonomy for the ingestion pipeline.
"""

from typing import Any, List, Optional


class PipelineError(Exception):
    """Base class for pipeline failures."""


class SourceUnavailable(PipelineError):
    """All endpoints of one exchange were exhausted without any records."""

    def __init__(self, source: str, attempts: int, last_error: Optional[BaseException] = None):
        self.source = source
        self.attempts = attempts
        self.last_error = last_error
        message = f"{source} unavailable after {attempts} consecutive failures"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)


class InvalidResponseShape(PipelineError):
    """Provider payload is missing expected fields."""

    def __init__(self, source: str, detail: str, payload: Any = None):
        self.source = source
        self.payload = payload
        super().__init__(f"{source}: invalid response shape ({detail})")


class PersistenceMissing(PipelineError):
    """No previously validated series is available on disk."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"No persisted series at {path}")


class NoSourceData(PipelineError):
    """Every source contributed zero records."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        detail = "; ".join(errors) if errors else "no records"
        super().__init__(f"No source returned data ({detail})")
