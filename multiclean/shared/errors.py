"""Shared error types - HTTPException subclasses raised by the services"""

from typing import Any, Optional

from fastapi import HTTPException


class MultiCleanerError(HTTPException):
    """Base error; ``extra`` is merged into the JSON error body"""

    status_code = 400

    def __init__(self, message: str, extra: Optional[dict[str, Any]] = None):
        super().__init__(status_code=self.status_code, detail=message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> dict:
        return {"error": self.message, **self.extra}


class NotFoundError(MultiCleanerError):
    status_code = 404


class ForbiddenError(MultiCleanerError):
    status_code = 403


class ConflictError(MultiCleanerError):
    status_code = 400


class ValidationFailedError(MultiCleanerError):
    status_code = 400


class UpstreamError(MultiCleanerError):
    """Pricing or delivery collaborator failed"""

    status_code = 502
