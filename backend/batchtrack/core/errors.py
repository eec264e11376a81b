from __future__ import annotations
from typing import Any, Dict, List, Optional


class BatchTrackError(Exception):
    """Base for errors that map onto the API envelope."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(BatchTrackError):
    status_code = 400
    default_message = "Validation failed"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])


class NotFoundError(BatchTrackError):
    # also raised for records owned by another tenant
    status_code = 404
    default_message = "Not found"


class ConflictError(BatchTrackError):
    status_code = 409
    default_message = "Record was modified by another request"


class PersistenceError(BatchTrackError):
    status_code = 500
    default_message = "Failed to persist changes"


class AuditWriteError(PersistenceError):
    """A batch write and its audit entry diverged; needs reconciliation."""

    default_message = "Audit trail write failed"
