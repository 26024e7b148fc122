"""
Error taxonomy for the orchestration core.

- ValidationError: malformed request, rejected before any side effect
- NotFoundError: a read that requires existence found nothing
  (an empty retrieval result is NOT this)
- ConflictError: a conditional session write lost a race
- TransientBackendError: backend temporarily unavailable; retried only
  by the model invoker
- PersistentBackendError: auth / quota / malformed-payload class failure;
  fails the request immediately
"""
from typing import Any, Dict, List, Optional


class OrchestrationError(Exception):
    """Base class for errors surfaced by the orchestration core."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message}


class ValidationError(OrchestrationError):
    """Missing or malformed request fields."""

    status_code = 400

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.fields:
            data["fields"] = self.fields
        return data


class NotFoundError(OrchestrationError):
    """Unknown session or user on a read that requires existence."""

    status_code = 404


class ConflictError(OrchestrationError):
    """Conditional write rejected because the stored version moved on."""

    status_code = 409

    def __init__(self, message: str, expected_version: Optional[int] = None, actual_version: Optional[int] = None):
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version


class TransientBackendError(OrchestrationError):
    """Model or store temporarily unavailable."""

    status_code = 503


class PersistentBackendError(OrchestrationError):
    """
    Non-retryable backend failure.

    `cause` is a short classification (auth, quota, bad_request,
    malformed_response, configuration, ...). The underlying provider
    message is kept on the exception chain, not in the public payload.
    """

    status_code = 502

    def __init__(self, message: str, cause: str = "unknown", status: Optional[int] = None):
        super().__init__(message)
        self.cause = cause
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["cause"] = self.cause
        return data
