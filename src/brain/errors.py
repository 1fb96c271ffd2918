"""
Error taxonomy for the Content Brain.

- ValidationError: malformed model output or bad caller input. Skipped and
  logged per item; never aborts a whole batch.
- NotFoundError: a referenced source document, idea or template is missing.
  Aborts the operation; the job reports failed.
- ExternalServiceError: model or embedding provider unreachable or
  rate-limited. Retried with backoff by the job runner, or routed to a
  degraded path where one exists.
- ConsistencyError: a secondary accounting side effect (tag counts) failed.
  Logged and accepted as drift.
"""

from typing import Optional


class BrainError(Exception):
    """Base error for the Content Brain."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(BrainError):
    """Raised when input or model output fails validation."""


class NotFoundError(BrainError):
    """Raised when a referenced record does not exist."""

    def __init__(self, resource: str, resource_id: Optional[str]):
        super().__init__(f"{resource} not found: {resource_id}", {"resource": resource, "id": resource_id})
        self.resource = resource
        self.resource_id = resource_id


class ExternalServiceError(BrainError):
    """Raised when an upstream provider call fails."""

    def __init__(self, service: str, message: str, retryable: bool = True):
        super().__init__(f"{service}: {message}", {"service": service})
        self.service = service
        self.retryable = retryable


class ConsistencyError(BrainError):
    """Raised when best-effort counter accounting fails."""
