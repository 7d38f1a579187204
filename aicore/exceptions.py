"""Error taxonomy shared by the template engine, conversation ledger and usage meter."""
from typing import Any, Dict, Optional


class AICoreError(Exception):
    """Base class for every error raised by the core services."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, **self.details}


class ValidationError(AICoreError):
    """Malformed input: bad rating, unknown role, missing template variables, bad period."""


class StateConflict(AICoreError):
    """The operation is illegal in the record's current state."""


class NotFound(AICoreError):
    """The record does not exist within the caller's scope."""


class PermissionDenied(AICoreError):
    """The actor may not mutate this record (system templates, foreign templates)."""


class ProviderFailure(AICoreError):
    """The upstream AI call failed. The outcome was still recorded as a usage log."""

    def __init__(self, message: str, usage_log=None, status: Optional[str] = None):
        super().__init__(message, {"status": status, "usage_log_id": getattr(usage_log, "id", None)})
        self.usage_log = usage_log
        self.status = status
