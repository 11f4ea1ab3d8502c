"""
Error taxonomy for the counting engine.

Every rejection carries a machine-readable ``error_code`` plus a human-readable
message naming the rule that blocked the action. The API layer maps each class
to an HTTP status (see ``stocktake.main``).
"""
from typing import Any, Dict, Optional


class StocktakeError(Exception):
    """Base exception for counting engine errors."""
    status_code = 400

    def __init__(self, message: str, error_code: str = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code or "STOCKTAKE_ERROR"
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(StocktakeError):
    """Referenced inventory, item or serial record does not exist."""
    status_code = 404


class BusinessValidationError(StocktakeError):
    """Malformed or disallowed input: bad stage, negative quantity, closed stage."""
    status_code = 422


class PermissionDeniedError(StocktakeError):
    """Caller lacks the capability required for the action."""
    status_code = 403


class InventoryStateError(StocktakeError):
    """Lifecycle rule violation: illegal transition, unsettled items, terminal record."""
    status_code = 409


class IntegrationError(StocktakeError):
    """Outbound ERP call failed. Local state is left untouched for a retry."""
    status_code = 502

    def __init__(self, message: str, error_code: str = None, details: Optional[Dict[str, Any]] = None,
                 retryable: bool = True):
        details = dict(details or {})
        details.setdefault("retryable", retryable)
        self.retryable = retryable
        super().__init__(message, error_code or "ERP_UNAVAILABLE", details)


class DataInconsistencyError(StocktakeError):
    """Stored data violates an invariant (e.g. item without expected quantity). Not retried."""
    status_code = 500
