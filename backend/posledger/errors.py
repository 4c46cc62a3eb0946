# Overview: Error taxonomy shared by the sale, stock, payment and refund services.

"""
Every error raised by the core carries:
- kind: stable machine-readable identifier (e.g. "InsufficientStock")
- status_code: HTTP status the API layer answers with
- message: human readable text
- details: optional structured context (product ids, quantities, ...)
"""


class LedgerError(Exception):
    """Base class for errors surfaced to callers of the core services."""
    kind = "LedgerError"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
        }


class ValidationFailed(LedgerError):
    """Malformed request. Raised before any side effect."""
    kind = "ValidationFailed"
    status_code = 400


class InvalidAmount(LedgerError):
    kind = "InvalidAmount"
    status_code = 400


class ProductNotFound(LedgerError):
    kind = "ProductNotFound"
    status_code = 404


class SaleNotFound(LedgerError):
    kind = "SaleNotFound"
    status_code = 404


class CrossTenantAccess(LedgerError):
    kind = "CrossTenantAccess"
    status_code = 403


class InsufficientStock(LedgerError):
    kind = "InsufficientStock"
    status_code = 409


class AlreadyRefunded(LedgerError):
    kind = "AlreadyRefunded"
    status_code = 409


class InvalidTransition(LedgerError):
    kind = "InvalidTransition"
    status_code = 409


class TransientStoreConflict(LedgerError):
    """Retryable store conflict, raised once the bounded retries are exhausted."""
    kind = "TransientStoreConflict"
    status_code = 503
