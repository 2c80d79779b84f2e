# Overview: Exception taxonomy shared by the sale engine services.

from __future__ import annotations


class SaleError(Exception):
    """Base for sale engine failures. details is surfaced to API callers."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(SaleError):
    """Referenced sale, line, product or settlement does not exist."""


class InsufficientStockError(SaleError):
    """Requested quantity exceeds available stock for a tracked product."""


class ConcurrentModificationError(SaleError):
    """The sale changed since the caller read it; re-fetch and retry manually."""


class SaleStateError(SaleError):
    """Operation not allowed in the sale's (or settlement's) current state."""


class ApprovalRequiredError(SaleError):
    """Policy gate: a net-negative sale needs elevated approval."""


class CommitFailure(SaleError):
    """Unexpected failure inside a commit unit; nothing was persisted."""


class PermissionDeniedError(Exception):
    """Raised when the acting staff member lacks a required capability."""
    def __init__(self, message: str, permission_code: str | None = None):
        super().__init__(message)
        self.permission_code = permission_code
