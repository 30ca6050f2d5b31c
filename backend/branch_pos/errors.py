"""
Error taxonomy for the branch transactional core.

Every error carries a human-readable message plus a ``details`` dict that the
HTTP layer can serialise as-is. Discrepancy warnings are NOT errors: they ride
along on successful results.

PROPAGATION:
- ValidationError / NotFoundError are raised before any mutation happens.
- ConflictError / BranchConnectionError abort the open branch transaction;
  BranchHandle.begin() rolls back before the exception leaves the block.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NotFoundKind(str, Enum):
    PRODUCT = "product"
    CUSTOMER = "customer"
    SALE = "sale"
    BRANCH = "branch"


class ConflictKind(str, Enum):
    ALREADY_VOIDED = "already_voided"


class ConnectionErrorKind(str, Enum):
    UNREACHABLE = "unreachable"
    AUTH_FAILED = "auth_failed"
    UNSUPPORTED_ENGINE = "unsupported_engine"
    TIMEOUT = "timeout"


class PosError(Exception):
    """Base class for errors surfaced by the sales core."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(PosError):
    """Malformed input. Never partially applied."""


class NotFoundError(PosError):
    def __init__(self, kind: NotFoundKind, message: str | None = None, details: dict | None = None):
        super().__init__(message or f"{kind.value.capitalize()} not found", details)
        self.kind = kind

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind.value, "details": self.details}


class ConflictError(PosError):
    def __init__(self, kind: ConflictKind, message: str, details: dict | None = None):
        super().__init__(message, details)
        self.kind = kind

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind.value, "details": self.details}


class BranchConnectionError(PosError):
    """Infrastructure failure reaching a branch database. Never retried by the router."""

    def __init__(self, kind: ConnectionErrorKind, message: str, details: dict | None = None):
        super().__init__(message, details)
        self.kind = kind

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind.value, "details": self.details}


@dataclass(frozen=True)
class InventoryDiscrepancyWarning:
    """Non-fatal: a touched product ended the transaction with negative stock."""

    product_id: int
    stock_level: int
    message: str = "Stock level is negative; manual reconciliation required"

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "stock_level": self.stock_level,
            "message": self.message,
        }


# Suggested status codes for the HTTP layer
HTTP_STATUS_BY_ERROR = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    BranchConnectionError: 503,
}


def http_status_for(exc: PosError) -> int:
    for error_type, status in HTTP_STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status
    return 500
