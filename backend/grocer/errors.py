# Overview: Domain error taxonomy shared by services and routes.

"""
Every failure a service raises on purpose is a DomainError subclass.

Each subclass carries a stable `kind` (part of the JSON error body) and the
HTTP status the API uses by default. Routes may override the status where a
different mapping applies (a missing customer referenced by a sale is a 400,
not a 404).
"""

from __future__ import annotations


class DomainError(Exception):
    kind = "domain_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind, "details": self.details}


class InvalidInputError(DomainError):
    """Malformed or out-of-range input. Raised before any write."""
    kind = "invalid_input"
    status_code = 400


class NotFoundError(DomainError):
    kind = "not_found"
    status_code = 404


class InsufficientStockError(DomainError):
    """A decrement would take an inventory row below zero."""
    kind = "insufficient_stock"
    status_code = 400

    def __init__(self, product_name: str, available: int, requested: int, details: dict | None = None):
        merged = {"product": product_name, "available": available, "requested": requested}
        merged.update(details or {})
        super().__init__(
            f"Insufficient stock for {product_name}: available {available}, requested {requested}",
            merged,
        )


class AlreadyCancelledError(DomainError):
    kind = "already_cancelled"
    status_code = 400


class ConflictError(DomainError):
    """Uniqueness or referential rule violated (duplicate barcode, row still referenced)."""
    kind = "conflict"
    status_code = 409


class PermissionDeniedError(DomainError):
    kind = "permission_denied"
    status_code = 403
