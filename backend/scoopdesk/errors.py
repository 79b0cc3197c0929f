# Overview: Typed domain errors raised by services and mapped to HTTP by routes.

from __future__ import annotations


class DomainError(Exception):
    """
    Base class for every failure a core operation reports to its caller.

    The contract with callers is the error KIND, not the HTTP status:
    routes translate kinds to status codes, CLI commands print them.
    """
    kind = "domain_error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": self.kind}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(DomainError):
    """Referenced session/product/customer/coupon/account does not exist."""
    kind = "not_found"
    http_status = 404


class ConflictError(DomainError, ValueError):
    """Duplicate open session on a terminal, duplicate email/CPF/code."""
    kind = "conflict"
    http_status = 409


class InvalidStateError(DomainError):
    """Entity is not in the lifecycle state the operation requires."""
    kind = "invalid_state"
    http_status = 409


class InsufficientStockError(DomainError):
    kind = "insufficient_stock"
    http_status = 409


class InsufficientBalanceError(DomainError):
    kind = "insufficient_balance"
    http_status = 409


class ValidationError(DomainError, ValueError):
    """400-level input problem, caught before any store access."""
    kind = "validation_error"
    http_status = 400
