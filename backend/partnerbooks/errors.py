# Overview: Ledger error taxonomy and its JSON representation.

"""
Ledger Errors

Every business failure raised by the services is a LedgerError subclass.
Route handlers catch LedgerError themselves and answer with
error_response(), which renders to_dict() with the class's status code.
The handler registered in create_app() renders the same body for any
LedgerError that escapes a route.

Response shape:
    {"error": <message>, "kind": <kind>, "errors": [...], "details": {...}}

Duplicate idempotent requests are NOT errors and never raise.
"""

from __future__ import annotations

from flask import jsonify


class LedgerError(Exception):
    """Base class for business-rule failures surfaced to the caller."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": self.kind}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LedgerError):
    """Malformed, missing, or out-of-range input. No mutation attempted."""

    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str = "Validation failed", errors: list[dict] | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class NotFoundError(LedgerError):
    """Referenced row is absent or belongs to another organization."""

    kind = "not_found"
    status_code = 404


class InvariantViolation(LedgerError):
    """
    A ledger invariant would break: capacity exceeded, double refund,
    double undo, correcting a non-contribution row.
    """

    kind = "invariant_violation"
    status_code = 409


class IdempotencyKeyReuse(InvariantViolation):
    """Idempotency key already used for a different request payload."""

    kind = "idempotency_key_reuse"


class AtomicityFailure(LedgerError):
    """
    The atomic unit could not commit (conflict retries exhausted, lock
    timeout). Nothing was committed; the caller may retry.
    """

    kind = "atomicity_failure"
    status_code = 503

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryable"] = True
        return body


def format_cents(amount_cents: int) -> str:
    """Render minor units as a major-unit string: 60000 -> '600.00'."""
    sign = "-" if amount_cents < 0 else ""
    whole, frac = divmod(abs(int(amount_cents)), 100)
    return f"{sign}{whole}.{frac:02d}"


def error_response(exc: LedgerError):
    """(body, status) pair for a LedgerError, for use inside route handlers."""
    return jsonify(exc.to_dict()), exc.status_code


def internal_error_response():
    return jsonify({"error": "Internal server error", "kind": "internal_error"}), 500
