from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from partnerbooks.errors import ValidationError
from partnerbooks.models.sales import PAYMENT_METHOD_BANK, PAYMENT_METHODS, SALE_STATUSES
from partnerbooks.time_utils import end_of_day, parse_iso_datetime


# Upper bound for any single money amount: 9,999,999,999.99
MAX_AMOUNT_CENTS = 999_999_999_999

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - min_lengths: minimum stripped length for string fields
    """
    writable_fields: frozenset
    required_on_create: frozenset = frozenset()
    min_lengths: dict = field(default_factory=dict)


PARTNER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "email", "avatar_url", "notes"}),
    required_on_create=frozenset({"name"}),
    min_lengths={"name": 2},
)

CONTRIBUTION_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "partner_id", "amount_cents", "category", "context", "description",
        "currency", "transaction_date", "receipt_id", "receipt_url",
    }),
    required_on_create=frozenset({"partner_id", "amount_cents"}),
)

AMEND_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "partner_id", "amount_cents", "category", "context", "receipt_id", "transaction_date",
    }),
)

COST_ENTRY_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"description", "total_cost_cents", "currency", "date"}),
    required_on_create=frozenset({"description", "total_cost_cents"}),
    min_lengths={"description": 1},
)

SALE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "product_name", "quantity", "sale_total_cents", "currency", "payment_method",
        "bank_id", "bank_name", "cash_holder", "date", "status",
    }),
    required_on_create=frozenset({"product_name", "sale_total_cents", "payment_method"}),
    min_lengths={"product_name": 1},
)

ALLOCATION_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"sale_id", "cost_entry_id", "allocated_amount_cents"}),
    required_on_create=frozenset({"sale_id", "cost_entry_id", "allocated_amount_cents"}),
)


class _FieldProblem(ValueError):
    def __init__(self, field_name: str, message: str):
        super().__init__(message)
        self.field = field_name
        self.message = message


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(name: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise _FieldProblem(name, f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e15") and decimals (e.g., "12.5")
        if "e" in stripped.lower():
            raise _FieldProblem(name, f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise _FieldProblem(name, f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise _FieldProblem(name, f"{name} must be an integer")
    if isinstance(value, float):
        raise _FieldProblem(name, f"{name} must be an integer, not a decimal")
    raise _FieldProblem(name, f"{name} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
            return value.strip().lower() in ("true", "1")
        raise _FieldProblem(col.key, f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                dt = None
            if dt is None:
                raise _FieldProblem(col.key, f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise _FieldProblem(col.key, f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        if isinstance(value, (dict, list)):
            raise _FieldProblem(col.key, f"{col.key} must be a string")
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    All field problems are collected and raised together as one
    ValidationError whose errors list names each field.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errors: list[dict] = []

    if not partial:
        for name in sorted(policy.required_on_create):
            if payload.get(name) in (None, ""):
                errors.append({"field": name, "message": f"{name} is required"})

    cols = _columns_by_key(model)
    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            errors.append({"field": k, "message": f"Field not allowed: {k}"})
            continue
        col = cols[k]

        if raw is None or raw == "":
            if not col.nullable:
                # On create a missing required field is already reported above
                if partial:
                    problem = "cannot be null" if raw is None else "cannot be blank"
                    errors.append({"field": k, "message": f"{k} {problem}"})
                continue
            patch[k] = None
            continue

        try:
            val = _coerce_value(col, raw)
        except _FieldProblem as exc:
            errors.append({"field": exc.field, "message": exc.message})
            continue

        if isinstance(val, str):
            if not col.nullable and val == "":
                errors.append({"field": k, "message": f"{k} cannot be blank"})
                continue
            min_len = policy.min_lengths.get(k)
            if min_len and len(val) < min_len:
                errors.append({"field": k, "message": f"{k} must be at least {min_len} characters"})
                continue
            if isinstance(col.type, String) and col.type.length and len(val) > col.type.length:
                errors.append({"field": k, "message": f"{k} exceeds max length {col.type.length}"})
                continue

        patch[k] = val

    if errors:
        raise ValidationError("Validation failed", errors=errors)
    return patch


def _check_amount(errors: list, patch: dict, name: str, *, allow_zero: bool = False) -> None:
    if name not in patch or patch[name] is None:
        return
    amount = patch[name]
    if amount < 0 or (amount == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        errors.append({"field": name, "message": f"{name} must be {bound}"})
    elif amount > MAX_AMOUNT_CENTS:
        errors.append({"field": name, "message": f"{name} cannot exceed {MAX_AMOUNT_CENTS}"})


def _check_currency(errors: list, patch: dict) -> None:
    if patch.get("currency") is None:
        return
    patch["currency"] = patch["currency"].upper()
    if not CURRENCY_RE.match(patch["currency"]):
        errors.append({"field": "currency", "message": "currency must be a 3-letter code"})


def _raise_if(errors: list) -> None:
    if errors:
        raise ValidationError("Validation failed", errors=errors)


def enforce_rules_partner(patch: dict) -> None:
    errors: list = []
    email = patch.get("email")
    if email:
        patch["email"] = email.lower()
        if not EMAIL_RE.match(patch["email"]):
            errors.append({"field": "email", "message": "Please enter a valid email"})
    _raise_if(errors)


def enforce_rules_contribution(patch: dict) -> None:
    errors: list = []
    _check_amount(errors, patch, "amount_cents")
    _check_currency(errors, patch)
    _raise_if(errors)


def enforce_rules_cost_entry(patch: dict) -> None:
    errors: list = []
    _check_amount(errors, patch, "total_cost_cents")
    _check_currency(errors, patch)
    _raise_if(errors)


def enforce_rules_sale(patch: dict) -> None:
    errors: list = []
    _check_amount(errors, patch, "sale_total_cents", allow_zero=True)
    _check_currency(errors, patch)

    if "quantity" in patch and patch["quantity"] is not None and patch["quantity"] < 1:
        errors.append({"field": "quantity", "message": "quantity must be at least 1"})

    method = patch.get("payment_method")
    if method is not None:
        patch["payment_method"] = method = method.lower()
        if method not in PAYMENT_METHODS:
            errors.append({"field": "payment_method", "message": f"payment_method must be one of {list(PAYMENT_METHODS)}"})
        elif method == PAYMENT_METHOD_BANK and not (patch.get("bank_id") or patch.get("bank_name")):
            errors.append({"field": "bank_id", "message": "Bank is required for bank payments"})

    status = patch.get("status")
    if status is not None and status not in SALE_STATUSES:
        errors.append({"field": "status", "message": f"status must be one of {list(SALE_STATUSES)}"})
    _raise_if(errors)


def enforce_rules_allocation(patch: dict) -> None:
    errors: list = []
    _check_amount(errors, patch, "allocated_amount_cents")
    _raise_if(errors)


# =============================================================================
# QUERY STRING HELPERS
# =============================================================================

def parse_int_arg(args, name: str, default: int | None, *, minimum: int = 1, maximum: int | None = None) -> int:
    raw = args.get(name)
    if raw in (None, ""):
        return default
    try:
        value = coerce_int(name, raw)
    except _FieldProblem as exc:
        raise ValidationError.for_field(name, exc.message)
    if value < minimum:
        raise ValidationError.for_field(name, f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        value = maximum
    return value


def parse_date_arg(args, name: str, *, required: bool = False, inclusive_end: bool = False):
    raw = args.get(name)
    if raw in (None, ""):
        if required:
            raise ValidationError.for_field(name, f"{name} is required")
        return None
    try:
        dt = parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError.for_field(name, f"{name} must be an ISO-8601 date")
    # Date-only upper bounds run to the end of that day
    if inclusive_end and len(raw.strip()) == 10:
        dt = end_of_day(dt)
    return dt


def parse_pagination(args, *, default_per_page: int = 20, max_per_page: int = 100) -> tuple[int, int]:
    page = parse_int_arg(args, "page", 1)
    per_page = parse_int_arg(args, "per_page", default_per_page, maximum=max_per_page)
    return page, per_page


def parse_choice_arg(args, name: str, choices, default=None):
    raw = args.get(name)
    if raw in (None, ""):
        return default
    if raw not in choices:
        raise ValidationError.for_field(name, f"{name} must be one of {list(choices)}")
    return raw

