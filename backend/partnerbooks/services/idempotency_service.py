# Overview: Idempotency guard for operations that write Transaction rows.

"""
Idempotency Guard

Keys are scoped per organization and stored on the Transaction row they
produced, together with a fingerprint of the request payload.

- same key, same fingerprint      -> duplicate: return the prior row, apply nothing
- same key, different fingerprint -> IdempotencyKeyReuse (409)
- unknown key                     -> proceed; the unique constraint on
                                     (org_id, idempotency_key) settles races
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError

from ..errors import IdempotencyKeyReuse, ValidationError
from ..extensions import db
from ..models import Transaction


MAX_KEY_LENGTH = 255


@dataclass
class IdempotencyCheck:
    is_new: bool
    prior: Optional[Transaction] = None


def normalize_key(key) -> str | None:
    if key is None:
        return None
    key = str(key).strip()
    if not key:
        return None
    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError.for_field("idempotency_key", f"Idempotency key must be at most {MAX_KEY_LENGTH} characters")
    return key


def request_fingerprint(action: str, payload: dict) -> str:
    """sha256 over the canonical JSON form of (action, payload)."""
    canonical = json.dumps({"action": action, "payload": payload}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def find_by_key(org_id: int, key: str) -> Transaction | None:
    return db.session.query(Transaction).filter_by(org_id=org_id, idempotency_key=key).first()


def check_or_reserve(org_id: int, key: str | None, fingerprint: str | None) -> IdempotencyCheck:
    """
    Look up a prior Transaction for (org_id, key) before any mutation.

    Raises:
        IdempotencyKeyReuse: the key was used with a different payload.
    """
    if not key:
        return IdempotencyCheck(is_new=True)

    prior = find_by_key(org_id, key)
    if prior is None:
        return IdempotencyCheck(is_new=True)

    if prior.request_fingerprint and fingerprint and prior.request_fingerprint != fingerprint:
        raise IdempotencyKeyReuse(
            "Idempotency key was already used for a different request",
            details={"idempotency_key": key, "transaction_id": prior.id},
        )
    return IdempotencyCheck(is_new=False, prior=prior)


def run_idempotent(org_id: int, key: str | None, fingerprint: str | None, mutate: Callable[[], Transaction]):
    """
    Run mutate() once per idempotency key.

    Returns:
        (transaction, duplicate) tuple.

    A concurrent request that commits the same key first makes mutate()
    fail on the unique constraint; the winner's row is then returned as a
    duplicate. IntegrityErrors unrelated to the key propagate.
    """
    check = check_or_reserve(org_id, key, fingerprint)
    if not check.is_new:
        return check.prior, True

    try:
        return mutate(), False
    except IntegrityError:
        db.session.rollback()
        if not key:
            raise
        check = check_or_reserve(org_id, key, fingerprint)
        if check.is_new:
            raise
        return check.prior, True
