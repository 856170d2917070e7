# Overview: Service-layer operations for partner contributions; create, amend, undo and queries.

"""
Contribution Correction Engine

Contributions are immutable once written. Mistakes are corrected with new
rows that point back at the original through related_to:

- adjustment: carries an amount delta (amend)
- undo:       carries the negated effective amount (undo)

EFFECTIVE AMOUNT of a contribution = amount_cents + sum(adjustments on it).
The partner's running total always equals the sum of contribution,
adjustment and undo rows for that partner.

Every operation here writes through ledger_service.apply_ledger_mutation(),
so rows and running totals commit together.

CONCURRENCY: amend and undo always write the original contribution row, and
its version_id turns a correction computed from stale reads into a
StaleDataError. The unit then retries against fresh values, so concurrent
amends to the same amount converge on one adjustment and nothing is amended
after an undo.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import InvariantViolation, NotFoundError, ValidationError, format_cents
from ..extensions import db
from ..models import Partner, Receipt, Transaction
from ..models.ledger import (
    TRANSACTION_TYPE_ADJUSTMENT,
    TRANSACTION_TYPE_CONTRIBUTION,
    TRANSACTION_TYPE_UNDO,
)
from ..validation import (
    AMEND_POLICY,
    CONTRIBUTION_POLICY,
    enforce_rules_contribution,
    validate_payload,
)
from partnerbooks.time_utils import as_utc_naive, utcnow
from .idempotency_service import normalize_key, request_fingerprint, run_idempotent
from .ledger_service import AdjustTotal, Append, UpdateRow, apply_ledger_mutation, load_owned_for_update


# =============================================================================
# HELPERS
# =============================================================================

def effective_amount(transaction: Transaction) -> int:
    """amount_cents plus every adjustment recorded against the row."""
    adjustments = db.session.query(func.coalesce(func.sum(Transaction.amount_cents), 0)).filter(
        Transaction.related_to == transaction.id,
        Transaction.type == TRANSACTION_TYPE_ADJUSTMENT,
    ).scalar()
    return int(transaction.amount_cents) + int(adjustments or 0)


def find_undo(transaction_id: int) -> Transaction | None:
    return db.session.query(Transaction).filter_by(
        related_to=transaction_id,
        type=TRANSACTION_TYPE_UNDO,
    ).first()


def _adjustment_ids(transaction_id: int) -> list[int]:
    rows = db.session.query(Transaction.id).filter_by(
        related_to=transaction_id,
        type=TRANSACTION_TYPE_ADJUSTMENT,
    ).all()
    return [row_id for (row_id,) in rows]


def _owned_receipt(org_id: int, receipt_id: int) -> Receipt | None:
    return db.session.query(Receipt).filter_by(id=receipt_id, org_id=org_id).first()


def _link_receipt(org_id: int, receipt_id: int, transaction_id: int) -> None:
    """
    Point an uploaded receipt at its transaction.

    Runs after the contribution committed; a failure here is logged and
    never undoes the contribution.
    """
    try:
        receipt = _owned_receipt(org_id, receipt_id)
        if receipt is None:
            return
        receipt.transaction_id = transaction_id
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Failed to link receipt %s to transaction %s", receipt_id, transaction_id, exc_info=True
        )


# =============================================================================
# CREATE
# =============================================================================

def create_contribution(
    *,
    org_id: int,
    user_id: int,
    payload: dict,
    idempotency_key: str | None = None,
) -> tuple[Transaction, bool]:
    """
    Record a partner contribution.

    Args:
        payload: partner_id, amount_cents (> 0) and optional category,
            context, description, currency, transaction_date, receipt_id,
            receipt_url.
        idempotency_key: optional; a repeat with the same payload returns the
            original row instead of writing again.

    Returns:
        (transaction, duplicate)

    Raises:
        ValidationError, NotFoundError (partner), IdempotencyKeyReuse,
        AtomicityFailure
    """
    patch = validate_payload(model=Transaction, payload=payload, policy=CONTRIBUTION_POLICY, partial=False)
    enforce_rules_contribution(patch)

    key = normalize_key(idempotency_key)
    fingerprint = request_fingerprint("create_contribution", patch) if key else None

    partner_id = patch["partner_id"]
    amount_cents = patch["amount_cents"]

    receipt_id = patch.get("receipt_id")
    receipt_url = patch.get("receipt_url")
    if receipt_id is not None:
        receipt = _owned_receipt(org_id, receipt_id)
        if receipt is None:
            current_app.logger.warning("Receipt %s not found for contribution; recording without it", receipt_id)
            receipt_id = None
        else:
            receipt_url = receipt_url or receipt.url

    def _mutate() -> Transaction:
        def _precheck():
            return load_owned_for_update(Partner, partner_id, org_id=org_id)

        values = {
            "partner_id": partner_id,
            "amount_cents": amount_cents,
            "type": TRANSACTION_TYPE_CONTRIBUTION,
            "category": patch.get("category"),
            "context": patch.get("context"),
            "description": patch.get("description"),
            "currency": patch.get("currency") or current_app.config["DEFAULT_CURRENCY"],
            "transaction_date": patch.get("transaction_date") or utcnow(),
            "recorded_by": user_id,
            "receipt_id": receipt_id,
            "receipt_url": receipt_url,
            "idempotency_key": key,
            "request_fingerprint": fingerprint,
            "is_reversing": False,
        }

        def _steps(_partner):
            return [
                Append(Transaction, dict(values, created_at=utcnow())),
                AdjustTotal(Partner, partner_id, amount_cents),
            ]

        result = apply_ledger_mutation(_steps, org_id=org_id, precheck=_precheck)
        return result.first(Transaction)

    transaction, duplicate = run_idempotent(org_id, key, fingerprint, _mutate)

    if not duplicate and receipt_id is not None:
        _link_receipt(org_id, receipt_id, transaction.id)

    return transaction, duplicate


# =============================================================================
# AMEND
# =============================================================================

def amend_contribution(*, org_id: int, user_id: int, transaction_id: int, payload: dict) -> dict:
    """
    Correct a contribution without rewriting its amount.

    - category / context / receipt_id / transaction_date: updated in place
    - partner_id: the effective amount moves to the new partner and the row
      plus its adjustments are re-pointed
    - amount_cents: a companion adjustment row carries new - effective

    Returns dict with transaction, adjustment (or None) and the new
    effective amount.

    Raises:
        ValidationError: empty or malformed patch
        NotFoundError: transaction, partner or receipt not in the org
        InvariantViolation: not a contribution, or already undone
    """
    patch = validate_payload(model=Transaction, payload=payload, policy=AMEND_POLICY, partial=True)
    if not patch:
        raise ValidationError("No fields to update")
    enforce_rules_contribution(patch)
    if "partner_id" in patch and patch["partner_id"] is None:
        raise ValidationError.for_field("partner_id", "partner_id cannot be null")
    if "amount_cents" in patch and patch["amount_cents"] is None:
        raise ValidationError.for_field("amount_cents", "amount_cents cannot be null")

    metadata = {k: patch[k] for k in ("category", "context", "receipt_id", "transaction_date") if k in patch}
    if metadata.get("receipt_id") is not None:
        receipt = _owned_receipt(org_id, metadata["receipt_id"])
        if receipt is None:
            raise NotFoundError("Receipt not found")
        metadata["receipt_url"] = receipt.url

    def _precheck():
        original = load_owned_for_update(Transaction, transaction_id, org_id=org_id, label="Transaction")
        if original.type != TRANSACTION_TYPE_CONTRIBUTION:
            raise InvariantViolation(
                "Only contribution transactions can be amended",
                details={"transaction_id": original.id, "type": original.type},
            )
        undo = find_undo(original.id)
        if undo is not None:
            raise InvariantViolation(
                "Transaction has been undone and cannot be amended",
                details={"transaction_id": original.id, "undo_transaction_id": undo.id},
            )

        new_partner_id = patch.get("partner_id", original.partner_id)
        if new_partner_id != original.partner_id:
            load_owned_for_update(Partner, new_partner_id, org_id=org_id)

        return {
            "original": original,
            "effective": effective_amount(original),
            "adjustment_ids": _adjustment_ids(original.id),
            "new_partner_id": new_partner_id,
        }

    def _steps(ctx):
        original = ctx["original"]
        effective = ctx["effective"]
        owner_id = original.partner_id

        # Always written, even for a pure amount change: the version bump on
        # the original makes a concurrent amend or undo fail and retry.
        row_update = dict(metadata, updated_at=utcnow())
        if ctx["new_partner_id"] != owner_id:
            row_update["partner_id"] = ctx["new_partner_id"]
        steps = [UpdateRow(Transaction, original.id, row_update)]

        if ctx["new_partner_id"] != owner_id:
            steps.append(AdjustTotal(Partner, owner_id, -effective))
            steps.append(AdjustTotal(Partner, ctx["new_partner_id"], effective))
            for adjustment_id in ctx["adjustment_ids"]:
                steps.append(UpdateRow(Transaction, adjustment_id, {"partner_id": ctx["new_partner_id"]}))
            owner_id = ctx["new_partner_id"]

        new_amount = patch.get("amount_cents", effective)
        delta = new_amount - effective
        if delta != 0:
            steps.append(Append(Transaction, {
                "partner_id": owner_id,
                "amount_cents": delta,
                "type": TRANSACTION_TYPE_ADJUSTMENT,
                "category": metadata.get("category", original.category),
                "context": metadata.get("context", original.context),
                "description": f"Amount corrected from {format_cents(effective)} to {format_cents(new_amount)}",
                "currency": original.currency,
                "transaction_date": utcnow(),
                "recorded_by": user_id,
                "related_to": original.id,
                "is_reversing": False,
                "created_at": utcnow(),
            }))
            steps.append(AdjustTotal(Partner, owner_id, delta))
        return steps

    result = apply_ledger_mutation(_steps, org_id=org_id, precheck=_precheck)

    transaction = db.session.get(Transaction, transaction_id)
    return {
        "transaction": transaction,
        "adjustment": result.first(Transaction),
        "effective_amount_cents": effective_amount(transaction),
    }


# =============================================================================
# UNDO
# =============================================================================

def undo_transaction(
    *,
    org_id: int,
    user_id: int,
    transaction_id: int,
    reason: str | None = None,
    idempotency_key: str | None = None,
) -> tuple[Transaction, bool]:
    """
    Reverse a contribution with an undo row.

    The undo carries -effective amount and decrements the partner total in
    the same unit. At most one undo may reference a contribution; the
    partial unique index on related_to settles concurrent undos.

    Returns:
        (undo_transaction, duplicate)
    """
    key = normalize_key(idempotency_key)
    reason = (str(reason).strip() or None) if reason is not None else None
    fingerprint = request_fingerprint("undo_transaction", {"transaction_id": transaction_id, "reason": reason}) if key else None
    window = timedelta(seconds=current_app.config["FAST_UNDO_WINDOW_SECONDS"])

    def _precheck():
        original = load_owned_for_update(Transaction, transaction_id, org_id=org_id, label="Transaction")
        if original.type == TRANSACTION_TYPE_UNDO:
            raise InvariantViolation(
                "Undo transactions cannot be undone",
                details={"transaction_id": original.id},
            )
        if original.type != TRANSACTION_TYPE_CONTRIBUTION:
            raise InvariantViolation(
                "Only contribution transactions can be undone",
                details={"transaction_id": original.id, "type": original.type},
            )
        existing = find_undo(original.id)
        if existing is not None:
            raise InvariantViolation(
                "Transaction has already been undone",
                details={"transaction_id": original.id, "undo_transaction_id": existing.id},
            )
        return {"original": original, "effective": effective_amount(original)}

    def _steps(ctx):
        original = ctx["original"]
        amount = -abs(ctx["effective"])
        now = utcnow()
        return [
            Append(Transaction, {
                "partner_id": original.partner_id,
                "amount_cents": amount,
                "type": TRANSACTION_TYPE_UNDO,
                "category": original.category,
                "context": original.context,
                "description": reason,
                "currency": original.currency,
                "transaction_date": now,
                "recorded_by": user_id,
                "related_to": original.id,
                "idempotency_key": key,
                "request_fingerprint": fingerprint,
                "is_reversing": now - as_utc_naive(original.created_at) <= window,
                "created_at": now,
            }),
            UpdateRow(Transaction, original.id, {"updated_at": now}),
            AdjustTotal(Partner, original.partner_id, amount),
        ]

    def _mutate() -> Transaction:
        return apply_ledger_mutation(_steps, org_id=org_id, precheck=_precheck).first(Transaction)

    try:
        return run_idempotent(org_id, key, fingerprint, _mutate)
    except IntegrityError:
        # Lost the race against a concurrent undo of the same row
        raise InvariantViolation(
            "Transaction has already been undone",
            details={"transaction_id": transaction_id},
        )


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(org_id: int, transaction_id: int) -> Transaction:
    transaction = db.session.query(Transaction).filter_by(id=transaction_id, org_id=org_id).first()
    if transaction is None:
        raise NotFoundError("Transaction not found")
    return transaction


def transaction_detail(org_id: int, transaction_id: int) -> dict:
    transaction = get_transaction(org_id, transaction_id)
    corrections = (
        db.session.query(Transaction)
        .filter_by(related_to=transaction.id)
        .order_by(Transaction.id.asc())
        .all()
    )
    undo = next((t for t in corrections if t.type == TRANSACTION_TYPE_UNDO), None)

    body = transaction.to_dict()
    body["adjustments"] = [t.to_dict() for t in corrections if t.type == TRANSACTION_TYPE_ADJUSTMENT]
    body["undo"] = undo.to_dict() if undo else None
    body["is_undone"] = undo is not None
    if transaction.type == TRANSACTION_TYPE_CONTRIBUTION:
        body["effective_amount_cents"] = effective_amount(transaction)
    return body


def query_transactions(
    org_id: int,
    *,
    partner_id: int | None = None,
    tx_type: str | None = None,
    category: str | None = None,
    date_from=None,
    date_to=None,
    search: str | None = None,
):
    """Filtered transaction query, newest first. Date bounds apply to created_at."""
    query = db.session.query(Transaction).filter(Transaction.org_id == org_id)
    if partner_id is not None:
        query = query.filter(Transaction.partner_id == partner_id)
    if tx_type:
        query = query.filter(Transaction.type == tx_type)
    if category:
        query = query.filter(Transaction.category == category)
    if date_from is not None:
        query = query.filter(Transaction.created_at >= date_from)
    if date_to is not None:
        query = query.filter(Transaction.created_at <= date_to)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Transaction.context.ilike(pattern), Transaction.description.ilike(pattern)))
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc())


def list_transactions(org_id: int, *, page: int = 1, per_page: int = 20, **filters) -> tuple[list[Transaction], int]:
    query = query_transactions(org_id, **filters)
    total = query.count()
    rows = query.offset((page - 1) * per_page).limit(per_page).all()
    return rows, total
