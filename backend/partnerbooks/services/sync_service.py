# Overview: Batch sync of offline-queued ledger operations.

"""
Offline Queue Sync

Clients queue operations while offline and replay them in one request.
Each item runs in its own atomic unit, so one failing item never affects
another. Replaying a batch is safe:

- create_contribution / undo_transaction are keyed by idempotency_key,
  falling back to "sync:<local_id>"
- amend_contribution converges: re-applying the same target values
  writes nothing
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import LedgerError, ValidationError
from ..extensions import db
from . import contribution_service


ACTION_CREATE_CONTRIBUTION = "create_contribution"
ACTION_AMEND_CONTRIBUTION = "amend_contribution"
ACTION_UNDO_TRANSACTION = "undo_transaction"

SYNC_ACTIONS = (
    ACTION_CREATE_CONTRIBUTION,
    ACTION_AMEND_CONTRIBUTION,
    ACTION_UNDO_TRANSACTION,
)

STATUS_OK = "ok"
STATUS_DUPLICATE = "duplicate"
STATUS_ERROR = "error"


def effective_key(item: dict) -> str | None:
    key = item.get("idempotency_key")
    if key not in (None, ""):
        return str(key)
    local_id = item.get("local_id")
    if local_id in (None, ""):
        return None
    return f"sync:{local_id}"


def _transaction_id(payload: dict) -> int:
    raw = payload.get("transaction_id")
    if isinstance(raw, bool) or raw in (None, ""):
        raise ValidationError.for_field("transaction_id", "transaction_id is required")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError.for_field("transaction_id", "transaction_id must be an integer")


def _process_item(item, *, org_id: int, user_id: int) -> tuple[str, dict]:
    if not isinstance(item, dict):
        raise ValidationError("Each item must be an object")

    action = item.get("action")
    payload = item.get("payload") or {}
    if action not in SYNC_ACTIONS:
        raise ValidationError.for_field("action", f"action must be one of {list(SYNC_ACTIONS)}")
    if not isinstance(payload, dict):
        raise ValidationError.for_field("payload", "payload must be an object")

    if action == ACTION_CREATE_CONTRIBUTION:
        transaction, duplicate = contribution_service.create_contribution(
            org_id=org_id,
            user_id=user_id,
            payload=payload,
            idempotency_key=effective_key(item),
        )
        return (STATUS_DUPLICATE if duplicate else STATUS_OK), transaction.to_dict()

    if action == ACTION_UNDO_TRANSACTION:
        undo, duplicate = contribution_service.undo_transaction(
            org_id=org_id,
            user_id=user_id,
            transaction_id=_transaction_id(payload),
            reason=payload.get("reason"),
            idempotency_key=effective_key(item),
        )
        return (STATUS_DUPLICATE if duplicate else STATUS_OK), undo.to_dict()

    fields = {k: v for k, v in payload.items() if k != "transaction_id"}
    outcome = contribution_service.amend_contribution(
        org_id=org_id,
        user_id=user_id,
        transaction_id=_transaction_id(payload),
        payload=fields,
    )
    return STATUS_OK, {
        "transaction": outcome["transaction"].to_dict(),
        "adjustment": outcome["adjustment"].to_dict() if outcome["adjustment"] else None,
        "effective_amount_cents": outcome["effective_amount_cents"],
    }


def sync_queue(*, org_id: int, user_id: int, items) -> dict:
    """
    Process a batch of queued operations in order.

    Returns {"results": [...], "counts": {...}}. Per-item failures are
    reported in the results and never raised.

    Raises:
        ValidationError: items is not a list or exceeds SYNC_MAX_ITEMS
    """
    if not isinstance(items, list):
        raise ValidationError.for_field("items", "items must be a list")
    max_items = current_app.config["SYNC_MAX_ITEMS"]
    if len(items) > max_items:
        raise ValidationError.for_field("items", f"At most {max_items} items can be synced at once")

    results = []
    counts = {STATUS_OK: 0, STATUS_DUPLICATE: 0, STATUS_ERROR: 0}

    for item in items:
        local_id = item.get("local_id") if isinstance(item, dict) else None
        action = item.get("action") if isinstance(item, dict) else None
        entry = {"local_id": local_id, "action": action}
        try:
            status, body = _process_item(item, org_id=org_id, user_id=user_id)
            entry.update(status=status, result=body)
        except LedgerError as exc:
            db.session.rollback()
            entry.update(status=STATUS_ERROR, error=exc.to_dict())
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Failed to sync item %s", local_id)
            entry.update(status=STATUS_ERROR, error={"error": "Internal server error", "kind": "internal_error"})
        counts[entry["status"]] += 1
        results.append(entry)

    return {"results": results, "counts": counts}
