# Overview: Service-layer operations for cost entries; create, list, detail and cancel.

from __future__ import annotations

from flask import current_app

from ..errors import InvariantViolation, NotFoundError
from ..extensions import db
from ..models import Allocation, CostEntry
from ..models.sales import COST_STATUS_ACTIVE, COST_STATUS_CANCELLED
from ..validation import COST_ENTRY_POLICY, enforce_rules_cost_entry, validate_payload
from partnerbooks.time_utils import utcnow
from .concurrency import run_with_retry
from .ledger_service import UpdateRow, apply_ledger_mutation, load_owned_for_update


def create_cost_entry(*, org_id: int, user_id: int, payload: dict) -> CostEntry:
    """Create a cost entry with nothing allocated yet (total_cost_cents > 0)."""
    patch = validate_payload(model=CostEntry, payload=payload, policy=COST_ENTRY_POLICY, partial=False)
    enforce_rules_cost_entry(patch)

    def _op():
        entry = CostEntry(
            org_id=org_id,
            description=patch["description"],
            total_cost_cents=patch["total_cost_cents"],
            allocated_amount_cents=0,
            currency=patch.get("currency") or current_app.config["DEFAULT_CURRENCY"],
            date=patch.get("date") or utcnow(),
            status=COST_STATUS_ACTIVE,
            created_by_user_id=user_id,
        )
        db.session.add(entry)
        db.session.commit()
        return entry

    return run_with_retry(_op)


def get_cost_entry(org_id: int, cost_entry_id: int) -> CostEntry:
    entry = db.session.query(CostEntry).filter_by(id=cost_entry_id, org_id=org_id).first()
    if entry is None:
        raise NotFoundError("Cost entry not found")
    return entry


def list_cost_entries(
    org_id: int,
    *,
    date_from=None,
    date_to=None,
    status: str | None = None,
    q: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[CostEntry], int]:
    query = db.session.query(CostEntry).filter(CostEntry.org_id == org_id)
    if date_from is not None:
        query = query.filter(CostEntry.date >= date_from)
    if date_to is not None:
        query = query.filter(CostEntry.date <= date_to)
    if status:
        query = query.filter(CostEntry.status == status)
    if q:
        query = query.filter(CostEntry.description.ilike(f"%{q}%"))

    total = query.count()
    rows = (
        query.order_by(CostEntry.date.desc(), CostEntry.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total


def cost_entry_detail(org_id: int, cost_entry_id: int) -> dict:
    entry = get_cost_entry(org_id, cost_entry_id)
    allocations = (
        db.session.query(Allocation)
        .filter_by(cost_entry_id=entry.id)
        .order_by(Allocation.created_at.desc(), Allocation.id.desc())
        .all()
    )
    body = entry.to_dict()
    body["allocations"] = [a.to_dict() for a in allocations]
    return body


def cancel_cost_entry(*, org_id: int, user_id: int, cost_entry_id: int) -> CostEntry:
    """
    Cancel a cost entry that has nothing allocated.

    Cancelled is terminal: no further allocations are accepted.
    """
    def _precheck():
        entry = load_owned_for_update(CostEntry, cost_entry_id, org_id=org_id, label="Cost entry")
        if entry.status == COST_STATUS_CANCELLED:
            raise InvariantViolation("Cost entry is already cancelled", details={"cost_entry_id": entry.id})
        if entry.allocated_amount_cents > 0:
            raise InvariantViolation(
                "Cannot cancel a cost entry with active allocations",
                details={"cost_entry_id": entry.id, "allocated_amount_cents": entry.allocated_amount_cents},
            )
        return entry

    apply_ledger_mutation(
        [UpdateRow(CostEntry, cost_entry_id, {"status": COST_STATUS_CANCELLED})],
        org_id=org_id,
        precheck=_precheck,
    )
    current_app.logger.info("Cost entry %s cancelled by user %s", cost_entry_id, user_id)
    return get_cost_entry(org_id, cost_entry_id)
