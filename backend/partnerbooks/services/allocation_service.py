# Overview: Allocation/reversal engine; allocates cost entries to sales and refunds sales.

"""
Allocation and Refund

CAPACITY INVARIANT (per cost entry):
    0 <= allocated_amount_cents <= total_cost_cents
    allocated_amount_cents == sum(active allocations)

- create_allocation appends an Allocation and raises the cost entry's
  allocated amount in one unit.
- refund_sale reverses every active allocation of a completed sale (flag +
  decrement) and marks the sale refunded in one unit. A refunded sale can
  never be refunded again.

Business rules are checked before the unit and re-checked under the row
locks inside it.
"""

from __future__ import annotations

from sqlalchemy import func

from ..errors import InvariantViolation, format_cents
from ..extensions import db
from ..models import Allocation, CostEntry, Sale
from ..models.sales import (
    COST_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PENDING,
    SALE_STATUS_REFUNDED,
)
from ..validation import ALLOCATION_POLICY, enforce_rules_allocation, validate_payload
from partnerbooks.time_utils import utcnow
from .ledger_service import AdjustTotal, Append, UpdateRow, apply_ledger_mutation, load_owned_for_update


ALLOCATABLE_SALE_STATUSES = (SALE_STATUS_COMPLETED, SALE_STATUS_PENDING)


def active_allocated_cents(sale_id: int) -> int:
    total = db.session.query(func.coalesce(func.sum(Allocation.allocated_amount_cents), 0)).filter(
        Allocation.sale_id == sale_id,
        Allocation.is_reversed.is_(False),
    ).scalar()
    return int(total or 0)


def profit_margin(profit_cents: int, total_cents: int) -> float:
    if not total_cents:
        return 0
    return round(profit_cents / total_cents * 100, 2)


def sale_profit(sale: Sale) -> dict:
    """profit = sale_total - sum(active allocations); margin in percent."""
    allocated = active_allocated_cents(sale.id)
    profit = sale.sale_total_cents - allocated
    return {
        "sale_id": sale.id,
        "sale_total_cents": sale.sale_total_cents,
        "total_allocated_cost_cents": allocated,
        "profit_cents": profit,
        "profit_margin": profit_margin(profit, sale.sale_total_cents),
    }


def _cost_entry_summary(entry: CostEntry) -> dict:
    return {
        "id": entry.id,
        "total_cost_cents": entry.total_cost_cents,
        "allocated_amount_cents": entry.allocated_amount_cents,
        "remaining_amount_cents": entry.remaining_amount_cents,
        "status": entry.status,
    }


def _capacity_error(remaining: int, entry_id: int) -> InvariantViolation:
    return InvariantViolation(
        f"Allocated amount exceeds remaining unallocated amount. Maximum allowed: {format_cents(remaining)}",
        details={"max_allowed_cents": remaining, "cost_entry_id": entry_id},
    )


def create_allocation(*, org_id: int, user_id: int, payload: dict) -> dict:
    """
    Allocate part of a cost entry to a sale.

    Returns dict with allocation, sale summary (allocated cost, profit) and
    cost entry summary (allocated, remaining).

    Raises:
        ValidationError: missing ids, amount <= 0
        NotFoundError: sale or cost entry not in the org
        InvariantViolation: sale not completed/pending, cost entry cancelled,
            amount above remaining (details.max_allowed_cents)
    """
    patch = validate_payload(model=Allocation, payload=payload, policy=ALLOCATION_POLICY, partial=False)
    enforce_rules_allocation(patch)

    sale_id = patch["sale_id"]
    cost_entry_id = patch["cost_entry_id"]
    amount = patch["allocated_amount_cents"]

    def _precheck():
        sale = load_owned_for_update(Sale, sale_id, org_id=org_id)
        entry = load_owned_for_update(CostEntry, cost_entry_id, org_id=org_id, label="Cost entry")

        if sale.status not in ALLOCATABLE_SALE_STATUSES:
            raise InvariantViolation(
                f"Cannot allocate costs to a {sale.status} sale",
                details={"sale_id": sale.id, "status": sale.status},
            )
        if entry.status == COST_STATUS_CANCELLED:
            raise InvariantViolation(
                "Cannot allocate from a cancelled cost entry",
                details={"cost_entry_id": entry.id},
            )
        if amount > entry.remaining_amount_cents:
            raise _capacity_error(entry.remaining_amount_cents, entry.id)
        return sale, entry

    steps = [
        Append(Allocation, {
            "sale_id": sale_id,
            "cost_entry_id": cost_entry_id,
            "allocated_amount_cents": amount,
            "is_reversed": False,
            "created_by_user_id": user_id,
            "created_at": utcnow(),
        }),
        AdjustTotal(CostEntry, cost_entry_id, amount),
    ]

    result = apply_ledger_mutation(steps, org_id=org_id, precheck=_precheck)
    sale, entry = result.context

    return {
        "allocation": result.first(Allocation).to_dict(),
        "sale": sale_profit(sale),
        "cost_entry": _cost_entry_summary(entry),
    }


def refund_sale(*, org_id: int, user_id: int, sale_id: int) -> dict:
    """
    Refund a completed sale and reverse all of its active allocations.

    Returns dict with the sale, the reversed allocations and the cost
    entries whose allocated amounts were restored.

    Raises:
        NotFoundError: sale not in the org
        InvariantViolation: already refunded, or not completed
    """
    def _precheck():
        sale = load_owned_for_update(Sale, sale_id, org_id=org_id)
        if sale.status == SALE_STATUS_REFUNDED:
            raise InvariantViolation("Sale has already been refunded", details={"sale_id": sale.id})
        if sale.status != SALE_STATUS_COMPLETED:
            raise InvariantViolation(
                "Only completed sales can be refunded",
                details={"sale_id": sale.id, "status": sale.status},
            )
        allocations = (
            db.session.query(Allocation)
            .filter_by(sale_id=sale.id, is_reversed=False)
            .order_by(Allocation.id.asc())
            .all()
        )
        return sale, allocations

    def _steps(ctx):
        sale, allocations = ctx
        now = utcnow()
        steps = []
        for allocation in allocations:
            steps.append(UpdateRow(Allocation, allocation.id, {"is_reversed": True, "reversed_at": now}))
            steps.append(AdjustTotal(CostEntry, allocation.cost_entry_id, -allocation.allocated_amount_cents))
        steps.append(UpdateRow(Sale, sale.id, {
            "status": SALE_STATUS_REFUNDED,
            "refunded_at": now,
            "refunded_by_user_id": user_id,
        }))
        return steps

    result = apply_ledger_mutation(_steps, org_id=org_id, precheck=_precheck)
    sale, allocations = result.context

    entries = [row for (model, _), row in result.touched.items() if model is CostEntry]
    return {
        "sale": sale.to_dict(),
        "reversed_allocations": [a.to_dict() for a in allocations],
        "cost_entries": [_cost_entry_summary(e) for e in sorted(entries, key=lambda e: e.id)],
    }
