# Overview: Atomic mutation engine; commits ledger rows and running-total changes as one unit.

"""
Ledger Mutation Engine

Every write that touches money goes through apply_ledger_mutation(). A
mutation is a list of steps executed inside ONE database transaction:

- Append:      insert an immutable ledger row (Transaction, Allocation)
- AdjustTotal: add a signed delta to a running total (Partner, CostEntry)
- UpdateRow:   change non-monetary columns on an owned row (flags, status,
               ownership references)

INVARIANTS:
- All steps commit together or none do.
- Every AdjustTotal/UpdateRow target is loaded FOR UPDATE and must belong
  to the caller's organization.
- CostEntry: 0 <= allocated_amount_cents <= total_cost_cents after every
  adjustment; status follows the remaining amount (cancelled is sticky).
- Running totals are only ever moved by deltas, never recomputed here
  (reconciliation_service does that, explicitly).

Steps and the precheck are rebuilt on each attempt so a retry after an
optimistic-lock conflict re-validates against fresh values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from ..errors import InvariantViolation, NotFoundError, format_cents
from ..extensions import db
from ..models import Allocation, CostEntry, Partner, Sale, Transaction
from ..models.sales import (
    COST_STATUS_ACTIVE,
    COST_STATUS_CANCELLED,
    COST_STATUS_FULLY_ALLOCATED,
)
from .concurrency import lock_for_update, run_with_retry


# Column that holds the running total, per model.
TOTAL_COLUMNS = {
    Partner: "total_contributed_cents",
    CostEntry: "allocated_amount_cents",
}

APPENDABLE_MODELS = (Transaction, Allocation)
UPDATABLE_MODELS = (Partner, CostEntry, Sale, Transaction, Allocation)

# Columns UpdateRow may never touch.
PROTECTED_COLUMNS = frozenset({
    "id",
    "org_id",
    "amount_cents",
    "allocated_amount_cents",
    "total_contributed_cents",
    "total_cost_cents",
    "sale_total_cents",
    "version_id",
    "created_at",
})


@dataclass(frozen=True)
class Append:
    model: type
    values: dict


@dataclass(frozen=True)
class AdjustTotal:
    model: type
    target_id: int
    delta_cents: int


@dataclass(frozen=True)
class UpdateRow:
    model: type
    target_id: int
    values: dict


@dataclass
class LedgerMutationResult:
    appended: list = field(default_factory=list)
    touched: dict = field(default_factory=dict)
    context: Any = None

    def first(self, model: type):
        for row in self.appended:
            if isinstance(row, model):
                return row
        return None

    def get(self, model: type, target_id: int):
        return self.touched.get((model, target_id))


def apply_ledger_mutation(
    steps: Iterable | Callable[[Any], Iterable],
    *,
    org_id: int,
    precheck: Optional[Callable[[], Any]] = None,
) -> LedgerMutationResult:
    """
    Execute a ledger mutation atomically.

    Args:
        steps: list of Append/AdjustTotal/UpdateRow, or a callable taking the
            precheck result and returning that list (evaluated per attempt).
        org_id: owning organization; all targets must belong to it.
        precheck: optional callable run inside the unit before any step. It
            should lock and re-validate whatever the steps depend on and
            raise a LedgerError to abort.

    Raises:
        NotFoundError: a target is missing or owned by another organization.
        InvariantViolation: a running-total bound would break.
        AtomicityFailure: conflict retries exhausted, nothing committed.
    """
    def _op():
        context = precheck() if precheck is not None else None
        planned = steps(context) if callable(steps) else steps

        result = LedgerMutationResult(context=context)
        for step in planned:
            _apply_step(step, org_id=org_id, result=result)

        db.session.commit()
        return result

    return run_with_retry(_op)


def load_owned_for_update(model: type, target_id: int, *, org_id: int, label: str | None = None):
    """Load one row of model FOR UPDATE, scoped to org_id, or raise NotFoundError."""
    row = lock_for_update(
        db.session.query(model).filter_by(id=target_id, org_id=org_id)
    ).first()
    if row is None:
        raise NotFoundError(f"{label or model.__name__} not found")
    return row


def _locked_target(model: type, target_id: int, *, org_id: int, result: LedgerMutationResult):
    key = (model, target_id)
    row = result.touched.get(key)
    if row is None:
        row = load_owned_for_update(model, target_id, org_id=org_id)
        result.touched[key] = row
    return row


def _apply_step(step, *, org_id: int, result: LedgerMutationResult) -> None:
    if isinstance(step, Append):
        if step.model not in APPENDABLE_MODELS:
            raise TypeError(f"{step.model.__name__} is not an append-only ledger model")
        values = dict(step.values)
        values["org_id"] = org_id
        row = step.model(**values)
        db.session.add(row)
        db.session.flush()  # assigns row.id without committing
        result.appended.append(row)
        return

    if isinstance(step, AdjustTotal):
        column = TOTAL_COLUMNS.get(step.model)
        if column is None:
            raise TypeError(f"{step.model.__name__} has no running total")
        row = _locked_target(step.model, step.target_id, org_id=org_id, result=result)
        if step.model is CostEntry:
            _adjust_cost_entry(row, step.delta_cents)
        else:
            setattr(row, column, (getattr(row, column) or 0) + step.delta_cents)
        return

    if isinstance(step, UpdateRow):
        if step.model not in UPDATABLE_MODELS:
            raise TypeError(f"{step.model.__name__} cannot be updated by the ledger engine")
        blocked = PROTECTED_COLUMNS.intersection(step.values)
        if blocked:
            raise TypeError(f"UpdateRow cannot change monetary or identity columns: {sorted(blocked)}")
        row = _locked_target(step.model, step.target_id, org_id=org_id, result=result)
        for name, value in step.values.items():
            setattr(row, name, value)
        return

    raise TypeError(f"Unknown ledger step: {step!r}")


def _adjust_cost_entry(entry: CostEntry, delta_cents: int) -> None:
    remaining = entry.total_cost_cents - entry.allocated_amount_cents
    new_allocated = entry.allocated_amount_cents + delta_cents

    if new_allocated > entry.total_cost_cents:
        raise InvariantViolation(
            "Allocated amount exceeds remaining unallocated amount. "
            f"Maximum allowed: {format_cents(remaining)}",
            details={"max_allowed_cents": remaining, "cost_entry_id": entry.id},
        )
    if new_allocated < 0:
        raise InvariantViolation(
            "Cost entry allocated amount cannot go below zero",
            details={"cost_entry_id": entry.id, "allocated_amount_cents": entry.allocated_amount_cents},
        )

    entry.allocated_amount_cents = new_allocated
    sync_cost_entry_status(entry)


def sync_cost_entry_status(entry: CostEntry) -> None:
    if entry.status == COST_STATUS_CANCELLED:
        return
    if entry.total_cost_cents - entry.allocated_amount_cents == 0:
        entry.status = COST_STATUS_FULLY_ALLOCATED
    else:
        entry.status = COST_STATUS_ACTIVE
