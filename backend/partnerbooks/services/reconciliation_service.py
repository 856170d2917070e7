# Overview: Reconciliation of running totals against the ledger rows that justify them.

"""
Ledger Reconciliation

Running totals are maintained incrementally by the ledger engine. This
service re-derives them from the rows:

- Partner.total_contributed_cents == sum(contribution + adjustment + undo)
- CostEntry.allocated_amount_cents == sum(active allocations)

verify_org() reports drift; repair_org() corrects it in one atomic unit by
applying the missing delta through the ledger engine.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Allocation, CostEntry, Organization, Partner, Transaction
from ..models.ledger import TOTAL_BEARING_TYPES
from .ledger_service import AdjustTotal, apply_ledger_mutation


@dataclass(frozen=True)
class Drift:
    entity: str
    entity_id: int
    recorded_cents: int
    expected_cents: int

    @property
    def delta_cents(self) -> int:
        return self.expected_cents - self.recorded_cents

    def to_dict(self) -> dict:
        body = asdict(self)
        body["delta_cents"] = self.delta_cents
        return body


def _partner_drift(org_id: int) -> list[Drift]:
    sums = dict(
        db.session.query(Transaction.partner_id, func.sum(Transaction.amount_cents))
        .filter(Transaction.org_id == org_id, Transaction.type.in_(TOTAL_BEARING_TYPES))
        .group_by(Transaction.partner_id)
        .all()
    )
    drift = []
    for partner in db.session.query(Partner).filter_by(org_id=org_id).order_by(Partner.id).all():
        expected = int(sums.get(partner.id) or 0)
        if partner.total_contributed_cents != expected:
            drift.append(Drift("partner", partner.id, partner.total_contributed_cents, expected))
    return drift


def _cost_entry_drift(org_id: int) -> list[Drift]:
    sums = dict(
        db.session.query(Allocation.cost_entry_id, func.sum(Allocation.allocated_amount_cents))
        .filter(Allocation.org_id == org_id, Allocation.is_reversed.is_(False))
        .group_by(Allocation.cost_entry_id)
        .all()
    )
    drift = []
    for entry in db.session.query(CostEntry).filter_by(org_id=org_id).order_by(CostEntry.id).all():
        expected = int(sums.get(entry.id) or 0)
        if entry.allocated_amount_cents != expected:
            drift.append(Drift("cost_entry", entry.id, entry.allocated_amount_cents, expected))
    return drift


def verify_org(org_id: int) -> list[Drift]:
    """Return every running total in the org that disagrees with its rows."""
    return _partner_drift(org_id) + _cost_entry_drift(org_id)


def repair_org(org_id: int) -> list[Drift]:
    """
    Bring every drifted total back in line with its rows.

    Drift is re-read inside the unit, so a concurrent write between verify
    and repair is accounted for. Returns the drift that was corrected.
    """
    def _precheck():
        return verify_org(org_id)

    def _steps(drift):
        models = {"partner": Partner, "cost_entry": CostEntry}
        return [AdjustTotal(models[d.entity], d.entity_id, d.delta_cents) for d in drift]

    result = apply_ledger_mutation(_steps, org_id=org_id, precheck=_precheck)
    for d in result.context:
        current_app.logger.warning(
            "Repaired %s %s total: %s -> %s", d.entity, d.entity_id, d.recorded_cents, d.expected_cents
        )
    return result.context


def verify_all() -> dict[int, list[Drift]]:
    """Drift per organization, for every organization with drift."""
    report = {}
    for (org_id,) in db.session.query(Organization.id).order_by(Organization.id).all():
        drift = verify_org(org_id)
        if drift:
            report[org_id] = drift
    return report
