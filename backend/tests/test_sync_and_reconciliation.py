# Overview: Pytest coverage for offline queue sync, ledger reconciliation and its CLI command.

import pytest

from partnerbooks.errors import ValidationError
from partnerbooks.extensions import db
from partnerbooks.models import CostEntry, Partner, Transaction
from partnerbooks.services import (
    allocation_service,
    contribution_service,
    cost_service,
    reconciliation_service,
    sale_service,
    sync_service,
)


def _sync(owner, items):
    return sync_service.sync_queue(org_id=owner.org_id, user_id=owner.id, items=items)


class TestSyncQueue:

    def test_items_are_independent(self, db_session, owner_a, partner_a):
        items = [
            {"local_id": "a1", "action": "create_contribution",
             "payload": {"partner_id": partner_a.id, "amount_cents": 1000}},
            {"local_id": "a2", "action": "create_contribution",
             "payload": {"partner_id": partner_a.id, "amount_cents": 0}},
            {"local_id": "a3", "action": "create_contribution",
             "payload": {"partner_id": 999999, "amount_cents": 500}},
            {"local_id": "a4", "action": "create_contribution",
             "payload": {"partner_id": partner_a.id, "amount_cents": 2000}},
        ]

        result = _sync(owner_a, items)

        assert [r["status"] for r in result["results"]] == ["ok", "error", "error", "ok"]
        assert result["results"][1]["error"]["kind"] == "validation_error"
        assert result["results"][2]["error"]["kind"] == "not_found"
        assert result["counts"] == {"ok": 2, "duplicate": 0, "error": 2}
        assert db.session.get(Partner, partner_a.id).total_contributed_cents == 3000

    def test_replay_reports_duplicates_and_writes_nothing(self, db_session, owner_a, partner_a):
        items = [
            {"local_id": "b1", "action": "create_contribution",
             "payload": {"partner_id": partner_a.id, "amount_cents": 1000}},
            {"local_id": "b2", "action": "create_contribution", "idempotency_key": "explicit-key",
             "payload": {"partner_id": partner_a.id, "amount_cents": 500}},
        ]
        _sync(owner_a, items)

        replay = _sync(owner_a, items)

        assert replay["counts"] == {"ok": 0, "duplicate": 2, "error": 0}
        assert db_session.query(Transaction).count() == 2
        assert db.session.get(Partner, partner_a.id).total_contributed_cents == 1500

    def test_undo_and_amend_actions(self, db_session, owner_a, partner_a):
        first, _ = contribution_service.create_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, payload={"partner_id": partner_a.id, "amount_cents": 1000},
        )
        second, _ = contribution_service.create_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, payload={"partner_id": partner_a.id, "amount_cents": 2000},
        )
        items = [
            {"local_id": "c1", "action": "undo_transaction", "payload": {"transaction_id": first.id}},
            {"local_id": "c2", "action": "amend_contribution",
             "payload": {"transaction_id": second.id, "amount_cents": 2500}},
        ]

        result = _sync(owner_a, items)
        assert result["counts"]["ok"] == 2
        assert result["results"][1]["result"]["effective_amount_cents"] == 2500
        assert db.session.get(Partner, partner_a.id).total_contributed_cents == 2500

        # amend converges on replay: no second adjustment
        replay = _sync(owner_a, items)
        assert replay["results"][0]["status"] == "duplicate"
        assert replay["results"][1]["status"] == "ok"
        assert replay["results"][1]["result"]["adjustment"] is None
        assert db.session.get(Partner, partner_a.id).total_contributed_cents == 2500

    def test_unknown_action_is_an_item_error(self, db_session, owner_a):
        result = _sync(owner_a, [{"local_id": "x", "action": "delete_everything", "payload": {}}])
        assert result["results"][0]["status"] == "error"
        assert result["results"][0]["error"]["errors"][0]["field"] == "action"

    def test_batch_must_be_a_list(self, db_session, owner_a):
        with pytest.raises(ValidationError):
            _sync(owner_a, {"local_id": "x"})

    def test_batch_size_is_bounded(self, app, db_session, owner_a):
        too_many = [{"local_id": str(i)} for i in range(app.config["SYNC_MAX_ITEMS"] + 1)]
        with pytest.raises(ValidationError):
            _sync(owner_a, too_many)


def _tamper(model, row_id, **values):
    """Write directly, bypassing the ledger engine."""
    db.session.query(model).filter_by(id=row_id).update(values, synchronize_session=False)
    db.session.commit()


class TestReconciliation:

    def test_clean_ledger_has_no_drift(self, db_session, owner_a, partner_a):
        contribution_service.create_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, payload={"partner_id": partner_a.id, "amount_cents": 1000},
        )
        assert reconciliation_service.verify_org(owner_a.org_id) == []

    def test_partner_drift_is_reported_and_repaired(self, db_session, owner_a, partner_a):
        contribution_service.create_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, payload={"partner_id": partner_a.id, "amount_cents": 1000},
        )
        _tamper(Partner, partner_a.id, total_contributed_cents=1)

        drift = reconciliation_service.verify_org(owner_a.org_id)
        assert [d.to_dict() for d in drift] == [{
            "entity": "partner",
            "entity_id": partner_a.id,
            "recorded_cents": 1,
            "expected_cents": 1000,
            "delta_cents": 999,
        }]

        repaired = reconciliation_service.repair_org(owner_a.org_id)
        assert len(repaired) == 1
        db.session.expire_all()
        assert db.session.get(Partner, partner_a.id).total_contributed_cents == 1000
        assert reconciliation_service.verify_org(owner_a.org_id) == []

    def test_cost_entry_drift_is_repaired(self, db_session, owner_a):
        entry = cost_service.create_cost_entry(
            org_id=owner_a.org_id, user_id=owner_a.id, payload={"description": "Freight", "total_cost_cents": 1000},
        )
        sale = sale_service.create_sale(
            org_id=owner_a.org_id, user_id=owner_a.id,
            payload={"product_name": "Bale", "sale_total_cents": 5000, "payment_method": "cash"},
        )
        allocation_service.create_allocation(
            org_id=owner_a.org_id, user_id=owner_a.id,
            payload={"sale_id": sale.id, "cost_entry_id": entry.id, "allocated_amount_cents": 300},
        )
        _tamper(CostEntry, entry.id, allocated_amount_cents=0)

        reconciliation_service.repair_org(owner_a.org_id)

        db.session.expire_all()
        assert db.session.get(CostEntry, entry.id).allocated_amount_cents == 300

    def test_verify_all_only_lists_orgs_with_drift(self, db_session, owner_a, partner_a, owner_b, partner_b):
        _tamper(Partner, partner_b.id, total_contributed_cents=5)
        report = reconciliation_service.verify_all()
        assert list(report) == [owner_b.org_id]


class TestLedgerVerifyCommand:

    def test_exit_code_reflects_drift(self, app, db_session, owner_a, partner_a):
        runner = app.test_cli_runner()

        clean = runner.invoke(args=["ledger", "verify"])
        assert clean.exit_code == 0
        assert "PASS" in clean.output

        _tamper(Partner, partner_a.id, total_contributed_cents=42)
        dirty = runner.invoke(args=["ledger", "verify"])
        assert dirty.exit_code == 1
        assert "DRIFT" in dirty.output

        fixed = runner.invoke(args=["ledger", "verify", "--fix"])
        assert fixed.exit_code == 0
        assert "repaired 1 totals" in fixed.output

        db.session.expire_all()
        assert db.session.get(Partner, partner_a.id).total_contributed_cents == 0
