# Overview: Pytest coverage for contributions; idempotent create, amend and undo.

"""
Contribution Tests

Partner running totals must always equal the sum of contribution,
adjustment and undo rows. Corrections never rewrite amount_cents.
"""

import pytest

from partnerbooks.errors import IdempotencyKeyReuse, InvariantViolation, NotFoundError, ValidationError
from partnerbooks.extensions import db
from partnerbooks.models import Partner, Transaction
from partnerbooks.services import contribution_service


def _contribute(owner, partner, amount, **extra):
    payload = {"partner_id": partner.id, "amount_cents": amount}
    key = extra.pop("idempotency_key", None)
    payload.update(extra)
    return contribution_service.create_contribution(
        org_id=owner.org_id,
        user_id=owner.id,
        payload=payload,
        idempotency_key=key,
    )


def _total(partner_id):
    return db.session.get(Partner, partner_id).total_contributed_cents


class TestCreateContribution:

    def test_records_row_and_updates_total(self, db_session, owner_a, partner_a):
        tx, duplicate = _contribute(owner_a, partner_a, 50000, category="capital", context="Bank deposit")

        assert duplicate is False
        assert tx.type == "contribution"
        assert tx.amount_cents == 50000
        assert tx.currency == "BDT"
        assert tx.recorded_by == owner_a.id
        assert tx.transaction_date is not None
        assert _total(partner_a.id) == 50000

    def test_same_key_same_payload_is_applied_once(self, db_session, owner_a, partner_a):
        first, dup1 = _contribute(owner_a, partner_a, 50000, idempotency_key="k-1")
        second, dup2 = _contribute(owner_a, partner_a, 50000, idempotency_key="k-1")

        assert (dup1, dup2) == (False, True)
        assert second.id == first.id
        assert db_session.query(Transaction).count() == 1
        assert _total(partner_a.id) == 50000

    def test_same_key_different_payload_is_rejected(self, db_session, owner_a, partner_a):
        _contribute(owner_a, partner_a, 50000, idempotency_key="k-1")

        with pytest.raises(IdempotencyKeyReuse) as exc_info:
            _contribute(owner_a, partner_a, 60000, idempotency_key="k-1")

        assert exc_info.value.status_code == 409
        assert _total(partner_a.id) == 50000

    def test_keys_are_scoped_per_organization(self, db_session, owner_a, partner_a, owner_b, partner_b):
        _contribute(owner_a, partner_a, 100, idempotency_key="shared")
        tx_b, duplicate = _contribute(owner_b, partner_b, 200, idempotency_key="shared")

        assert duplicate is False
        assert tx_b.org_id == owner_b.org_id

    @pytest.mark.parametrize("amount", [0, -5, "12.5", 1.5, "abc", None])
    def test_invalid_amounts_are_rejected(self, db_session, owner_a, partner_a, amount):
        with pytest.raises(ValidationError):
            _contribute(owner_a, partner_a, amount)
        assert db_session.query(Transaction).count() == 0

    def test_unknown_fields_are_rejected(self, db_session, owner_a, partner_a):
        with pytest.raises(ValidationError) as exc_info:
            _contribute(owner_a, partner_a, 100, type="undo")
        assert exc_info.value.errors[0]["field"] == "type"

    def test_partner_of_other_org_is_not_found(self, db_session, owner_a, partner_b):
        with pytest.raises(NotFoundError):
            _contribute(owner_a, partner_b, 100)
        assert _total(partner_b.id) == 0

    def test_unknown_receipt_is_dropped(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 100, receipt_id=424242)
        assert tx.receipt_id is None


class TestUndo:

    def test_undo_reverses_effective_amount(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)

        undo, duplicate = contribution_service.undo_transaction(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, reason="Entered twice",
        )

        assert duplicate is False
        assert undo.type == "undo"
        assert undo.amount_cents == -50000
        assert undo.related_to == tx.id
        assert undo.description == "Entered twice"
        assert undo.is_reversing is True
        assert _total(partner_a.id) == 0
        # the original row is untouched
        assert db.session.get(Transaction, tx.id).amount_cents == 50000

    def test_second_undo_is_rejected(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        contribution_service.undo_transaction(org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id)

        with pytest.raises(InvariantViolation) as exc_info:
            contribution_service.undo_transaction(org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id)

        assert "already been undone" in exc_info.value.message
        assert _total(partner_a.id) == 0
        assert db_session.query(Transaction).filter_by(type="undo").count() == 1

    def test_undo_of_undo_is_rejected(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        undo, _ = contribution_service.undo_transaction(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id,
        )

        with pytest.raises(InvariantViolation):
            contribution_service.undo_transaction(org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=undo.id)

    def test_replayed_undo_key_returns_original_undo(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        first, _ = contribution_service.undo_transaction(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, idempotency_key="undo-1",
        )
        again, duplicate = contribution_service.undo_transaction(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, idempotency_key="undo-1",
        )

        assert duplicate is True
        assert again.id == first.id
        assert _total(partner_a.id) == 0

    def test_undo_other_org_transaction_is_not_found(self, db_session, owner_a, owner_b, partner_b):
        tx, _ = _contribute(owner_b, partner_b, 100)
        with pytest.raises(NotFoundError):
            contribution_service.undo_transaction(org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id)


class TestAmend:

    def test_amount_change_appends_adjustment(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)

        outcome = contribution_service.amend_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, payload={"amount_cents": 70000},
        )

        adjustment = outcome["adjustment"]
        assert adjustment.type == "adjustment"
        assert adjustment.amount_cents == 20000
        assert adjustment.related_to == tx.id
        assert adjustment.description == "Amount corrected from 500.00 to 700.00"
        assert outcome["effective_amount_cents"] == 70000
        assert outcome["transaction"].amount_cents == 50000
        assert _total(partner_a.id) == 70000

    def test_repeated_amendments_track_effective_amount(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        for amount in (70000, 60000):
            contribution_service.amend_contribution(
                org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, payload={"amount_cents": amount},
            )

        detail = contribution_service.transaction_detail(owner_a.org_id, tx.id)
        assert [a["amount_cents"] for a in detail["adjustments"]] == [20000, -10000]
        assert detail["effective_amount_cents"] == 60000
        assert _total(partner_a.id) == 60000

    def test_same_amount_writes_no_adjustment(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        outcome = contribution_service.amend_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, payload={"amount_cents": 50000},
        )
        assert outcome["adjustment"] is None
        assert db_session.query(Transaction).count() == 1

    def test_metadata_change_updates_in_place(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000, category="capital")
        outcome = contribution_service.amend_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id,
            payload={"category": "loan", "context": "Corrected"},
        )
        assert outcome["transaction"].category == "loan"
        assert outcome["transaction"].context == "Corrected"
        assert outcome["adjustment"] is None
        assert _total(partner_a.id) == 50000

    def test_partner_change_moves_effective_amount(self, db_session, owner_a, partner_a, partner_a2):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        contribution_service.amend_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, payload={"amount_cents": 70000},
        )

        contribution_service.amend_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, payload={"partner_id": partner_a2.id},
        )

        assert _total(partner_a.id) == 0
        assert _total(partner_a2.id) == 70000
        rows = db_session.query(Transaction).all()
        assert {row.partner_id for row in rows} == {partner_a2.id}

    def test_partner_and_amount_change_together(self, db_session, owner_a, partner_a, partner_a2):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        contribution_service.amend_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id,
            payload={"partner_id": partner_a2.id, "amount_cents": 40000},
        )
        assert _total(partner_a.id) == 0
        assert _total(partner_a2.id) == 40000

    def test_undone_contribution_cannot_be_amended(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        contribution_service.undo_transaction(org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id)

        with pytest.raises(InvariantViolation):
            contribution_service.amend_contribution(
                org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, payload={"amount_cents": 1},
            )
        assert _total(partner_a.id) == 0

    def test_adjustment_rows_cannot_be_amended(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        outcome = contribution_service.amend_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, payload={"amount_cents": 70000},
        )
        with pytest.raises(InvariantViolation):
            contribution_service.amend_contribution(
                org_id=owner_a.org_id, user_id=owner_a.id,
                transaction_id=outcome["adjustment"].id, payload={"amount_cents": 1},
            )

    def test_empty_patch_is_rejected(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        with pytest.raises(ValidationError):
            contribution_service.amend_contribution(
                org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, payload={},
            )

    def test_undo_after_amend_reverses_amended_amount(self, db_session, owner_a, partner_a):
        tx, _ = _contribute(owner_a, partner_a, 50000)
        contribution_service.amend_contribution(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id, payload={"amount_cents": 70000},
        )

        undo, _ = contribution_service.undo_transaction(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id,
        )

        assert undo.amount_cents == -70000
        assert _total(partner_a.id) == 0
        detail = contribution_service.transaction_detail(owner_a.org_id, tx.id)
        assert detail["is_undone"] is True
        assert detail["undo"]["id"] == undo.id


class TestQueries:

    def test_list_filters_by_partner_and_type(self, db_session, owner_a, partner_a, partner_a2):
        tx, _ = _contribute(owner_a, partner_a, 100, context="Rent share")
        _contribute(owner_a, partner_a2, 200)
        undo, _ = contribution_service.undo_transaction(
            org_id=owner_a.org_id, user_id=owner_a.id, transaction_id=tx.id,
        )

        rows, total = contribution_service.list_transactions(owner_a.org_id, partner_id=partner_a.id)
        assert total == 2

        rows, total = contribution_service.list_transactions(owner_a.org_id, tx_type="contribution")
        assert total == 2

        rows, total = contribution_service.list_transactions(owner_a.org_id, search="rent")
        # the undo row carries the original context
        assert {r.id for r in rows} == {tx.id, undo.id}

    def test_list_never_shows_other_orgs(self, db_session, owner_a, partner_a, owner_b, partner_b):
        _contribute(owner_b, partner_b, 100)
        rows, total = contribution_service.list_transactions(owner_a.org_id)
        assert total == 0
        assert rows == []
