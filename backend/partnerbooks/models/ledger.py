from __future__ import annotations

from ..extensions import db
from partnerbooks.time_utils import to_utc_z


TRANSACTION_TYPE_CONTRIBUTION = "contribution"
TRANSACTION_TYPE_ADJUSTMENT = "adjustment"
TRANSACTION_TYPE_UNDO = "undo"
TRANSACTION_TYPE_EXPENSE = "expense"

TRANSACTION_TYPES = (
    TRANSACTION_TYPE_CONTRIBUTION,
    TRANSACTION_TYPE_ADJUSTMENT,
    TRANSACTION_TYPE_UNDO,
    TRANSACTION_TYPE_EXPENSE,
)

# Types whose amounts make up Partner.total_contributed_cents
TOTAL_BEARING_TYPES = (
    TRANSACTION_TYPE_CONTRIBUTION,
    TRANSACTION_TYPE_ADJUSTMENT,
    TRANSACTION_TYPE_UNDO,
)


class Partner(db.Model):
    """
    A partner who contributes money to the organization.

    total_contributed_cents is a running total. It is only ever changed by
    the ledger engine, in the same DB transaction as the Transaction row that
    justifies the change. It is never recomputed on read.

    Partners are never deleted.
    """
    __tablename__ = "partners"
    __table_args__ = (
        db.Index("ix_partners_org_total", "org_id", "total_contributed_cents"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    avatar_url = db.Column(db.String(1024), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    total_contributed_cents = db.Column(db.BigInteger, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Partner id={self.id} name={self.name!r} total={self.total_contributed_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "email": self.email,
            "avatar_url": self.avatar_url,
            "notes": self.notes,
            "total_contributed_cents": self.total_contributed_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Transaction(db.Model):
    """
    Immutable ledger entry for a partner.

    APPEND-ONLY: amount_cents is never rewritten after insert. Corrections
    are new rows: an "adjustment" carries an amount delta, an "undo" carries
    the negated effective amount. Both point at the row they correct via
    related_to.

    Only metadata (category, context, receipt, transaction_date) and the
    owning partner reference may change after insert.

    version_id is bumped by every amend and undo of a contribution, so two
    corrections computed from the same state cannot both commit.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        # Idempotency keys are unique per organization
        db.UniqueConstraint("org_id", "idempotency_key", name="uq_transactions_org_idempotency_key"),
        # At most one undo row may target a given transaction
        db.Index(
            "uq_transactions_undo_target",
            "related_to",
            unique=True,
            sqlite_where=db.text("type = 'undo'"),
            postgresql_where=db.text("type = 'undo'"),
        ),
        db.Index("ix_transactions_partner_date", "partner_id", "transaction_date"),
        db.Index("ix_transactions_org_created", "org_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)

    # Signed: positive for contributions, negative for undo / negative adjustments
    amount_cents = db.Column(db.BigInteger, nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)

    category = db.Column(db.String(64), nullable=True, index=True)
    context = db.Column(db.Text, nullable=True)
    description = db.Column(db.Text, nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="BDT")
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=True)

    recorded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    receipt_id = db.Column(db.Integer, nullable=True, index=True)
    receipt_url = db.Column(db.String(1024), nullable=True)

    idempotency_key = db.Column(db.String(255), nullable=True)
    # sha256 of the canonical request payload that first used idempotency_key
    request_fingerprint = db.Column(db.String(64), nullable=True)

    related_to = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    is_reversing = db.Column(db.Boolean, nullable=False, default=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    partner = db.relationship("Partner", backref=db.backref("transactions", lazy="dynamic"))
    recorder = db.relationship("User", foreign_keys=[recorded_by])
    original = db.relationship("Transaction", remote_side=[id], backref=db.backref("corrections", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} type={self.type} amount={self.amount_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "partner_id": self.partner_id,
            "amount_cents": self.amount_cents,
            "type": self.type,
            "category": self.category,
            "context": self.context,
            "description": self.description,
            "currency": self.currency,
            "transaction_date": to_utc_z(self.transaction_date),
            "recorded_by": self.recorded_by,
            "receipt_id": self.receipt_id,
            "receipt_url": self.receipt_url,
            "idempotency_key": self.idempotency_key,
            "related_to": self.related_to,
            "is_reversing": self.is_reversing,
            "created_at": to_utc_z(self.created_at),
        }
