from __future__ import annotations

from ..extensions import db
from partnerbooks.time_utils import to_utc_z


COST_STATUS_ACTIVE = "active"
COST_STATUS_FULLY_ALLOCATED = "fully_allocated"
COST_STATUS_CANCELLED = "cancelled"
COST_STATUSES = (COST_STATUS_ACTIVE, COST_STATUS_FULLY_ALLOCATED, COST_STATUS_CANCELLED)

SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_PENDING = "pending"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUS_REFUNDED = "refunded"
SALE_STATUSES = (SALE_STATUS_COMPLETED, SALE_STATUS_PENDING, SALE_STATUS_CANCELLED, SALE_STATUS_REFUNDED)

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_BANK = "bank"
PAYMENT_METHODS = (PAYMENT_METHOD_CASH, PAYMENT_METHOD_BANK)


class CostEntry(db.Model):
    """
    A cost incurred by the organization, allocated to sales over time.

    CAPACITY INVARIANT: 0 <= allocated_amount_cents <= total_cost_cents.
    allocated_amount_cents is a running total of active allocations and is
    only changed by the ledger engine alongside the Allocation rows.
    """
    __tablename__ = "cost_entries"
    __table_args__ = (
        db.CheckConstraint("allocated_amount_cents >= 0", name="ck_cost_entries_allocated_nonneg"),
        db.CheckConstraint("allocated_amount_cents <= total_cost_cents", name="ck_cost_entries_allocated_capacity"),
        db.Index("ix_cost_entries_org_date", "org_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    description = db.Column(db.String(500), nullable=False)
    total_cost_cents = db.Column(db.BigInteger, nullable=False)
    allocated_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="BDT")
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=COST_STATUS_ACTIVE, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_amount_cents(self) -> int:
        return self.total_cost_cents - self.allocated_amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "description": self.description,
            "total_cost_cents": self.total_cost_cents,
            "allocated_amount_cents": self.allocated_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "currency": self.currency,
            "date": to_utc_z(self.date),
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Sale(db.Model):
    """
    A completed (or pending) sale. sale_total_cents is fixed at creation.

    Profit is derived: sale_total_cents - sum(active allocation amounts).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_org_date", "org_id", "date"),
        db.Index("ix_sales_org_status_date", "org_id", "status", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    product_name = db.Column(db.String(200), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    sale_total_cents = db.Column(db.BigInteger, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="BDT")

    payment_method = db.Column(db.String(16), nullable=False)
    bank_id = db.Column(db.String(64), nullable=True)
    bank_name = db.Column(db.String(128), nullable=True)
    cash_holder = db.Column(db.String(128), nullable=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    refunded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "sale_total_cents": self.sale_total_cents,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "bank_id": self.bank_id,
            "bank_name": self.bank_name,
            "cash_holder": self.cash_holder,
            "date": to_utc_z(self.date),
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "refunded_by_user_id": self.refunded_by_user_id,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Allocation(db.Model):
    """
    Immutable allocation of part of a cost entry to a sale.

    Never deleted: a refund flips is_reversed and stamps reversed_at, and
    the owning cost entry's allocated amount is decremented in the same unit.
    """
    __tablename__ = "allocations"
    __table_args__ = (
        db.CheckConstraint("allocated_amount_cents > 0", name="ck_allocations_amount_positive"),
        db.Index("ix_allocations_sale_active", "sale_id", "is_reversed"),
        db.Index("ix_allocations_cost_active", "cost_entry_id", "is_reversed"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    cost_entry_id = db.Column(db.Integer, db.ForeignKey("cost_entries.id"), nullable=False)

    allocated_amount_cents = db.Column(db.BigInteger, nullable=False)

    is_reversed = db.Column(db.Boolean, nullable=False, default=False)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("allocations", lazy=True))
    cost_entry = db.relationship("CostEntry", backref=db.backref("allocations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sale_id": self.sale_id,
            "cost_entry_id": self.cost_entry_id,
            "allocated_amount_cents": self.allocated_amount_cents,
            "is_reversed": self.is_reversed,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
