# Overview: Service-layer operations for sales; create, list, detail and summary report.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Allocation, Sale
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_PENDING, PAYMENT_METHODS
from ..validation import SALE_POLICY, enforce_rules_sale, validate_payload
from partnerbooks.time_utils import to_utc_z, utcnow
from .allocation_service import profit_margin, sale_profit
from .concurrency import run_with_retry


CREATABLE_STATUSES = (SALE_STATUS_COMPLETED, SALE_STATUS_PENDING)
SORT_COLUMNS = {"date": Sale.date, "amount": Sale.sale_total_cents}


def create_sale(*, org_id: int, user_id: int, payload: dict) -> Sale:
    """
    Record a sale.

    Bank payments need bank_id or bank_name. New sales are completed unless
    explicitly created as pending.
    """
    patch = validate_payload(model=Sale, payload=payload, policy=SALE_POLICY, partial=False)
    enforce_rules_sale(patch)

    status = patch.get("status") or SALE_STATUS_COMPLETED
    if status not in CREATABLE_STATUSES:
        raise ValidationError.for_field("status", f"New sales must be one of {list(CREATABLE_STATUSES)}")

    def _op():
        sale = Sale(
            org_id=org_id,
            product_name=patch["product_name"],
            quantity=patch.get("quantity") or 1,
            sale_total_cents=patch["sale_total_cents"],
            currency=patch.get("currency") or current_app.config["DEFAULT_CURRENCY"],
            payment_method=patch["payment_method"],
            bank_id=patch.get("bank_id"),
            bank_name=patch.get("bank_name"),
            cash_holder=patch.get("cash_holder"),
            date=patch.get("date") or utcnow(),
            status=status,
            created_by_user_id=user_id,
        )
        db.session.add(sale)
        db.session.commit()
        return sale

    return run_with_retry(_op)


def get_sale(org_id: int, sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, org_id=org_id).first()
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale


def list_sales(
    org_id: int,
    *,
    date_from=None,
    date_to=None,
    payment_method: str | None = None,
    status: str | None = None,
    q: str | None = None,
    sort_by: str = "date",
    order: str = "desc",
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Sale], int]:
    query = db.session.query(Sale).filter(Sale.org_id == org_id)
    if date_from is not None:
        query = query.filter(Sale.date >= date_from)
    if date_to is not None:
        query = query.filter(Sale.date <= date_to)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method)
    if status:
        query = query.filter(Sale.status == status)
    if q:
        query = query.filter(Sale.product_name.ilike(f"%{q}%"))

    column = SORT_COLUMNS.get(sort_by, Sale.date)
    ordering = column.asc() if order == "asc" else column.desc()

    total = query.count()
    rows = query.order_by(ordering, Sale.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return rows, total


def sale_detail(org_id: int, sale_id: int) -> dict:
    sale = get_sale(org_id, sale_id)
    allocations = (
        db.session.query(Allocation)
        .filter_by(sale_id=sale.id)
        .order_by(Allocation.created_at.asc(), Allocation.id.asc())
        .all()
    )
    body = sale.to_dict()
    body["allocations"] = [a.to_dict() for a in allocations]
    body["profit"] = sale_profit(sale)
    return body


def sales_summary(org_id: int, *, date_from, date_to) -> dict:
    """
    Completed sales in [date_from, date_to]: revenue, allocated cost,
    profit, margin and revenue per payment method.
    """
    base = db.session.query(Sale).filter(
        Sale.org_id == org_id,
        Sale.status == SALE_STATUS_COMPLETED,
        Sale.date >= date_from,
        Sale.date <= date_to,
    )

    count, revenue = base.with_entities(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.sale_total_cents), 0),
    ).one()

    allocated = (
        db.session.query(func.coalesce(func.sum(Allocation.allocated_amount_cents), 0))
        .join(Sale, Sale.id == Allocation.sale_id)
        .filter(
            Sale.org_id == org_id,
            Sale.status == SALE_STATUS_COMPLETED,
            Sale.date >= date_from,
            Sale.date <= date_to,
            Allocation.is_reversed.is_(False),
        )
        .scalar()
    )

    by_method = {method: {"count": 0, "revenue_cents": 0} for method in PAYMENT_METHODS}
    for method, method_count, method_revenue in (
        base.with_entities(Sale.payment_method, func.count(Sale.id), func.coalesce(func.sum(Sale.sale_total_cents), 0))
        .group_by(Sale.payment_method)
        .all()
    ):
        by_method[method] = {"count": int(method_count), "revenue_cents": int(method_revenue)}

    revenue = int(revenue or 0)
    allocated = int(allocated or 0)
    profit = revenue - allocated

    return {
        "from": to_utc_z(date_from),
        "to": to_utc_z(date_to),
        "total_sales": int(count or 0),
        "total_revenue_cents": revenue,
        "total_allocated_cost_cents": allocated,
        "total_profit_cents": profit,
        "profit_margin": profit_margin(profit, revenue),
        "revenue_by_payment_method": by_method,
    }
