# Overview: Service-layer operations for partners; creation, listings, leaderboard and detail.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Partner, Transaction
from ..models.ledger import TRANSACTION_TYPE_CONTRIBUTION
from ..validation import PARTNER_POLICY, coerce_int, enforce_rules_partner, validate_payload
from partnerbooks.time_utils import to_utc_z
from .blob_service import BlobStorageError, check_upload, get_blob_store
from .concurrency import run_with_retry
from . import contribution_service


SORT_FIELDS = ("total_contributed", "name", "created_at")
RECENT_TRANSACTIONS_LIMIT = 5


def _parse_initial_contribution(raw) -> int | None:
    if raw in (None, ""):
        return None
    try:
        amount = coerce_int("initial_contribution_cents", raw)
    except ValueError:
        raise ValidationError.for_field("initial_contribution_cents", "Initial contribution must be an integer amount")
    if amount < 0:
        raise ValidationError.for_field("initial_contribution_cents", "Initial contribution must be a non-negative amount")
    return amount


def create_partner(
    *,
    org_id: int,
    user_id: int,
    payload: dict,
    avatar_file=None,
) -> tuple[Partner, Transaction | None]:
    """
    Create a partner, optionally with an avatar and an initial contribution.

    An avatar that cannot be stored is logged and skipped. The initial
    contribution (initial_contribution_cents > 0) is recorded as a regular
    contribution right after the partner is committed.
    """
    payload = dict(payload or {})
    initial_cents = _parse_initial_contribution(payload.pop("initial_contribution_cents", None))

    patch = validate_payload(model=Partner, payload=payload, policy=PARTNER_POLICY, partial=False)
    enforce_rules_partner(patch)

    if avatar_file is not None and avatar_file.filename:
        try:
            check_upload(avatar_file, current_app.config["ALLOWED_UPLOAD_EXTENSIONS"])
            patch["avatar_url"] = get_blob_store().upload(avatar_file, folder="avatars").url
        except BlobStorageError:
            current_app.logger.warning("Avatar upload failed; creating partner without avatar", exc_info=True)

    def _op():
        partner = Partner(
            org_id=org_id,
            name=patch["name"],
            email=patch.get("email"),
            avatar_url=patch.get("avatar_url"),
            notes=patch.get("notes"),
            total_contributed_cents=0,
            created_by_user_id=user_id,
        )
        db.session.add(partner)
        db.session.commit()
        return partner

    partner = run_with_retry(_op)

    initial = None
    if initial_cents:
        initial, _ = contribution_service.create_contribution(
            org_id=org_id,
            user_id=user_id,
            payload={
                "partner_id": partner.id,
                "amount_cents": initial_cents,
                "description": "Initial contribution",
            },
        )
        db.session.refresh(partner)
    return partner, initial


def get_partner(org_id: int, partner_id: int) -> Partner:
    partner = db.session.query(Partner).filter_by(id=partner_id, org_id=org_id).first()
    if partner is None:
        raise NotFoundError("Partner not found")
    return partner


def _last_contribution_subquery(org_id: int):
    return (
        db.session.query(
            Transaction.partner_id.label("partner_id"),
            func.max(Transaction.created_at).label("last_contribution_at"),
        )
        .filter(Transaction.org_id == org_id, Transaction.type == TRANSACTION_TYPE_CONTRIBUTION)
        .group_by(Transaction.partner_id)
        .subquery()
    )


def _recent_contributions(partner_ids: list[int]) -> dict[int, list[Transaction]]:
    """
    Last RECENT_TRANSACTIONS_LIMIT contributions per partner in ONE query.

    Uses a window function so the page fans out to a single bounded read.
    """
    if not partner_ids:
        return {}

    ranked = (
        db.session.query(
            Transaction.id.label("id"),
            func.row_number().over(
                partition_by=Transaction.partner_id,
                order_by=(Transaction.created_at.desc(), Transaction.id.desc()),
            ).label("rn"),
        )
        .filter(
            Transaction.partner_id.in_(partner_ids),
            Transaction.type == TRANSACTION_TYPE_CONTRIBUTION,
        )
        .subquery()
    )
    rows = (
        db.session.query(Transaction)
        .join(ranked, ranked.c.id == Transaction.id)
        .filter(ranked.c.rn <= RECENT_TRANSACTIONS_LIMIT)
        .order_by(Transaction.partner_id, Transaction.created_at.desc(), Transaction.id.desc())
        .all()
    )

    grouped: dict[int, list[Transaction]] = {pid: [] for pid in partner_ids}
    for row in rows:
        grouped[row.partner_id].append(row)
    return grouped


def _summary_dict(partner: Partner, last_contribution_at) -> dict:
    return {
        "id": partner.id,
        "name": partner.name,
        "email": partner.email,
        "avatar_url": partner.avatar_url,
        "total_contributed_cents": partner.total_contributed_cents,
        "last_contribution_at": to_utc_z(last_contribution_at) if last_contribution_at else None,
        "created_at": to_utc_z(partner.created_at),
    }


def list_partners(
    org_id: int,
    *,
    sort_by: str = "total_contributed",
    page: int = 1,
    per_page: int = 10,
    include_transactions: bool = False,
) -> tuple[list[dict], int]:
    """
    One page of partners with last_contribution_at.

    sort_by: total_contributed (desc), name (asc), created_at (asc); ties
    broken by most recent contribution.
    """
    last = _last_contribution_subquery(org_id)
    query = (
        db.session.query(Partner, last.c.last_contribution_at)
        .outerjoin(last, last.c.partner_id == Partner.id)
        .filter(Partner.org_id == org_id)
    )

    if sort_by == "name":
        order = [Partner.name.asc()]
    elif sort_by == "created_at":
        order = [Partner.created_at.asc()]
    else:
        order = [Partner.total_contributed_cents.desc()]
    # NULLs (never contributed) sort last on every backend
    order += [last.c.last_contribution_at.is_(None), last.c.last_contribution_at.desc(), Partner.id.asc()]

    total = db.session.query(func.count(Partner.id)).filter(Partner.org_id == org_id).scalar()
    rows = query.order_by(*order).offset((page - 1) * per_page).limit(per_page).all()

    items = [_summary_dict(partner, last_at) for partner, last_at in rows]

    if include_transactions:
        recent = _recent_contributions([partner.id for partner, _ in rows])
        for item in items:
            item["recent_transactions"] = [
                {
                    "id": t.id,
                    "amount_cents": t.amount_cents,
                    "type": t.type,
                    "description": t.description,
                    "created_at": to_utc_z(t.created_at),
                }
                for t in recent.get(item["id"], [])
            ]

    return items, int(total or 0)


def leaderboard(org_id: int, *, limit: int = 10) -> list[dict]:
    """Partners ranked by running total (rank 1 = largest contributor)."""
    items, _ = list_partners(org_id, sort_by="total_contributed", page=1, per_page=limit)
    for rank, item in enumerate(items, start=1):
        item["rank"] = rank
    return items


def partner_detail(
    org_id: int,
    partner_id: int,
    *,
    date_from=None,
    date_to=None,
    category: str | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = 10,
) -> dict:
    partner = get_partner(org_id, partner_id)
    transactions, total = contribution_service.list_transactions(
        org_id,
        partner_id=partner.id,
        category=category,
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        per_page=per_page,
    )
    return {
        "partner": partner.to_dict(),
        "transactions": [t.to_dict() for t in transactions],
        "meta": {"total_transactions": total, "page": page, "per_page": per_page},
    }
