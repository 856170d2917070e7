# Overview: Flask API routes for ledger transactions; create, amend, undo and queries.

"""
Transaction Routes

POST   /api/transactions              record a contribution (Idempotency-Key header)
GET    /api/transactions              list (partner_id, type, category, from, to, search)
GET    /api/transactions/<id>         detail with adjustments and undo
PATCH  /api/transactions/<id>         amend a contribution
POST   /api/transactions/<id>/undo    undo a contribution (Idempotency-Key header)

A replayed request with the same Idempotency-Key returns 200 with
"duplicate": true and the original transaction.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import LedgerError, error_response, internal_error_response
from ..models.ledger import TRANSACTION_TYPES
from ..services import contribution_service
from ..validation import parse_choice_arg, parse_date_arg, parse_int_arg, parse_pagination


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _idempotency_key():
    data = request.get_json(silent=True) or {}
    return request.headers.get("Idempotency-Key") or data.get("idempotency_key")


@transactions_bp.post("")
@require_auth
@require_permission("RECORD_CONTRIBUTION")
def create_transaction_route():
    try:
        payload = dict(request.get_json(silent=True) or {})
        payload.pop("idempotency_key", None)

        transaction, duplicate = contribution_service.create_contribution(
            org_id=g.org_id,
            user_id=g.current_user.id,
            payload=payload,
            idempotency_key=_idempotency_key(),
        )
        return jsonify({"transaction": transaction.to_dict(), "duplicate": duplicate}), 200 if duplicate else 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record contribution")
        return internal_error_response()


@transactions_bp.get("")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def list_transactions_route():
    try:
        page, per_page = parse_pagination(request.args)
        partner_id = parse_int_arg(request.args, "partner_id", None)
        rows, total = contribution_service.list_transactions(
            g.org_id,
            partner_id=partner_id,
            tx_type=parse_choice_arg(request.args, "type", TRANSACTION_TYPES),
            category=request.args.get("category") or None,
            date_from=parse_date_arg(request.args, "from"),
            date_to=parse_date_arg(request.args, "to", inclusive_end=True),
            search=request.args.get("search") or None,
            page=page,
            per_page=per_page,
        )
        return jsonify({
            "data": [t.to_dict() for t in rows],
            "meta": {"total": total, "page": page, "per_page": per_page},
        })
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return internal_error_response()


@transactions_bp.get("/<int:transaction_id>")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def get_transaction_route(transaction_id: int):
    try:
        return jsonify({"transaction": contribution_service.transaction_detail(g.org_id, transaction_id)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load transaction")
        return internal_error_response()


@transactions_bp.patch("/<int:transaction_id>")
@require_auth
@require_permission("AMEND_TRANSACTION")
def amend_transaction_route(transaction_id: int):
    try:
        outcome = contribution_service.amend_contribution(
            org_id=g.org_id,
            user_id=g.current_user.id,
            transaction_id=transaction_id,
            payload=request.get_json(silent=True) or {},
        )
        adjustment = outcome["adjustment"]
        return jsonify({
            "transaction": outcome["transaction"].to_dict(),
            "adjustment": adjustment.to_dict() if adjustment else None,
            "effective_amount_cents": outcome["effective_amount_cents"],
        })
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to amend transaction")
        return internal_error_response()


@transactions_bp.post("/<int:transaction_id>/undo")
@require_auth
@require_permission("UNDO_TRANSACTION")
def undo_transaction_route(transaction_id: int):
    try:
        data = request.get_json(silent=True) or {}
        undo, duplicate = contribution_service.undo_transaction(
            org_id=g.org_id,
            user_id=g.current_user.id,
            transaction_id=transaction_id,
            reason=data.get("reason"),
            idempotency_key=_idempotency_key(),
        )
        return jsonify({"transaction": undo.to_dict(), "duplicate": duplicate}), 200 if duplicate else 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to undo transaction")
        return internal_error_response()
