# Overview: Flask API routes for partners; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import LedgerError, error_response, internal_error_response
from ..services import partner_service
from ..validation import parse_choice_arg, parse_date_arg, parse_int_arg, parse_pagination


partners_bp = Blueprint("partners", __name__, url_prefix="/api/partners")


@partners_bp.post("")
@require_auth
@require_permission("MANAGE_PARTNERS")
def create_partner_route():
    """
    Create a partner.

    Accepts JSON, or multipart/form-data with an optional "avatar" file.
    initial_contribution_cents > 0 records a first contribution.
    """
    try:
        if request.mimetype == "multipart/form-data":
            payload = request.form.to_dict()
            avatar = request.files.get("avatar")
        else:
            payload = request.get_json(silent=True) or {}
            avatar = None

        partner, initial = partner_service.create_partner(
            org_id=g.org_id,
            user_id=g.current_user.id,
            payload=payload,
            avatar_file=avatar,
        )
        return jsonify({
            "partner": partner.to_dict(),
            "initial_transaction": initial.to_dict() if initial else None,
        }), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create partner")
        return internal_error_response()


@partners_bp.get("")
@require_auth
@require_permission("VIEW_PARTNERS")
def list_partners_route():
    try:
        page, per_page = parse_pagination(request.args, default_per_page=10)
        sort_by = parse_choice_arg(request.args, "sort_by", partner_service.SORT_FIELDS, "total_contributed")
        include_transactions = request.args.get("include_transactions", "false").lower() == "true"

        items, total = partner_service.list_partners(
            g.org_id,
            sort_by=sort_by,
            page=page,
            per_page=per_page,
            include_transactions=include_transactions,
        )
        return jsonify({
            "data": items,
            "meta": {"total": total, "page": page, "per_page": per_page},
        })
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list partners")
        return internal_error_response()


@partners_bp.get("/leaderboard")
@require_auth
@require_permission("VIEW_PARTNERS")
def leaderboard_route():
    try:
        limit = parse_int_arg(request.args, "limit", 10, maximum=100)
        return jsonify({"data": partner_service.leaderboard(g.org_id, limit=limit)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build partner leaderboard")
        return internal_error_response()


@partners_bp.get("/<int:partner_id>")
@require_auth
@require_permission("VIEW_PARTNERS")
def partner_detail_route(partner_id: int):
    """Partner with its transactions (filters: from, to, category, search)."""
    try:
        page, per_page = parse_pagination(request.args, default_per_page=10)
        body = partner_service.partner_detail(
            g.org_id,
            partner_id,
            date_from=parse_date_arg(request.args, "from"),
            date_to=parse_date_arg(request.args, "to", inclusive_end=True),
            category=request.args.get("category") or None,
            search=request.args.get("search") or None,
            page=page,
            per_page=per_page,
        )
        return jsonify(body)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load partner")
        return internal_error_response()
