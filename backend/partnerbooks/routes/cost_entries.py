# Overview: Flask API routes for cost entries; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import LedgerError, error_response, internal_error_response
from ..models.sales import COST_STATUSES
from ..services import cost_service
from ..validation import parse_choice_arg, parse_date_arg, parse_pagination


cost_entries_bp = Blueprint("cost_entries", __name__, url_prefix="/api/cost-entries")


@cost_entries_bp.post("")
@require_auth
@require_permission("MANAGE_COSTS")
def create_cost_entry_route():
    try:
        entry = cost_service.create_cost_entry(
            org_id=g.org_id,
            user_id=g.current_user.id,
            payload=request.get_json(silent=True) or {},
        )
        return jsonify({"cost_entry": entry.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create cost entry")
        return internal_error_response()


@cost_entries_bp.get("")
@require_auth
@require_permission("VIEW_COSTS")
def list_cost_entries_route():
    try:
        page, per_page = parse_pagination(request.args)
        rows, total = cost_service.list_cost_entries(
            g.org_id,
            date_from=parse_date_arg(request.args, "from"),
            date_to=parse_date_arg(request.args, "to", inclusive_end=True),
            status=parse_choice_arg(request.args, "status", COST_STATUSES),
            q=request.args.get("q") or None,
            page=page,
            per_page=per_page,
        )
        return jsonify({
            "data": [e.to_dict() for e in rows],
            "meta": {"total": total, "page": page, "per_page": per_page},
        })
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list cost entries")
        return internal_error_response()


@cost_entries_bp.get("/<int:cost_entry_id>")
@require_auth
@require_permission("VIEW_COSTS")
def get_cost_entry_route(cost_entry_id: int):
    try:
        return jsonify({"cost_entry": cost_service.cost_entry_detail(g.org_id, cost_entry_id)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load cost entry")
        return internal_error_response()


@cost_entries_bp.post("/<int:cost_entry_id>/cancel")
@require_auth
@require_permission("MANAGE_COSTS")
def cancel_cost_entry_route(cost_entry_id: int):
    try:
        entry = cost_service.cancel_cost_entry(
            org_id=g.org_id,
            user_id=g.current_user.id,
            cost_entry_id=cost_entry_id,
        )
        return jsonify({"cost_entry": entry.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel cost entry")
        return internal_error_response()
