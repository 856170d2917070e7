# Overview: Flask API routes for sales; create, list, summary, detail and refund.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import LedgerError, error_response, internal_error_response
from ..models.sales import PAYMENT_METHODS, SALE_STATUSES
from ..services import allocation_service, sale_service
from ..validation import parse_choice_arg, parse_date_arg, parse_pagination


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_permission("CREATE_SALE")
def create_sale_route():
    try:
        sale = sale_service.create_sale(
            org_id=g.org_id,
            user_id=g.current_user.id,
            payload=request.get_json(silent=True) or {},
        )
        return jsonify({"sale": sale.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return internal_error_response()


@sales_bp.get("")
@require_auth
@require_permission("VIEW_SALES")
def list_sales_route():
    try:
        page, per_page = parse_pagination(request.args)
        rows, total = sale_service.list_sales(
            g.org_id,
            date_from=parse_date_arg(request.args, "from"),
            date_to=parse_date_arg(request.args, "to", inclusive_end=True),
            payment_method=parse_choice_arg(request.args, "payment_method", PAYMENT_METHODS),
            status=parse_choice_arg(request.args, "status", SALE_STATUSES),
            q=request.args.get("q") or None,
            sort_by=parse_choice_arg(request.args, "sort_by", tuple(sale_service.SORT_COLUMNS), "date"),
            order=parse_choice_arg(request.args, "order", ("asc", "desc"), "desc"),
            page=page,
            per_page=per_page,
        )
        return jsonify({
            "data": [s.to_dict() for s in rows],
            "meta": {"total": total, "page": page, "per_page": per_page},
        })
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return internal_error_response()


@sales_bp.get("/summary")
@require_auth
@require_permission("VIEW_SALES")
def sales_summary_route():
    """Summary of completed sales; from and to are required, to is inclusive of the whole day."""
    try:
        summary = sale_service.sales_summary(
            g.org_id,
            date_from=parse_date_arg(request.args, "from", required=True),
            date_to=parse_date_arg(request.args, "to", required=True, inclusive_end=True),
        )
        return jsonify({"summary": summary})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build sales summary")
        return internal_error_response()


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    try:
        return jsonify({"sale": sale_service.sale_detail(g.org_id, sale_id)})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return internal_error_response()


@sales_bp.post("/<int:sale_id>/refund")
@require_auth
@require_permission("REFUND_SALE")
def refund_sale_route(sale_id: int):
    try:
        result = allocation_service.refund_sale(
            org_id=g.org_id,
            user_id=g.current_user.id,
            sale_id=sale_id,
        )
        return jsonify(result)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return internal_error_response()
