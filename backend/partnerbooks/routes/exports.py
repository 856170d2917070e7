# Overview: Flask API routes for CSV exports.

from flask import Blueprint, Response, current_app, g, request, stream_with_context

from ..decorators import require_auth, require_permission
from ..errors import LedgerError, error_response, internal_error_response
from ..models.ledger import TRANSACTION_TYPES
from ..services import export_service
from ..validation import parse_choice_arg, parse_date_arg, parse_int_arg
from partnerbooks.time_utils import utcnow


exports_bp = Blueprint("exports", __name__, url_prefix="/api/exports")


@exports_bp.get("/transactions")
@require_auth
@require_permission("EXPORT_DATA")
def export_transactions_route():
    """Streams transactions as CSV. Same filters as GET /api/transactions."""
    try:
        filters = {
            "partner_id": parse_int_arg(request.args, "partner_id", None),
            "tx_type": parse_choice_arg(request.args, "type", TRANSACTION_TYPES),
            "category": request.args.get("category") or None,
            "date_from": parse_date_arg(request.args, "from"),
            "date_to": parse_date_arg(request.args, "to", inclusive_end=True),
        }
    except LedgerError as e:
        return error_response(e)

    try:
        filename = f"transactions-{utcnow().strftime('%Y%m%d')}.csv"
        return Response(
            stream_with_context(export_service.iter_transactions_csv(g.org_id, **filters)),
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )
    except Exception:
        current_app.logger.exception("Failed to export transactions")
        return internal_error_response()
