# Overview: Flask API routes for cost allocations.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import LedgerError, error_response, internal_error_response
from ..services import allocation_service


allocations_bp = Blueprint("allocations", __name__, url_prefix="/api/allocations")


@allocations_bp.post("")
@require_auth
@require_permission("ALLOCATE_COSTS")
def create_allocation_route():
    """
    Allocate part of a cost entry to a sale.

    409 with details.max_allowed_cents when the amount exceeds what is
    left on the cost entry.
    """
    try:
        result = allocation_service.create_allocation(
            org_id=g.org_id,
            user_id=g.current_user.id,
            payload=request.get_json(silent=True) or {},
        )
        return jsonify(result), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create allocation")
        return internal_error_response()
