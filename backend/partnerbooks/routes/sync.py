# Overview: Flask API route for batch sync of offline-queued operations.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import LedgerError, error_response, internal_error_response
from ..services import sync_service


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.post("/queue")
@require_auth
@require_permission("SYNC_QUEUE")
def sync_queue_route():
    """
    Body: {"items": [{"local_id", "action", "payload", "idempotency_key"}]}

    Always 200 for a well-formed batch; each item reports ok / duplicate / error.
    """
    try:
        data = request.get_json(silent=True) or {}
        result = sync_service.sync_queue(
            org_id=g.org_id,
            user_id=g.current_user.id,
            items=data.get("items"),
        )
        return jsonify(result), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sync queue")
        return internal_error_response()
