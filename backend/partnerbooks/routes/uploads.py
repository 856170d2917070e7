# Overview: Flask API routes for file uploads (receipts).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import internal_error_response
from ..services import receipt_service
from ..services.blob_service import BlobStorageError


uploads_bp = Blueprint("uploads", __name__, url_prefix="/api/uploads")


@uploads_bp.post("/receipts")
@require_auth
@require_permission("RECORD_CONTRIBUTION")
def upload_receipt_route():
    """Multipart upload, field "file". Returns the stored receipt (201)."""
    try:
        receipt = receipt_service.upload_receipt(
            org_id=g.org_id,
            user_id=g.current_user.id,
            file=request.files.get("file"),
        )
        return jsonify({"receipt": receipt.to_dict()}), 201
    except BlobStorageError as e:
        current_app.logger.warning("Receipt upload rejected: %s", e)
        return jsonify({"error": str(e), "kind": "upload_error"}), 400
    except Exception:
        current_app.logger.exception("Failed to upload receipt")
        return internal_error_response()
