# Overview: Flask API routes for the caller's own user profile.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import LedgerError, error_response, internal_error_response
from ..services import auth_service, permission_service
from ..services.blob_service import BlobStorageError


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.patch("/me")
@require_auth
def update_profile_route():
    """
    Update name, phone or company of the current user.

    Accepts JSON, or multipart/form-data with an optional "avatar" file.
    Any role may edit its own profile.
    """
    try:
        if request.mimetype == "multipart/form-data":
            payload = request.form.to_dict()
            avatar = request.files.get("avatar")
        else:
            payload = request.get_json(silent=True) or {}
            avatar = None

        user = auth_service.update_profile(
            user_id=g.current_user.id,
            payload=payload,
            avatar_file=avatar,
        )
        permission_service.log_security_event(
            user_id=user.id,
            event_type="PROFILE_UPDATED",
            success=True,
            resource=request.path,
            action=",".join(sorted(payload)) or "avatar",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
            org_id=g.org_id,
        )
        return jsonify({"user": user.to_dict(), "message": "Profile updated"}), 200
    except LedgerError as e:
        return error_response(e)
    except BlobStorageError as e:
        current_app.logger.warning("Avatar upload rejected: %s", e)
        return jsonify({"error": str(e), "kind": "upload_error"}), 400
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return internal_error_response()
