# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import permission_service, session_service
from .services.permission_service import PermissionDeniedError


def _is_authenticated() -> bool:
    return hasattr(g, "current_user") and hasattr(g, "org_id")


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require authentication and establish tenant context.

    Sets on Flask g:
    - g.current_user: the authenticated User
    - g.org_id: the organization (tenant) of the session
    - g.roles: role names held by the user
    - g.session_context: the full SessionContext

    Returns 401 if the header is missing, or the token is invalid, expired,
    revoked, or belongs to a deactivated user / organization.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.org_id = context.org_id
        g.roles = permission_service.get_user_role_names(context.user.id)
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """
    Require a specific permission (via the user's roles).

    Denials are logged as PERMISSION_DENIED security events and answered 403.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(
                    user_id=g.current_user.id,
                    permission_code=permission_code,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    org_id=g.org_id,
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
