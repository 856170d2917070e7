# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

SECURITY FEATURES:
- Password strength validation on registration
- Login throttling to prevent brute-force attacks
- Account lockout after repeated failed attempts
- Session management with token-based auth
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import bearer_token, require_auth
from ..errors import LedgerError, error_response, internal_error_response
from ..services import auth_service, login_throttle_service, permission_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_payload(user, session, token) -> dict:
    return {
        "user": user.to_dict(),
        "organization": user.organization.to_dict() if user.organization else None,
        "roles": permission_service.get_user_role_names(user.id),
        "permissions": sorted(permission_service.get_user_permissions(user.id)),
        "token": token,
        "session": session.to_dict(),
        "org_id": session.org_id,
    }


@auth_bp.post("/register")
def register_route():
    """
    Register a new user as the owner of a new organization.

    Returns the user and a session token (201).
    """
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.register(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password") or "",
            organization_name=data.get("organization_name"),
            phone=data.get("phone"),
            company=data.get("company"),
        )
        permission_service.log_security_event(
            user_id=user.id,
            event_type="USER_REGISTERED",
            success=True,
            resource=request.path,
            action=user.email,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
            org_id=user.org_id,
        )
        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
            device_name=data.get("device_name"),
        )
        body = _session_payload(user, session, token)
        body["message"] = "Registration successful"
        return jsonify(body), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register user")
        return internal_error_response()


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by email + password and create a session token.

    SECURITY:
    - Checks for account lockout before attempting authentication
    - Records failed attempts for throttling
    - Records successful logins for audit trail
    """
    try:
        data = request.get_json(silent=True) or {}
        email = auth_service.normalize_email(data.get("email"))
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        is_locked, seconds_remaining = login_throttle_service.is_account_locked(email)
        if is_locked:
            return jsonify({
                "error": "Account temporarily locked due to too many failed login attempts",
                "locked": True,
                "retry_after_seconds": seconds_remaining,
            }), 429

        user = auth_service.authenticate(email, password)

        if not user:
            failed_count = login_throttle_service.record_failed_attempt(
                identifier=email,
                ip_address=ip_address,
                user_agent=user_agent,
                reason="Invalid credentials",
            )
            current_app.logger.info("Failed login for %s (%d recent failures)", email, failed_count)

            remaining = login_throttle_service.MAX_FAILED_ATTEMPTS - failed_count
            if remaining <= 0:
                return jsonify({
                    "error": "Account locked due to too many failed login attempts",
                    "locked": True,
                    "retry_after_minutes": int(login_throttle_service.LOCKOUT_DURATION.total_seconds() // 60),
                }), 429
            if remaining <= 2:
                return jsonify({
                    "error": "Invalid credentials",
                    "warning": f"{remaining} attempts remaining before account lockout",
                }), 401
            return jsonify({"error": "Invalid credentials"}), 401

        login_throttle_service.record_successful_login(
            user=user,
            identifier=email,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address,
            device_name=data.get("device_name"),
        )
        body = _session_payload(user, session, token)
        body["message"] = "Login successful"
        return jsonify(body), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return internal_error_response()


@auth_bp.post("/logout")
def logout_route():
    """Revoke the caller's session token."""
    try:
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authorization header required"}), 401

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return internal_error_response()


@auth_bp.post("/refresh")
def refresh_route():
    """
    Exchange a live session token for a new one.

    The token comes from the Authorization header or a JSON "token" field.
    The presented token is revoked as the new one is issued.
    """
    try:
        data = request.get_json(silent=True) or {}
        token = bearer_token() or data.get("token")
        if not token:
            return jsonify({"error": "Session token is required"}), 401

        refreshed = session_service.refresh_session(
            str(token),
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        if refreshed is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        session, new_token = refreshed
        body = _session_payload(session.user, session, new_token)
        body["message"] = "Token refreshed successfully"
        return jsonify(body), 200

    except Exception:
        current_app.logger.exception("Failed to refresh session")
        return internal_error_response()


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current principal: user, organization, roles and permissions."""
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "organization": user.organization.to_dict() if user.organization else None,
        "org_id": g.org_id,
        "roles": permission_service.get_user_role_names(user.id),
        "permissions": sorted(permission_service.get_user_permissions(user.id)),
    })
