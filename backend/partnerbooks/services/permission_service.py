# Overview: Service-layer operations for permission; role resolution and security event logging.

"""
Permission Checking and Security Event Logging

WHY: Enforce role-based access control and create an audit trail.

MULTI-TENANT: Roles are org-scoped and security events carry org_id.

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit permission grant
- Log denials only: Permission grants are not logged
- Tenant isolation: Role lookups scoped by org_id
"""

from ..extensions import db
from ..models import Role, SecurityEvent, UserRole
from ..permissions import DEFAULT_ROLE_PERMISSIONS
from partnerbooks.time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - LOGIN_SUCCESS
    - LOGOUT
    - USER_REGISTERED
    - PROFILE_UPDATED
    - ROLE_ASSIGNED
    """
    event = SecurityEvent(
        user_id=user_id,
        org_id=org_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_user_role_names(user_id: int) -> list[str]:
    """Get list of role names for a user."""
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name.asc())
        .all()
    )
    return [name for (name,) in rows]


def get_user_permissions(user_id: int) -> set[str]:
    """
    Get all permission codes for a user.

    Union of the permission sets of every role the user holds.
    """
    permission_codes: set[str] = set()
    for role_name in get_user_role_names(user_id):
        permission_codes.update(DEFAULT_ROLE_PERMISSIONS.get(role_name, ()))
    return permission_codes


def user_has_permission(user_id: int, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user_id)


def require_permission(
    user_id: int,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
) -> None:
    """
    Require user to have permission, raise PermissionDeniedError if not.

    Denials are logged to security_events with the caller's org_id.
    """
    if user_has_permission(user_id, permission_code):
        return

    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_code,
        reason=f"Missing permission: {permission_code}",
        ip_address=ip_address,
        user_agent=user_agent,
        org_id=org_id,
    )
    raise PermissionDeniedError(f"Permission denied: {permission_code}")


def ensure_org_roles(org_id: int) -> dict[str, Role]:
    """
    Ensure the default roles exist for an organization.

    Idempotent: Safe to run multiple times. Flushes but does not commit.
    """
    roles = {r.name: r for r in db.session.query(Role).filter_by(org_id=org_id).all()}
    for role_name in DEFAULT_ROLE_PERMISSIONS:
        if role_name not in roles:
            role = Role(org_id=org_id, name=role_name, description=f"Default {role_name} role")
            db.session.add(role)
            roles[role_name] = role
    db.session.flush()
    return roles


def assign_role(user_id: int, org_id: int, role_name: str) -> UserRole:
    """
    Assign a role to a user. Flushes but does not commit.

    Raises:
        ValueError: unknown role name
    """
    if role_name not in DEFAULT_ROLE_PERMISSIONS:
        raise ValueError(f"Unknown role '{role_name}'. Must be one of {list(DEFAULT_ROLE_PERMISSIONS)}")

    role = ensure_org_roles(org_id)[role_name]
    existing = db.session.query(UserRole).filter_by(user_id=user_id, role_id=role.id).first()
    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)
    db.session.add(user_role)
    db.session.flush()
    return user_role
