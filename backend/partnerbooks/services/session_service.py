# Overview: Service-layer operations for session tokens; issue, validate, revoke and prune.

"""
Session Token Management

Tokens are opaque bearer strings handed to the client once. Only their
SHA-256 hash is stored, so a leaked database does not leak live sessions.

MULTI-TENANT: The session captures org_id at login. Every authenticated
request runs in that organization.

SECURITY FEATURES:
- 32 bytes from secrets.token_hex
- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- 2-hour idle timeout (SESSION_IDLE_TIMEOUT), auto-revoked when exceeded
- Revocable on logout
- Rotated on refresh: the old token stops working when the new one is issued
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import Organization, SessionToken, User
from partnerbooks.time_utils import as_utc_naive, utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)
REVOKED_RETENTION = timedelta(days=30)


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    org_id: int


def generate_token() -> str:
    return secrets.token_hex(32)  # 32 bytes = 64 hex characters


def hash_token(token: str) -> str:
    # Tokens are high-entropy, SHA-256 is sufficient (no bcrypt needed)
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
    device_name: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Create a session for user_id in the user's organization.

    Returns (session_record, plaintext_token).

    Raises:
        ValueError: user missing or organization inactive
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise ValueError("User not found")

    org = db.session.query(Organization).filter_by(id=user.org_id).first()
    if not org or not org.is_active:
        raise ValueError("Organization is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        org_id=user.org_id,
        token_hash=hash_token(plaintext_token),
        device_name=device_name,
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a plaintext token into a SessionContext.

    Returns None if the token is unknown, revoked, expired, idle too long,
    or its user / organization has been deactivated. Touches last_used_at
    on success.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return None

    now = utcnow()

    if as_utc_naive(session.expires_at) < now:
        return None

    if now - as_utc_naive(session.last_used_at) > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    org = session.organization
    if not org or not org.is_active:
        _revoke(session, "Organization deactivated")
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session, org_id=session.org_id)


def refresh_session(
    token: str,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str] | None:
    """
    Rotate a live session.

    The presented token is revoked and a fresh one is issued for the same
    user and device; both changes land in one commit. A token can be
    refreshed only once.

    Returns (session_record, plaintext_token), or None if the token is not
    a live session.
    """
    context = validate_session(token)
    if context is None:
        return None

    old = context.session
    old.is_revoked = True
    old.revoked_at = utcnow()
    old.revoked_reason = "Rotated on refresh"

    return create_session(
        user_id=context.user.id,
        user_agent=user_agent or old.user_agent,
        ip_address=ip_address or old.ip_address,
        device_name=old.device_name,
    )


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke one session. Returns False if it was not active."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return False

    _revoke(session, reason)
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).all()
    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason
    db.session.commit()
    return len(sessions)


def cleanup_expired_sessions() -> int:
    """
    Delete sessions older than REVOKED_RETENTION that are expired or revoked.

    Returns count of sessions deleted.
    """
    now = utcnow()
    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True),
        ),
        SessionToken.created_at < now - REVOKED_RETENTION,
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
