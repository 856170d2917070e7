"""
Login Throttling Service

WHY: Prevent brute-force password attacks by limiting failed login attempts.
After too many failures the identifier is temporarily locked.

- Failed attempts are LOGIN_FAILED rows in security_events (action = identifier)
- Lockout after MAX_FAILED_ATTEMPTS failures within LOCKOUT_WINDOW
- Lockout lasts LOCKOUT_DURATION from the most recent failure
"""

from datetime import timedelta

from ..extensions import db
from ..models import SecurityEvent, User
from partnerbooks.time_utils import as_utc_naive, utcnow


MAX_FAILED_ATTEMPTS = 5
LOCKOUT_WINDOW = timedelta(minutes=30)
LOCKOUT_DURATION = timedelta(minutes=30)

LOGIN_RESOURCE = "/api/auth/login"


def get_recent_failed_attempts(identifier: str) -> int:
    """Count LOGIN_FAILED events for identifier within LOCKOUT_WINDOW."""
    cutoff = utcnow() - LOCKOUT_WINDOW
    return db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "LOGIN_FAILED",
        SecurityEvent.action == identifier,
        SecurityEvent.occurred_at >= cutoff,
    ).count()


def is_account_locked(identifier: str) -> tuple[bool, int | None]:
    """
    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    if get_recent_failed_attempts(identifier) < MAX_FAILED_ATTEMPTS:
        return False, None

    most_recent = db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "LOGIN_FAILED",
        SecurityEvent.action == identifier,
    ).order_by(SecurityEvent.occurred_at.desc()).first()
    if not most_recent:
        return False, None

    lockout_end = as_utc_naive(most_recent.occurred_at) + LOCKOUT_DURATION
    now = utcnow()
    if now < lockout_end:
        return True, int((lockout_end - now).total_seconds())
    return False, None


def record_failed_attempt(
    identifier: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    reason: str = "Invalid credentials",
) -> int:
    """
    Record a failed login attempt.

    Returns the total number of recent failed attempts.
    """
    user = db.session.query(User).filter_by(email=identifier).first()

    db.session.add(SecurityEvent(
        user_id=user.id if user else None,
        org_id=user.org_id if user else None,
        event_type="LOGIN_FAILED",
        resource=LOGIN_RESOURCE,
        action=identifier,
        success=False,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    ))
    db.session.commit()

    return get_recent_failed_attempts(identifier)


def record_successful_login(
    user: User,
    identifier: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    db.session.add(SecurityEvent(
        user_id=user.id,
        org_id=user.org_id,
        event_type="LOGIN_SUCCESS",
        resource=LOGIN_RESOURCE,
        action=identifier,
        success=True,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    ))
    db.session.commit()


def get_lockout_status(identifier: str) -> dict:
    locked, seconds_remaining = is_account_locked(identifier)
    return {
        "locked": locked,
        "failed_attempts": get_recent_failed_attempts(identifier),
        "max_attempts": MAX_FAILED_ATTEMPTS,
        "seconds_until_unlock": seconds_remaining,
        "lockout_window_minutes": int(LOCKOUT_WINDOW.total_seconds() / 60),
        "lockout_duration_minutes": int(LOCKOUT_DURATION.total_seconds() / 60),
    }
