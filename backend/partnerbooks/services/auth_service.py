# Overview: Service-layer operations for auth; password hashing, users, registration, login, profile.

"""
Authentication Service

WHY: Every ledger write is attributed to a user. Uses bcrypt for password
hashing and validates password strength.

MULTI-TENANT: Users belong to exactly one organization. Registration always
creates a new organization with the registering user as its owner.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Organization, User
from ..validation import EMAIL_RE
from partnerbooks.time_utils import utcnow
from . import permission_service
from .blob_service import check_upload, get_blob_store


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""

    def __init__(self, message: str):
        super().__init__(message, errors=[{"field": "password", "message": message}])


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt cost factor 12."""
    validate_password_strength(password)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never verify."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def normalize_email(email) -> str:
    return str(email or "").strip().lower()


def _validate_identity(name, email) -> tuple[str, str]:
    errors = []
    name = str(name or "").strip()
    email = normalize_email(email)
    if len(name) < 2 or len(name) > 100:
        errors.append({"field": "name", "message": "Name must be between 2 and 100 characters"})
    if not EMAIL_RE.match(email):
        errors.append({"field": "email", "message": "Please enter a valid email"})
    if errors:
        raise ValidationError("Validation failed", errors=errors)
    return name, email


def create_user(
    *,
    org_id: int,
    name: str,
    email: str,
    password: str,
    role: str = "bookkeeper",
    phone: str | None = None,
    company: str | None = None,
) -> User:
    """
    Create a user in org_id and assign a role.

    Raises:
        ValidationError: bad name/email, weak password, email already taken
        ValueError: organization missing or inactive, unknown role
    """
    name, email = _validate_identity(name, email)

    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        raise ValueError("Organization not found")
    if not org.is_active:
        raise ValueError("Organization is not active")

    if db.session.query(User).filter_by(email=email).first():
        raise ValidationError.for_field("email", "User already exists")

    user = User(
        org_id=org_id,
        name=name,
        email=email,
        password_hash=hash_password(password),
        phone=phone,
        company=company,
    )
    db.session.add(user)
    try:
        db.session.flush()
        permission_service.assign_role(user.id, org_id, role)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError.for_field("email", "User already exists")
    return user


def register(
    *,
    name: str,
    email: str,
    password: str,
    organization_name: str | None = None,
    phone: str | None = None,
    company: str | None = None,
) -> User:
    """
    Register a new user as owner of a brand-new organization.

    Everything is committed together; a failure leaves no organization behind.
    """
    name, email = _validate_identity(name, email)
    validate_password_strength(password)

    if db.session.query(User).filter_by(email=email).first():
        raise ValidationError.for_field("email", "User already exists")

    org_name = str(organization_name or company or f"{name}'s Books").strip()[:255]
    org = Organization(name=org_name, is_active=True)
    db.session.add(org)

    user = User(
        organization=org,
        name=name,
        email=email,
        password_hash=hash_password(password),
        phone=phone,
        company=company,
    )
    db.session.add(user)

    try:
        db.session.flush()
        permission_service.ensure_org_roles(org.id)
        permission_service.assign_role(user.id, org.id, "owner")
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError.for_field("email", "User already exists")
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate by email and password.

    Returns the User (and stamps last_login_at) or None. Inactive users and
    users of inactive organizations never authenticate.
    """
    user = db.session.query(User).filter(
        User.email == normalize_email(email),
        User.is_active.is_(True),
    ).first()
    if not user:
        return None

    org = db.session.query(Organization).filter_by(id=user.org_id).first()
    if not org or not org.is_active:
        return None

    if not verify_password(password or "", user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


PROFILE_FIELDS = ("name", "phone", "company")


def _optional_text(field: str, value, max_length: int, errors: list) -> str | None:
    value = str(value or "").strip()
    if len(value) > max_length:
        errors.append({"field": field, "message": f"{field} must be at most {max_length} characters"})
    return value or None


def update_profile(*, user_id: int, payload: dict, avatar_file=None) -> User:
    """
    Update the caller's own name, phone, company and avatar.

    Email is the login identifier and cannot be changed here. Blank phone or
    company clears the value.

    Raises:
        ValidationError: email present, unknown field, bad name, or nothing to update
        BlobStorageError: avatar missing a name, disallowed type, or not storable
    """
    payload = dict(payload or {})
    if "email" in payload:
        raise ValidationError.for_field("email", "Email cannot be changed via this endpoint")

    errors = [
        {"field": field, "message": "Unknown field"}
        for field in payload
        if field not in PROFILE_FIELDS
    ]
    updates = {}
    if "name" in payload:
        name = str(payload["name"] or "").strip()
        if len(name) < 2 or len(name) > 100:
            errors.append({"field": "name", "message": "Name must be between 2 and 100 characters"})
        updates["name"] = name
    if "phone" in payload:
        updates["phone"] = _optional_text("phone", payload["phone"], 32, errors)
    if "company" in payload:
        updates["company"] = _optional_text("company", payload["company"], 255, errors)
    if errors:
        raise ValidationError("Validation failed", errors=errors)

    if avatar_file is not None:
        check_upload(avatar_file, current_app.config["ALLOWED_UPLOAD_EXTENSIONS"])
        updates["avatar_url"] = get_blob_store().upload(avatar_file, folder="avatars").url

    if not updates:
        raise ValidationError("No valid fields to update")

    user = db.session.query(User).filter_by(id=user_id).first()
    if user is None:
        raise NotFoundError("User not found")
    for field, value in updates.items():
        setattr(user, field, value)
    db.session.commit()
    return user
