# Overview: Staff records and bearer-token resolution.

"""
Tokens are cryptographically secure random strings handed to the client once;
only their SHA-256 hash is stored. Full login/session management belongs to
the authentication collaborator.
"""

import hashlib
import secrets

from ..extensions import db
from ..models import Staff
from ..models.staff import ROLE_HIERARCHY
from ..validation import FieldErrors, clean_text
from .errors import NotFoundError


def generate_token() -> str:
    """64-character hex token (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_staff(*, username: str, role: str = "staff", full_name: str | None = None, email: str | None = None) -> tuple[Staff, str]:
    """
    Create a staff member and issue an API token.

    Returns (staff, plaintext_token). The caller must hand the token to the
    user now; it cannot be recovered later.
    """
    errors = FieldErrors()
    username = clean_text(username, "username", errors, required=True, max_length=64)
    full_name = clean_text(full_name, "full_name", errors)
    email = clean_text(email, "email", errors)
    if role not in ROLE_HIERARCHY:
        errors.add("role", f"role must be one of: {', '.join(ROLE_HIERARCHY)}")
    if username and db.session.query(Staff).filter_by(username=username).first():
        errors.add("username", "username already exists")
    errors.raise_if_any()

    token = generate_token()
    staff = Staff(
        username=username,
        full_name=full_name,
        email=email,
        role=role,
        api_token_hash=hash_token(token),
        is_active=True,
    )
    db.session.add(staff)
    db.session.commit()
    return staff, token


def rotate_token(staff: Staff) -> str:
    token = generate_token()
    staff.api_token_hash = hash_token(token)
    db.session.commit()
    return token


def resolve_token(token: str | None) -> Staff | None:
    """Active staff member owning the token, or None."""
    if not token:
        return None
    staff = db.session.query(Staff).filter_by(api_token_hash=hash_token(token)).first()
    if staff is None or not staff.is_active:
        return None
    return staff


def get_staff(staff_id: int) -> Staff:
    staff = db.session.get(Staff, staff_id)
    if staff is None:
        raise NotFoundError(f"Staff {staff_id} not found", details={"staff_id": staff_id})
    return staff
