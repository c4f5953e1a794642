"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in catalog/models.py -- dataclasses own domain shape; stores and routes do
the work.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLES = ("user", "guide", "lead-guide", "admin")

# Action token kinds. Each kind owns one (hash, expiry) column pair on the
# users row, so issuing a new token of a kind replaces the previous one.
PASSWORD_RESET = "password_reset"
EMAIL_VERIFICATION = "email_verification"
EMAIL_CHANGE = "email_change"
ACTION_TOKEN_KINDS = (PASSWORD_RESET, EMAIL_VERIFICATION, EMAIL_CHANGE)


@dataclass
class User:
    """A customer or staff account.

    hashed_password is None for Google-only users (they have no local password).
    google_id is None until the user logs in via Google for the first time.

    password_changed_at is compared against a session token's iat claim:
    tokens issued before the last password change are rejected.

    The *_token fields hold SHA-256 hashes, never the raw value mailed to the
    user. candidate_email is the pending address during an email change.
    """

    email: str
    role: str = "user"  # "user", "guide", "lead-guide", "admin"
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    photo: str | None = None
    locale: str | None = None
    hashed_password: str | None = None  # None = Google-only user
    password_changed_at: str | None = None  # ISO 8601
    google_id: str | None = None  # Google's stable "sub"
    is_email_verified: bool = False
    candidate_email: str | None = None
    password_reset_token: str | None = None
    password_reset_expires: str | None = None
    email_verification_token: str | None = None
    email_verification_expires: str | None = None
    email_change_token: str | None = None
    email_change_expires: str | None = None
    created_at: str | None = None
    is_active: bool = True
