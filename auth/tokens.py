"""
auth/tokens.py -- Session JWTs, fingerprint cookies, password hashing, and
single-use action tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub/id (user ID), iss, aud, iat, exp, and jti. Verification returns
       None on any failure -- the dependency layer turns that into a 401.

  Fingerprint: every session gets 16 random bytes (hex) delivered only as the
       httpOnly "fgp" cookie. The JWT's jti claim is SHA-256(fingerprint). A
       token lifted from storage or a log is useless without the matching
       cookie, and the cookie alone carries no identity.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered [C1].

  Action tokens: 32 random bytes (hex) are mailed to the user; only
       SHA-256(raw) is stored. A DB leak does not expose usable reset links.
       SHA-256 rather than bcrypt because the raw value has 256 bits of
       entropy and lookup has to be by exact hash.

Layer rule: no imports from api/ or catalog/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("gamevault.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

JWT_COOKIE = "jwt"
FINGERPRINT_COOKIE = "fgp"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes; the API layer caps password
    length well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("gamevault_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email or Google-only user: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Session fingerprint
# ---------------------------------------------------------------------------


def new_fingerprint() -> str:
    """Return a fresh per-session fingerprint (16 random bytes, hex)."""
    return secrets.token_hex(16)


def hash_fingerprint(fingerprint: str) -> str:
    return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, fingerprint: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT bound to the given session fingerprint.

    Args:
        user_id:        Numeric user ID stored in the DB.
        fingerprint:    Raw fingerprint that will be set as the fgp cookie.
                        Only its SHA-256 goes into the token (jti claim).
        expire_seconds: Token lifetime. 0 (default) uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "id": user_id,
        "iss": _settings.jwt_issuer,
        "aud": _settings.jwt_audience,
        "jti": hash_fingerprint(fingerprint),
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str, fingerprint: str | None) -> dict | None:
    """Verify a JWT against its fingerprint. Returns the payload or None.

    Checks signature (HS256 only), exp, iss, aud, and that jti equals
    SHA-256(fingerprint). A missing fingerprint is a failure: the token
    was presented without the cookie that proves it belongs to this browser.
    """
    if not fingerprint:
        return None
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            audience=_settings.jwt_audience,
            issuer=_settings.jwt_issuer,
        )
    except JWTError as exc:
        logger.debug("JWT rejected: %s", exc)
        return None
    jti = payload.get("jti")
    if not isinstance(jti, str) or not hmac.compare_digest(jti, hash_fingerprint(fingerprint)):
        logger.debug("JWT rejected: fingerprint mismatch")
        return None
    if not isinstance(payload.get("id"), int) or "iat" not in payload:
        return None
    return payload


def password_changed_after(user: User, iat: int) -> bool:
    """Return True if the user's password changed after the token was issued."""
    if not user.password_changed_at:
        return False
    changed = datetime.fromisoformat(user.password_changed_at)
    if changed.tzinfo is None:
        changed = changed.replace(tzinfo=timezone.utc)
    return int(changed.timestamp()) > int(iat)


# ---------------------------------------------------------------------------
# Single-use action tokens
# ---------------------------------------------------------------------------


def generate_action_token() -> tuple[str, str]:
    """Return (raw, hashed). Mail the raw value; store only the hash."""
    raw = secrets.token_hex(32)
    return raw, hash_action_token(raw)


def hash_action_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def action_token_expiry(ttl_seconds: int) -> str:
    """Return the ISO 8601 UTC expiry for a token issued now."""
    return (datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)).isoformat()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, token: str, fingerprint: str) -> None:
    """Write the JWT and its fingerprint as httpOnly cookies on the response.

    samesite="strict": neither cookie rides along on cross-site requests.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    Both cookies share one max_age so they expire together.
    """
    domain = _settings.cookie_domain or None
    for name, value in ((JWT_COOKIE, token), (FINGERPRINT_COOKIE, fingerprint)):
        response.set_cookie(
            name,
            value=value,
            httponly=True,
            samesite="strict",
            secure=_settings.secure_cookies,
            max_age=_settings.cookie_max_age,
            domain=domain,
        )


def clear_auth_cookies(response) -> None:
    domain = _settings.cookie_domain or None
    response.delete_cookie(JWT_COOKIE, domain=domain)
    response.delete_cookie(FINGERPRINT_COOKIE, domain=domain)
