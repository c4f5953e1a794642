"""
auth/google.py -- Google sign-in: ID token verification, authorization code
exchange, and identity linking.

Two login shapes reach the backend:
  id_token -- the frontend ran Google's one-tap / button flow and posts the
              signed ID token it received. We verify it locally against
              Google's published JWKS.
  code     -- the frontend ran the popup code flow and posts the one-time
              authorization code. We exchange it server-side (authlib
              OAuth2Session over requests), confirm the access token with
              Google's tokeninfo endpoint, then verify the returned ID token.

Security notes:
  [H1] Linking a Google identity to an existing password account by email
       requires email_verified=true. An unverified address on a Google
       account could belong to someone else, and linking would hand them the
       victim's account.

  Only RS256 is accepted. Allowing HS256 would let an attacker sign tokens
  with Google's public key as the HMAC secret.

Layer rule: no imports from api/ or catalog/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import unquote

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from auth.models import User
from core.config import Settings, get_settings

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("gamevault.auth.google")

GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")

_JWKS_TTL_SECONDS = 60 * 60
_JWKS_MIN_REFRESH_SECONDS = 60
_LEEWAY_SECONDS = 60
_jwt = JsonWebToken(["RS256"])


class GoogleAuthError(Exception):
    """Raised when a Google credential cannot be verified or linked."""


@dataclass
class GoogleIdentity:
    """The subset of Google ID token claims we act on."""

    sub: str
    email: str | None = None
    email_verified: bool = False
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None
    locale: str | None = None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GoogleAuthClient:
    """Talks to Google's OAuth endpoints. One instance lives on app.state.

    The JWKS is cached in-process for an hour and refetched once when a token
    names a key ID we have not seen (Google rotates signing keys).
    """

    def __init__(self, settings: Settings | None = None, http: requests.Session | None = None) -> None:
        cfg = settings or get_settings()
        self.client_id = cfg.google_client_id
        self.client_secret = cfg.google_client_secret
        self.redirect_uri = cfg.google_redirect_uri
        self._http = http or requests.Session()
        self._http.max_redirects = 3
        self._jwks: dict | None = None
        self._jwks_fetched_at = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _get_jwks(self, force: bool = False) -> dict:
        stale = time.monotonic() - self._jwks_fetched_at > _JWKS_TTL_SECONDS
        if force or stale or self._jwks is None:
            try:
                resp = self._http.get(GOOGLE_CERTS_URL, timeout=10)
                resp.raise_for_status()
                self._jwks = resp.json()
            except (requests.RequestException, ValueError) as exc:
                raise GoogleAuthError("Could not fetch Google signing keys") from exc
            self._jwks_fetched_at = time.monotonic()
        return self._jwks

    def verify_id_token(self, id_token: str) -> GoogleIdentity:
        """Verify signature, issuer, audience, and expiry of a Google ID token."""
        if not self.client_id:
            raise GoogleAuthError("Google sign-in is not configured")
        try:
            return decode_google_id_token(id_token, self._get_jwks(), self.client_id)
        except GoogleAuthError:
            # Unknown kid after a key rotation -- refresh at most once a minute.
            if time.monotonic() - self._jwks_fetched_at < _JWKS_MIN_REFRESH_SECONDS:
                raise
            return decode_google_id_token(id_token, self._get_jwks(force=True), self.client_id)

    def exchange_code(self, code: str) -> dict:
        """Exchange an authorization code for Google's token response."""
        session = OAuth2Session(self.client_id, self.client_secret, redirect_uri=self.redirect_uri)
        try:
            return session.fetch_token(GOOGLE_TOKEN_URL, code=code, grant_type="authorization_code")
        except AuthlibBaseError as exc:
            logger.warning("Google code exchange rejected: %s", exc.error)
            raise GoogleAuthError(f"{exc.description or 'Code exchange failed'}: {exc.error}") from exc
        except requests.RequestException as exc:
            raise GoogleAuthError("Google token endpoint unreachable") from exc
        finally:
            session.close()

    def get_token_info(self, access_token: str) -> dict:
        """Ask Google to describe an access token (sub, aud, scope, expiry)."""
        try:
            resp = self._http.get(GOOGLE_TOKENINFO_URL, params={"access_token": access_token}, timeout=10)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise GoogleAuthError("Google tokeninfo lookup failed") from exc


def decode_google_id_token(id_token: str, jwks: dict, client_id: str) -> GoogleIdentity:
    """Verify a Google ID token against a JWKS document. Pure function.

    Raises GoogleAuthError on any failure.
    """
    claims_options = {
        "iss": {"essential": True, "values": list(GOOGLE_ISSUERS)},
        "aud": {"essential": True, "value": client_id},
        "sub": {"essential": True},
        "exp": {"essential": True},
    }
    try:
        key_set = JsonWebKey.import_key_set(jwks)
        claims = _jwt.decode(id_token, key_set, claims_options=claims_options)
        claims.validate(leeway=_LEEWAY_SECONDS)
    except (JoseError, ValueError, KeyError) as exc:
        raise GoogleAuthError(f"Invalid Google ID token: {exc}") from exc

    return GoogleIdentity(
        sub=str(claims["sub"]),
        email=(claims.get("email") or "").lower() or None,
        email_verified=claims.get("email_verified") is True,
        given_name=claims.get("given_name"),
        family_name=claims.get("family_name"),
        picture=claims.get("picture"),
        locale=claims.get("locale"),
    )


def decode_code_param(value: str) -> str:
    """Undo the frontend's btoa(encodeURIComponent(code)) wrapping."""
    try:
        return unquote(base64.b64decode(value, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError("code is not valid base64") from exc


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return metadata for every configured OAuth provider.

    Used by GET /api/v1/users/providers so the frontend knows which sign-in
    buttons to render.
    """
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


# ---------------------------------------------------------------------------
# Identity linking
# ---------------------------------------------------------------------------


def link_google_identity(store: UserStore, identity: GoogleIdentity) -> User:
    """Resolve a verified Google identity to a local account.

    1. Returning user: matched by google_id.
    2. Existing account with the same email: link google_id to it [H1].
    3. Otherwise create a new passwordless account from the Google profile.

    Raises GoogleAuthError when linking is refused or the account is disabled.
    """
    user = store.get_by_google_id(identity.sub)
    if user is None:
        if not identity.email:
            raise GoogleAuthError("Google account has no email address")
        existing = store.get_by_email(identity.email)
        if existing is not None:
            if not identity.email_verified:
                logger.warning("Refusing to link unverified Google email to user %s", existing.id)
                raise GoogleAuthError("Google email is not verified")
            try:
                store.link_google(existing.id, identity.sub)
            except ValueError as exc:
                logger.warning("Refusing to relink user %s: %s", existing.id, exc)
                raise GoogleAuthError(str(exc)) from exc
            user = store.get_by_id(existing.id)
            logger.info("Linked Google identity to user %s", existing.id)
        else:
            user_id = store.create_user(
                User(
                    email=identity.email,
                    google_id=identity.sub,
                    first_name=identity.given_name,
                    last_name=identity.family_name,
                    photo=identity.picture,
                    locale=identity.locale,
                    is_email_verified=identity.email_verified,
                )
            )
            user = store.get_by_id(user_id)
            logger.info("Created user %s from Google sign-in", user_id)

    if user is None or not user.is_active:
        raise GoogleAuthError("Account is disabled")
    return user
