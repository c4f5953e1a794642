"""
api/routes/v1/auth.py -- Account, session, and sign-in REST endpoints.

Routes (all under /api/v1/users):
  POST  /signup                   -- create account; starts a session (201)
  POST  /login                    -- password login; starts a session
  POST  /logout                   -- clears jwt and fgp cookies
  GET   /me                       -- current user (requires auth)
  GET   /providers                -- enabled OAuth providers (public)
  POST  /forgot-password          -- mail a 10-minute reset link
  PATCH /reset-password/{token}   -- set a new password; starts a session
  PATCH /update-password          -- change password (requires auth); new session
  POST  /send-verification-email  -- mail a 60-minute verification link
  PATCH /verify-email/{token}     -- mark the email verified
  POST  /send-new-email           -- mail a 60-minute change link to the new address
  PATCH /change-email/{token}     -- swap email to the confirmed candidate
  POST  /google-login             -- sign in with a Google ID token
  POST  /google-login-code        -- sign in with a Google authorization code

Security:
  [H2] login, signup, and every mail-sending route share LOGIN_RATE_LIMIT per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.
  Raw action tokens exist only in the mailed link; the DB holds SHA-256.
  forgot-password answers identically whether or not the email is registered.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    AuthResponse,
    EmailRequest,
    GoogleCodeRequest,
    GoogleLoginRequest,
    LoginRequest,
    MessageResponse,
    NewEmailRequest,
    OAuthProviderInfo,
    ResetPasswordRequest,
    SignupRequest,
    UpdatePasswordRequest,
    UserPublic,
)
from auth.dependencies import get_current_user
from auth.email import EmailService, redact_email
from auth.google import GoogleAuthClient, GoogleAuthError, decode_code_param, get_enabled_providers, link_google_identity
from auth.models import EMAIL_CHANGE, EMAIL_VERIFICATION, PASSWORD_RESET, User
from auth.store import UserStore
from auth.tokens import (
    action_token_expiry,
    authenticate_user,
    clear_auth_cookies,
    create_access_token,
    generate_action_token,
    hash_action_token,
    hash_password,
    new_fingerprint,
    set_auth_cookies,
    verify_password,
)
from core.config import get_settings

logger = logging.getLogger("gamevault.auth")

_settings = get_settings()

# Auth policy:
# - GET   /users/me, PATCH /users/update-password: requires auth (get_current_user)
# - everything else: public -- these routes are how a caller obtains a session
router = APIRouter(prefix="/users")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _issue_session(user: User, status_code: int = 200) -> JSONResponse:
    """Mint a fingerprint-bound JWT for the user and set both cookies."""
    fingerprint = new_fingerprint()
    token = create_access_token(user.id, fingerprint)
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(token=token, user=UserPublic.from_user(user)).model_dump(),
    )
    set_auth_cookies(resp, token, fingerprint)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _origin(request: Request) -> str:
    """Frontend base URL for links mailed to the user."""
    return (request.headers.get("origin") or _settings.frontend_url).rstrip("/")


def _mail_failed() -> HTTPException:
    return _error(500, "email_failed", "There was an error sending the email. Try again later!")


# ---------------------------------------------------------------------------
# Signup / login / logout
# ---------------------------------------------------------------------------


@router.post("/signup", response_model=AuthResponse, status_code=201)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create a password account and log it in."""
    user_store: UserStore = request.app.state.user_store
    try:
        user_id = user_store.create_user(
            User(
                email=body.email,
                first_name=body.first_name,
                last_name=body.last_name,
                hashed_password=hash_password(body.password),
            )
        )
    except IntegrityError as exc:
        raise _error(409, "email_taken", "An account with that email already exists.") from exc

    logger.info("User %s signed up", user_id)
    return _issue_session(user_store.get_by_id(user_id), status_code=201)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; start a session.

    Uses authenticate_user() which includes timing equalization [C1]. Wrong
    password and unknown email return the same "bad_credentials" error.
    """
    if not body.email or not body.password:
        raise _error(400, "missing_credentials", "Please provide email and password!")

    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email.strip().lower(), body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Incorrect email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    return _issue_session(user)


@router.post("/logout")
async def logout() -> JSONResponse:
    """Clear the session cookies."""
    resp = JSONResponse(content={"success": True, "message": "Logged out."})
    clear_auth_cookies(resp)
    return resp


@router.get("/me", response_model=UserPublic)
async def me(current_user: User = Depends(get_current_user)) -> UserPublic:
    return UserPublic.from_user(current_user)


@router.get("/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers so the frontend can render buttons."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


# ---------------------------------------------------------------------------
# Password reset / update
# ---------------------------------------------------------------------------


@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def forgot_password(request: Request, body: EmailRequest) -> MessageResponse:
    """Mail a password reset link valid for PASSWORD_RESET_TTL_SECONDS.

    The response is the same for registered and unknown addresses.
    """
    if not body.email:
        raise _error(400, "missing_email", "Please provide your email address.")

    reply = MessageResponse(message="If that email is registered, a reset link has been sent.")
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_email(body.email.strip().lower())
    if user is None or not user.is_active:
        logger.info("Password reset requested for unknown email %s", redact_email(body.email))
        return reply

    raw, token_hash = generate_action_token()
    user_store.set_action_token(
        user.id, PASSWORD_RESET, token_hash, action_token_expiry(_settings.password_reset_ttl_seconds)
    )
    reset_url = f"{_settings.public_base_url.rstrip('/')}/api/v1/users/reset-password/{raw}"
    mailer: EmailService = request.app.state.mailer
    if not mailer.send_password_reset(user.email, reset_url):
        user_store.clear_action_token(user.id, PASSWORD_RESET)
        raise _mail_failed()
    return reply


@router.patch("/reset-password/{token}", response_model=AuthResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    """Consume a reset token, set the new password, and start a fresh session."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.find_by_action_token(PASSWORD_RESET, hash_action_token(token))
    if user is None or not user.is_active:
        raise _error(400, "invalid_token", "Token is invalid or has expired.")

    user_store.set_password(user.id, hash_password(body.password))
    user_store.clear_action_token(user.id, PASSWORD_RESET)
    logger.info("Password reset completed for user %s", user.id)
    return _issue_session(user_store.get_by_id(user.id))


@router.patch("/update-password", response_model=AuthResponse)
def update_password(
    request: Request,
    body: UpdatePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Change the caller's password. Every older session stops working."""
    if current_user.hashed_password is None or not verify_password(
        body.password_current, current_user.hashed_password
    ):
        raise _error(401, "wrong_password", "Your current password is wrong.")

    user_store: UserStore = request.app.state.user_store
    user_store.set_password(current_user.id, hash_password(body.password))
    logger.info("Password updated for user %s", current_user.id)
    return _issue_session(user_store.get_by_id(current_user.id))


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/send-verification-email", response_model=MessageResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def send_verification_email(request: Request, body: EmailRequest) -> MessageResponse:
    if not body.email:
        raise _error(400, "missing_email", "Please provide your email address.")

    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_email(body.email.strip().lower())
    if user is None:
        raise _error(404, "not_found", "There is no user with that email address.")
    if user.is_email_verified:
        raise _error(400, "already_verified", "This email address is already verified.")

    raw, token_hash = generate_action_token()
    user_store.set_action_token(
        user.id, EMAIL_VERIFICATION, token_hash, action_token_expiry(_settings.email_verification_ttl_seconds)
    )
    mailer: EmailService = request.app.state.mailer
    if not mailer.send_email_verification(user.email, f"{_origin(request)}/profile/verify-email/{raw}"):
        user_store.clear_action_token(user.id, EMAIL_VERIFICATION)
        raise _mail_failed()
    return MessageResponse(message="Verification email sent.")


@router.patch("/verify-email/{token}", response_model=MessageResponse)
def verify_email(request: Request, token: str) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    user = user_store.find_by_action_token(EMAIL_VERIFICATION, hash_action_token(token))
    if user is None:
        raise _error(400, "invalid_token", "Token is invalid or has expired.")
    user_store.verify_email(user.id)
    logger.info("Email verified for user %s", user.id)
    return MessageResponse(message="Email verified.")


# ---------------------------------------------------------------------------
# Email change
# ---------------------------------------------------------------------------


@router.post("/send-new-email", response_model=MessageResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def send_new_email(request: Request, body: NewEmailRequest) -> MessageResponse:
    """Start an email change. The link goes to the NEW address, proving ownership.

    The current address must already be verified, and the password must match
    it. The candidate address is held on the user row until the link is used.
    """
    if not body.current_email or not body.new_email or not body.password:
        raise _error(400, "missing_fields", "Please provide current email, new email, and password.")

    current_email = body.current_email.strip().lower()
    new_email = body.new_email.strip().lower()
    if current_email == new_email:
        raise _error(400, "same_email", "The new email must be different from the current one.")

    user_store: UserStore = request.app.state.user_store
    if user_store.get_by_email(new_email) is not None:
        raise _error(409, "email_taken", "An account with that email already exists.")

    user = authenticate_user(user_store, current_email, body.password)  # [C1]
    if user is None:
        raise _error(401, "bad_credentials", "Incorrect email or password.")
    if not user.is_email_verified:
        raise _error(400, "email_not_verified", "Please verify your current email address first.")

    raw, token_hash = generate_action_token()
    user_store.set_action_token(
        user.id,
        EMAIL_CHANGE,
        token_hash,
        action_token_expiry(_settings.email_change_ttl_seconds),
        candidate_email=new_email,
    )
    mailer: EmailService = request.app.state.mailer
    if not mailer.send_email_change(new_email, f"{_origin(request)}/profile/new-email/{raw}"):
        user_store.clear_action_token(user.id, EMAIL_CHANGE)
        raise _mail_failed()
    return MessageResponse(message="Confirmation email sent to the new address.")


@router.patch("/change-email/{token}", response_model=MessageResponse)
def change_email(request: Request, token: str) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    user = user_store.find_by_action_token(EMAIL_CHANGE, hash_action_token(token))
    if user is None:
        raise _error(400, "invalid_token", "Token is invalid or has expired.")
    try:
        changed = user_store.apply_email_change(user.id)
    except IntegrityError as exc:
        user_store.clear_action_token(user.id, EMAIL_CHANGE)
        raise _error(409, "email_taken", "An account with that email already exists.") from exc
    if not changed:
        raise _error(400, "invalid_token", "Token is invalid or has expired.")
    logger.info("Email changed for user %s", user.id)
    return MessageResponse(message="Email changed.")


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


def _google_failed(exc: GoogleAuthError) -> HTTPException:
    logger.warning("Google sign-in failed: %s", exc)
    return _error(401, "google_auth_failed", "Google sign-in failed.")


@router.post("/google-login", response_model=AuthResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def google_login(request: Request, body: GoogleLoginRequest) -> JSONResponse:
    """Sign in with an ID token obtained by the frontend's Google button."""
    google: GoogleAuthClient = request.app.state.google
    try:
        identity = google.verify_id_token(body.id_token)
        user = link_google_identity(request.app.state.user_store, identity)
    except GoogleAuthError as exc:
        raise _google_failed(exc) from exc
    return _issue_session(user)


@router.post("/google-login-code", response_model=AuthResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def google_login_code(request: Request, body: GoogleCodeRequest) -> JSONResponse:
    """Sign in with an authorization code from the frontend's popup flow.

    X-Requested-With must be present: browsers will not attach it to a
    cross-site form post, so this blocks login CSRF.
    """
    if request.headers.get("X-Requested-With") != "XmlHttpRequest":
        raise _error(400, "missing_header", "X-Requested-With header is required.")
    try:
        code = decode_code_param(body.code)
    except ValueError as exc:
        raise _error(400, "invalid_code", "code must be base64 encoded.") from exc

    google: GoogleAuthClient = request.app.state.google
    try:
        tokens = google.exchange_code(code)
        access_token = tokens.get("access_token")
        id_token = tokens.get("id_token")
        if not access_token or not id_token:
            raise GoogleAuthError("Token response is missing access_token or id_token")
        info = google.get_token_info(access_token)
        if not info.get("sub"):
            raise GoogleAuthError("Access token is not bound to a user")
        identity = google.verify_id_token(id_token)
        if identity.sub != str(info["sub"]):
            raise GoogleAuthError("Access token and ID token name different users")
        user = link_google_identity(request.app.state.user_store, identity)
    except GoogleAuthError as exc:
        raise _google_failed(exc) from exc
    return _issue_session(user)
