"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper (same as catalog/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Action tokens are stored as SHA-256 hashes, one (hash, expiry) column pair
  per kind. The kind -> column mapping is a fixed whitelist; an unknown kind
  raises ValueError before any SQL is built.

  UNIQUE(google_id) is enforced in code rather than SQL because SQLite treats
  two NULL values as distinct in UNIQUE constraints. link_google() checks for
  an existing owner of the identity before writing.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import ACTION_TOKEN_KINDS, EMAIL_CHANGE, EMAIL_VERIFICATION, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("photo", Text),
    Column("locale", String(20)),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("hashed_password", Text),  # NULL for Google-only users
    Column("password_changed_at", String(32)),
    Column("google_id", String(255)),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("candidate_email", String(255)),
    Column("password_reset_token", String(64)),  # SHA-256 hex
    Column("password_reset_expires", String(32)),
    Column("email_verification_token", String(64)),
    Column("email_verification_expires", String(32)),
    Column("email_change_token", String(64)),
    Column("email_change_expires", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)


def _token_columns(kind: str) -> tuple[str, str]:
    """Map an action token kind to its (hash, expiry) column names."""
    if kind not in ACTION_TOKEN_KINDS:
        raise ValueError(f"Unknown action token kind: {kind!r}")
    return f"{kind}_token", f"{kind}_expires"


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities and their action tokens.

    Usage:
        store = UserStore()
        uid = store.create_user(User(email="a@example.com", hashed_password=hash_password("secret")))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(select(func.count()).select_from(_users)).scalar()
        return True

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    photo=user.photo,
                    locale=user.locale,
                    role=user.role,
                    hashed_password=user.hashed_password,
                    google_id=user.google_id,
                    is_email_verified=1 if user.is_email_verified else 0,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Callers normalize case before calling."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_google_id(self, google_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.google_id == google_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def link_google(self, user_id: int, google_id: str) -> None:
        """Associate a Google identity with an existing account.

        Raises ValueError if another account already owns this identity, or
        if the account is already linked to a different Google identity.
        """
        owner = self.get_by_google_id(google_id)
        if owner is not None and owner.id != user_id:
            raise ValueError("Google identity is already linked to another account")
        user = self.get_by_id(user_id)
        if user is not None and user.google_id and user.google_id != google_id:
            raise ValueError("Account is already linked to a different Google identity")
        self.update_user(user_id, google_id=google_id)

    def update_user(self, user_id: int, **fields) -> bool:
        """Update arbitrary columns on a user. Returns False if user_id was not found.

        Boolean flags (is_active, is_email_verified) are converted to 0/1.
        """
        for flag in ("is_active", "is_email_verified"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_password(self, user_id: int, hashed_password: str) -> None:
        """Replace the password hash and stamp password_changed_at.

        The stamp is backdated one second: a session token issued in the
        same request carries an iat that must not fall before the change.
        """
        changed_at = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        self.update_user(user_id, hashed_password=hashed_password, password_changed_at=changed_at)

    # ------------------------------------------------------------------
    # Action tokens
    # ------------------------------------------------------------------

    def set_action_token(
        self,
        user_id: int,
        kind: str,
        token_hash: str,
        expires_at: str,
        candidate_email: str | None = None,
    ) -> None:
        """Store a hashed action token, replacing any previous token of the same kind."""
        token_col, expires_col = _token_columns(kind)
        values = {token_col: token_hash, expires_col: expires_at}
        if kind == EMAIL_CHANGE:
            values["candidate_email"] = candidate_email
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()

    def clear_action_token(self, user_id: int, kind: str) -> None:
        token_col, expires_col = _token_columns(kind)
        values = {token_col: None, expires_col: None}
        if kind == EMAIL_CHANGE:
            values["candidate_email"] = None
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()

    def find_by_action_token(self, kind: str, token_hash: str) -> User | None:
        """Return the user holding this unexpired token hash, or None.

        Expiry is compared as ISO 8601 UTC strings, which sort
        chronologically because every timestamp is written by _now_iso-style
        helpers with the same offset.
        """
        token_col, expires_col = _token_columns(kind)
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c[token_col] == token_hash) & (_users.c[expires_col] > _now_iso())
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def verify_email(self, user_id: int) -> None:
        """Mark the email verified and consume the verification token."""
        self.update_user(user_id, is_email_verified=True)
        self.clear_action_token(user_id, EMAIL_VERIFICATION)

    def apply_email_change(self, user_id: int) -> bool:
        """Move candidate_email into email and consume the change token.

        The new address is verified by construction: the token proving it
        was delivered there. Returns False if there was no candidate.

        Raises sqlalchemy.exc.IntegrityError if the candidate address was
        registered by someone else after the change was requested.
        """
        user = self.get_by_id(user_id)
        if user is None or not user.candidate_email:
            self.clear_action_token(user_id, EMAIL_CHANGE)
            return False
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    email=user.candidate_email,
                    is_email_verified=1,
                    candidate_email=None,
                    email_change_token=None,
                    email_change_expires=None,
                )
            )
            conn.commit()
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        photo=row.photo,
        locale=row.locale,
        role=row.role,
        hashed_password=row.hashed_password,
        password_changed_at=row.password_changed_at,
        google_id=row.google_id,
        is_email_verified=bool(row.is_email_verified),
        candidate_email=row.candidate_email,
        password_reset_token=row.password_reset_token,
        password_reset_expires=row.password_reset_expires,
        email_verification_token=row.email_verification_token,
        email_verification_expires=row.email_verification_expires,
        email_change_token=row.email_change_token,
        email_change_expires=row.email_change_expires,
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )
