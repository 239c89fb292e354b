"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the user directory (users, roles, user_roles); RefreshTokenStore
owns the refresh_tokens table. Both share one Engine so the foreign key from
refresh_tokens to users is enforced in the same database. _row_to_* functions
are the mappers. Route and service code never touches SQL directly.

Lookups return the entity or None -- never raise for "not found".

Transactions: every public mutation runs on its own connection and commits
once at the end, so a user insert and its role rows land atomically.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import ROLE_ADMIN, ROLE_USER, AuditInfo, RefreshToken, Role, User

_DEFAULT_DB_URL = "sqlite:///staffdesk_auth.db"

DEFAULT_ROLES: tuple[Role, ...] = (
    Role(name=ROLE_USER, description="Standard user"),
    Role(name=ROLE_ADMIN, description="Administrator with full access"),
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(100), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("enabled", Boolean, nullable=False, server_default="1"),
    Column("account_non_locked", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(500), nullable=False, unique=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expiry_date", String(32), nullable=False),
    Column("revoked", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON is what makes the
    refresh_tokens -> users cascade real.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


def _to_iso(value: datetime) -> str:
    # Fixed width so stored timestamps compare correctly as strings.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# User directory
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Role entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(username="alice", email="a@x.com", hashed_password=h), ["ROLE_USER"])
        user = store.get_by_username_or_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)
        self._ensure_default_roles()

    def _ensure_default_roles(self) -> None:
        """Seed ROLE_USER and ROLE_ADMIN if missing. Idempotent -- safe on every startup."""
        with self.engine.connect() as conn:
            existing = set(conn.execute(select(_roles.c.name)).scalars())
            for role in DEFAULT_ROLES:
                if role.name not in existing:
                    conn.execute(_roles.insert().values(name=role.name, description=role.description))
            conn.commit()

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User, role_names: list[str]) -> int:
        """Insert a user together with its role links and return the new ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Raises LookupError if a role name is unknown; nothing is
        committed in either case.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            role_ids = _role_ids(conn, role_names)
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    enabled=user.enabled,
                    account_non_locked=user.account_non_locked,
                    created_at=now,
                    updated_at=now,
                )
            )
            user_id = result.inserted_primary_key[0]
            for role_id in role_ids:
                conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))
            conn.commit()
            return user_id

    def get_by_id(self, user_id: int) -> User | None:
        return self._get_one(_users.c.id == user_id)

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive)."""
        return self._get_one(_users.c.username == username)

    def get_by_email(self, email: str) -> User | None:
        return self._get_one(_users.c.email == email)

    def get_by_username_or_email(self, value: str) -> User | None:
        """Username first, then email -- a username that looks like an email wins."""
        return self.get_by_username(value) or self.get_by_email(value)

    def exists_by_username(self, username: str) -> bool:
        return self._exists(_users.c.username == username)

    def exists_by_email(self, email: str) -> bool:
        return self._exists(_users.c.email == email)

    def update_user(
        self,
        user_id: int,
        *,
        enabled: bool | None = None,
        account_non_locked: bool | None = None,
        hashed_password: str | None = None,
    ) -> bool:
        """Update the mutable account fields. Arguments left as None are unchanged.

        Returns True if a row was updated, False if user_id was not found.
        """
        fields: dict = {"updated_at": _now_iso()}
        if enabled is not None:
            fields["enabled"] = enabled
        if account_non_locked is not None:
            fields["account_non_locked"] = account_non_locked
        if hashed_password is not None:
            fields["hashed_password"] = hashed_password
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def get_role(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def add_role(self, user_id: int, role_id: int) -> bool:
        """Link a role to a user. Returns False if the user already holds it."""
        with self.engine.connect() as conn:
            held = conn.execute(
                select(func.count())
                .select_from(_user_roles)
                .where((_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id))
            ).scalar()
            if held:
                return False
            conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))
            conn.execute(_users.update().where(_users.c.id == user_id).values(updated_at=_now_iso()))
            conn.commit()
        return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_one(self, condition) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, _roles_for(conn, row.id))

    def _exists(self, condition) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(_users).where(condition)).scalar()
        return (count or 0) > 0


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for RefreshToken rows.

    Shares the UserStore engine:
        tokens = RefreshTokenStore(user_store.engine)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, token: RefreshToken) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    token=token.token,
                    user_id=token.user_id,
                    expiry_date=_to_iso(token.expiry_date),
                    revoked=token.revoked,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_token(self, token: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_for_user(self, user_id: int) -> list[RefreshToken]:
        """Return every token the user holds, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def delete(self, token_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.id == token_id))
            conn.commit()
        return result.rowcount > 0

    def delete_for_user(self, user_id: int) -> int:
        """Delete every token owned by user_id. Returns the number removed (0 is fine)."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def revoke(self, token: str) -> bool:
        """Flag a token as revoked without deleting it."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update().where(_refresh_tokens.c.token == token).values(revoked=True)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_expired(self, now: datetime | None = None) -> int:
        """Bulk-delete tokens whose expiry is before now.

        ISO 8601 strings in UTC with the same offset sort lexically in time
        order, so the comparison runs in SQL.
        """
        cutoff = _to_iso(now or datetime.now(timezone.utc))
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expiry_date < cutoff))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


def _role_ids(conn: Connection, role_names: list[str]) -> list[int]:
    ids = []
    for name in role_names:
        role_id = conn.execute(select(_roles.c.id).where(_roles.c.name == name)).scalar()
        if role_id is None:
            raise LookupError(f"Role not found: {name}")
        ids.append(role_id)
    return ids


def _roles_for(conn: Connection, user_id: int) -> list[Role]:
    rows = conn.execute(
        select(_roles)
        .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
        .where(_user_roles.c.user_id == user_id)
        .order_by(_roles.c.name)
    ).fetchall()
    return [_row_to_role(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, roles: list[Role]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        enabled=bool(row.enabled),
        account_non_locked=bool(row.account_non_locked),
        roles=roles,
        audit=AuditInfo(created_at=row.created_at, updated_at=row.updated_at),
    )


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, description=row.description or "")


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expiry_date=datetime.fromisoformat(row.expiry_date),
        revoked=bool(row.revoked),
        created_at=row.created_at,
    )
