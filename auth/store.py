"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Service and route
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Session slot:
  refresh_token is a single nullable column. set_refresh_token() overwrites it
  unconditionally (last write wins). swap_refresh_token() is the conditional
  variant: it only writes when the column still holds the expected value, so
  two concurrent rotations of the same token cannot both succeed.

DB path: storefront_auth.db at the repository root unless DATABASE_URL says
otherwise.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text, create_engine, event, or_, text
from sqlalchemy.engine import Engine

from auth.models import User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("phone", String(32), nullable=False, unique=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("full_name", String(201), nullable=False),
    Column("address_line1", String(255), nullable=False),
    Column("address_line2", String(255), nullable=False, server_default=""),
    Column("avatar", Text, nullable=False, server_default=""),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(16), nullable=False, server_default="user"),
    Column("is_email_verified", Boolean, nullable=False, server_default="0"),
    Column("is_phone_verified", Boolean, nullable=False, server_default="0"),
    Column("refresh_token", Text),  # NULL = no active session
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers proceed without blocking during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(user)
        user = store.get_by_email("jane@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Run a trivial query to verify the database is reachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        The caller must have hashed the password already; this method stores
        hashed_password verbatim. Raises sqlalchemy.exc.IntegrityError if the
        email, phone, or username is already taken.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    phone=user.phone,
                    username=user.username,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    full_name=user.full_name,
                    address_line1=user.address_line1,
                    address_line2=user.address_line2,
                    avatar=user.avatar,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    is_email_verified=user.is_email_verified,
                    is_phone_verified=user.is_phone_verified,
                    refresh_token=None,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_conflict(self, email: str, phone: str, username: str) -> User | None:
        """Return any user already holding this email, phone number, or username.

        Covers every unique column so registration can reject duplicates
        before it stores anything.
        """
        clause = or_(_users.c.email == email, _users.c.phone == phone, _users.c.username == username)
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause).limit(1)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace the stored credential hash. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hashed_password, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def set_refresh_token(self, user_id: int, token: str | None) -> bool:
        """Overwrite the session slot unconditionally (None clears it).

        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(refresh_token=token, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def swap_refresh_token(self, user_id: int, expected: str, token: str) -> bool:
        """Replace the session slot only if it still holds `expected`.

        Single UPDATE ... WHERE refresh_token = :expected, so the check and the
        write are atomic in the database. Returns False when another writer
        got there first (or the user is gone).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.refresh_token == expected))
                .values(refresh_token=token, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        phone=row.phone,
        username=row.username,
        first_name=row.first_name,
        last_name=row.last_name,
        full_name=row.full_name,
        address_line1=row.address_line1,
        address_line2=row.address_line2 or "",
        avatar=row.avatar or "",
        hashed_password=row.hashed_password,
        role=row.role,
        is_email_verified=bool(row.is_email_verified),
        is_phone_verified=bool(row.is_phone_verified),
        refresh_token=row.refresh_token,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
