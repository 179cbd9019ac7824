"""
auth/store.py -- SQLAlchemy Core persistence layer for roles and users.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user / _row_to_role are the mappers. Services never touch SQL directly.

Integrity rules live in the database, not in check-then-act Python:
  - users.email is UNIQUE. Emails are normalized (stripped, lower-cased)
    before every write and lookup, so uniqueness is case-insensitive and two
    concurrent registrations with the same address cannot both commit.
  - users.role_id REFERENCES roles.id ON DELETE RESTRICT. On top of the
    foreign key (SQLite needs PRAGMA foreign_keys=ON per connection), every
    write that carries a role_id folds the existence check into the same
    statement (INSERT ... SELECT FROM roles / UPDATE ... WHERE EXISTS), so
    the check and the write are one atomic step.
  - A role is only deleted when no user references it, again in a single
    DELETE ... WHERE NOT EXISTS statement.

Security:
  All queries use bound parameters. No f-strings in SQL.

Failure mapping:
  IntegrityError  -> DuplicateEmail / InvalidReference / Conflict
  OperationalError -> StorageUnavailable (logged, never retried here)

Layer rule: no imports from api/, users/, or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    literal,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import Conflict, DuplicateEmail, InvalidReference, NotFound, RoleInUse, StorageUnavailable
from auth.models import Role, User

logger = logging.getLogger("caregate.store")

# Columns update_user() may write. Anything else is a programming error.
_UPDATABLE_FIELDS = frozenset({"name", "email", "secret_hash", "role_id"})

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    sqlite_autoincrement=True,  # deleted ids are never handed out again
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-case
    Column("secret_hash", Text, nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore the WAL request.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookup (case-insensitive policy)."""
    return email.strip().lower()


def _integrity_error(exc: IntegrityError):
    """Translate a constraint violation on users into the domain error."""
    message = str(exc.orig).lower()
    if "foreign key" in message:
        return InvalidReference()
    return DuplicateEmail()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Role and User entities.

    Usage:
        store = CredentialStore("sqlite:///caregate.db")
        store.seed_roles({1: "admin", 2: "doctor", 3: "patient"})
        user = store.create_user("Ada", "ada@example.com", hasher.hash("secret"), role_id=1)
        store.find_user_by_email("ADA@example.com")  # same user
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///caregate.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction; commit on success.

        Connectivity failures become StorageUnavailable so the api/ layer can
        answer 503 without knowing about SQLAlchemy.
        """
        try:
            with self.engine.begin() as conn:
                yield conn
        except OperationalError as exc:
            logger.error("Storage unavailable: %s", exc.orig)
            raise StorageUnavailable() from exc

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def role_exists(self, role_id: int) -> bool:
        with self._begin() as conn:
            row = conn.execute(select(_roles.c.id).where(_roles.c.id == role_id)).first()
        return row is not None

    def get_role(self, role_id: int) -> Role:
        with self._begin() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).first()
        if row is None:
            raise NotFound("Role not found.")
        return _row_to_role(row)

    def list_roles(self) -> list[Role]:
        with self._begin() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]

    def create_role(self, name: str, role_id: int | None = None) -> Role:
        """Insert a role. Raises Conflict if the name or id is already taken."""
        values: dict = {"name": name}
        if role_id is not None:
            values["id"] = role_id
        try:
            with self._begin() as conn:
                new_id = conn.execute(_roles.insert().values(**values).returning(_roles.c.id)).scalar_one()
        except IntegrityError as exc:
            raise Conflict("A role with that name or id already exists.") from exc
        logger.info("Role created: id=%d name=%s", new_id, name)
        return Role(id=new_id, name=name)

    def delete_role(self, role_id: int) -> None:
        """Delete an unreferenced role.

        Raises RoleInUse if any user still holds the role, NotFound if the
        role does not exist.
        """
        in_use = select(_users.c.id).where(_users.c.role_id == role_id).exists()
        try:
            with self._begin() as conn:
                result = conn.execute(_roles.delete().where((_roles.c.id == role_id) & ~in_use))
                if result.rowcount == 0:
                    found = conn.execute(select(_roles.c.id).where(_roles.c.id == role_id)).first()
                    if found is None:
                        raise NotFound("Role not found.")
                    raise RoleInUse()
        except IntegrityError as exc:
            raise RoleInUse() from exc
        logger.info("Role deleted: id=%d", role_id)

    def seed_roles(self, roles: dict[int, str]) -> None:
        """Ensure every (id, name) pair exists. Idempotent; safe on every startup.

        An id already bound to a different name is a configuration error:
        role ids are never reused.
        """
        for role_id, name in sorted(roles.items()):
            with self._begin() as conn:
                row = conn.execute(_roles.select().where(_roles.c.id == role_id)).first()
                if row is None:
                    try:
                        conn.execute(_roles.insert().values(id=role_id, name=name))
                    except IntegrityError as exc:
                        raise ValueError(f"Role name {name!r} is already bound to another id.") from exc
                elif row.name != name:
                    raise ValueError(f"Role id {role_id} is already bound to {row.name!r}, not {name!r}.")

    # ------------------------------------------------------------------
    # Users -- queries
    # ------------------------------------------------------------------

    def find_user_by_id(self, user_id: int) -> User:
        with self._begin() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).first()
        if row is None:
            raise NotFound("User not found.")
        return _row_to_user(row)

    def find_user_by_email(self, email: str) -> User:
        """Look up a user by email, case-insensitively."""
        with self._begin() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).first()
        if row is None:
            raise NotFound("User not found.")
        return _row_to_user(row)

    def list_users(self, role_id: int | None = None) -> list[User]:
        query = _users.select().order_by(_users.c.id)
        if role_id is not None:
            query = query.where(_users.c.role_id == role_id)
        with self._begin() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Users -- writes
    # ------------------------------------------------------------------

    def create_user(self, name: str, email: str, secret_hash: str, role_id: int) -> User:
        """Insert a user and return it with its assigned id.

        The row is produced by INSERT ... SELECT FROM roles WHERE id = :role_id,
        so an unknown role inserts nothing and raises InvalidReference. A
        duplicate email violates the UNIQUE constraint and raises
        DuplicateEmail, whichever concurrent request loses the race.
        """
        now = _now_iso()
        source = select(
            literal(name, String),
            literal(normalize_email(email), String),
            literal(secret_hash, Text),
            _roles.c.id,
            literal(now, String),
            literal(now, String),
        ).where(_roles.c.id == role_id)
        stmt = (
            _users.insert()
            .from_select(["name", "email", "secret_hash", "role_id", "created_at", "updated_at"], source)
            .returning(*_users.c)
        )
        try:
            with self._begin() as conn:
                row = conn.execute(stmt).first()
                if row is None:
                    raise InvalidReference()
        except IntegrityError as exc:
            raise _integrity_error(exc) from exc
        return _row_to_user(row)

    def update_user(self, user_id: int, **fields) -> User:
        """Write the supplied fields only and return the updated user.

        Accepted fields: name, email, secret_hash, role_id. Unknown keys raise
        ValueError -- fail fast rather than silently dropping them.

        When role_id is supplied the UPDATE only matches if the role exists,
        so an invalid reference leaves the stored record untouched.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return self.find_user_by_id(user_id)

        values = dict(fields)
        if "email" in values:
            values["email"] = normalize_email(values["email"])
        values["updated_at"] = _now_iso()

        stmt = _users.update().where(_users.c.id == user_id)
        if "role_id" in values:
            stmt = stmt.where(select(_roles.c.id).where(_roles.c.id == values["role_id"]).exists())
        stmt = stmt.values(**values).returning(*_users.c)

        try:
            with self._begin() as conn:
                row = conn.execute(stmt).first()
                if row is None:
                    found = conn.execute(select(_users.c.id).where(_users.c.id == user_id)).first()
                    if found is None:
                        raise NotFound("User not found.")
                    raise InvalidReference()
        except IntegrityError as exc:
            raise _integrity_error(exc) from exc
        return _row_to_user(row)

    def delete_user(self, user_id: int) -> None:
        """Hard-delete a user. Raises NotFound if the id does not exist."""
        with self._begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        if result.rowcount == 0:
            raise NotFound("User not found.")

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name)


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        secret_hash=row.secret_hash,
        role_id=row.role_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
