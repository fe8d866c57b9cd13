"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
KeyStore is the repository for the settings table (signing keys and session
secret); UserStore is the repository for users, groups and memberships.
_row_to_user / _row_to_group are the mappers. Route and token code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Schema compatibility:
  Table and column names match the Wiki.js schema (settings, users, groups,
  "userGroups", "isActive", "providerKey", ...). Pointing DATABASE_URL at a
  Wiki.js database lets this service sign tokens Wiki.js accepts, using the
  keys Wiki.js generated. create_all() only creates tables that are missing.

Settings records:
  certs          {"public": PEM, "private": PEM, "encrypted": bool}
  sessionSecret  {"v": hex}
  "encrypted" is optional on read -- records written by Wiki.js or older
  generators lack it, and load_key_material() falls back to the PEM header.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
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

from auth.errors import KeyMaterialError
from auth.models import Group, KeyMaterial, User, is_encrypted_pem

logger = logging.getLogger("authservice.store")

CERTS_KEY = "certs"
SESSION_SECRET_KEY = "sessionSecret"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_settings = Table(
    "settings",
    _metadata,
    Column("key", String(255), primary_key=True),
    Column("value", JSON, nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("isActive", Boolean, nullable=False, default=True),
    Column("isVerified", Boolean, nullable=False, default=True),
    Column("providerKey", String(255), nullable=False, default="local"),
    Column("createdAt", String(32), nullable=False),
    Column("updatedAt", String(32), nullable=False),
)

_groups = Table(
    "groups",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("createdAt", String(32), nullable=False),
    Column("updatedAt", String(32), nullable=False),
)

_user_groups = Table(
    "userGroups",
    _metadata,
    Column("userId", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("groupId", Integer, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    PRAGMAs are per-connection in SQLite, so they are set from the connect
    event rather than once. foreign_keys makes the userGroups ON DELETE
    CASCADE actually fire.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def create_db_engine(db_url: str) -> Engine:
    """Create an engine and make sure the auth tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Key material repository
# ---------------------------------------------------------------------------


class KeyStore:
    """Repository for the settings table.

    Reads are never cached: every call hits the database so a key rotation is
    visible to the very next request.

    Usage:
        keys = KeyStore("sqlite:///authservice.db")
        material = keys.load_key_material()
        keys.close()
    """

    def __init__(self, db_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("KeyStore needs either db_url or engine.")
            engine = create_db_engine(db_url)
        self.engine: Engine = engine

    def get_setting(self, key: str) -> dict | None:
        """Return the decoded JSON value for a settings key, or None if absent."""
        with self.engine.connect() as conn:
            row = conn.execute(select(_settings.c.value).where(_settings.c.key == key)).fetchone()
        if row is None:
            return None
        value = row.value
        # Some drivers hand JSONB back as text.
        if isinstance(value, str):
            value = json.loads(value)
        return value

    def list_setting_keys(self) -> list[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_settings.c.key).order_by(_settings.c.key)).fetchall()
        return [r.key for r in rows]

    def save_key_material(self, material: KeyMaterial, session_secret: str) -> None:
        """Upsert `certs` and `sessionSecret` in a single transaction.

        Both records land or neither does. A public key without its private
        key (or an encrypted private key without the secret that opens it)
        must never be observable in the database.
        """
        certs = {
            "public": material.public_key,
            "private": material.private_key,
            "encrypted": material.encrypted,
        }
        with self.engine.begin() as conn:
            _upsert_setting(conn, CERTS_KEY, certs)
            _upsert_setting(conn, SESSION_SECRET_KEY, {"v": session_secret})

    def load_session_secret(self) -> str | None:
        record = self.get_setting(SESSION_SECRET_KEY)
        if not record:
            return None
        return record.get("v") or None

    def load_public_key(self) -> str:
        """Return the current public PEM. Raises KeyMaterialError if missing."""
        certs = self.get_setting(CERTS_KEY)
        if not certs or not certs.get("public"):
            raise KeyMaterialError("certs record missing or has no public key")
        return certs["public"]

    def load_key_material(self) -> KeyMaterial:
        """Return the full key pair, with the passphrase filled in when encrypted.

        Raises KeyMaterialError when `certs` is missing or incomplete, or when
        the private key is encrypted and `sessionSecret` is missing -- in that
        case the private key is permanently unusable.
        """
        certs = self.get_setting(CERTS_KEY)
        if not certs or not certs.get("public") or not certs.get("private"):
            raise KeyMaterialError("certs record missing or incomplete")

        flag = certs.get("encrypted")
        encrypted = bool(flag) or is_encrypted_pem(certs["private"])
        if flag is None:
            logger.debug("certs record has no encrypted flag; PEM header says encrypted=%s", encrypted)
        elif encrypted and not flag:
            logger.warning("certs record says encrypted=false but the private key PEM is encrypted")

        passphrase = None
        if encrypted:
            passphrase = self.load_session_secret()
            if not passphrase:
                raise KeyMaterialError("private key is encrypted but sessionSecret is missing")

        return KeyMaterial(
            public_key=certs["public"],
            private_key=certs["private"],
            encrypted=encrypted,
            passphrase=passphrase,
        )

    def close(self) -> None:
        self.engine.dispose()


def _upsert_setting(conn: Connection, key: str, value: dict) -> None:
    """UPDATE-then-INSERT keyed by name. Portable across SQLite and Postgres."""
    result = conn.execute(_settings.update().where(_settings.c.key == key).values(value=value))
    if result.rowcount == 0:
        conn.execute(_settings.insert().values(key=key, value=value))


# ---------------------------------------------------------------------------
# Identity repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Group and membership entities.

    Usage:
        store = UserStore("sqlite:///authservice.db")
        store.create_user(User(email="a@example.com", name="A", hashed_password=hash_password("secret")))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("UserStore needs either db_url or engine.")
            engine = create_db_engine(db_url)
        self.engine: Engine = engine

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    name=user.name,
                    password=user.hashed_password or "",
                    isActive=user.is_active,
                    isVerified=user.is_verified,
                    providerKey=user.provider_key,
                    createdAt=now,
                    updatedAt=now,
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_local_by_email(self, email: str) -> User | None:
        """Look up a password-login user (providerKey = 'local') by email."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.email == email) & (_users.c.providerKey == "local"))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by email."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def set_password(self, email: str, hashed_password: str) -> bool:
        return self._update_user(email, password=hashed_password)

    def set_active(self, email: str, active: bool) -> bool:
        return self._update_user(email, isActive=active)

    def _update_user(self, email: str, **values) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.email == email).values(updatedAt=_now_iso(), **values)
            )
        return result.rowcount > 0

    def delete_user(self, email: str) -> bool:
        """Delete a user and their memberships. Returns False if not found."""
        with self.engine.begin() as conn:
            user_id = conn.execute(select(_users.c.id).where(_users.c.email == email)).scalar()
            if user_id is None:
                return False
            conn.execute(_user_groups.delete().where(_user_groups.c.userId == user_id))
            conn.execute(_users.delete().where(_users.c.id == user_id))
        return True

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def create_group(self, name: str) -> int:
        """Insert a group and return its ID. Raises IntegrityError on duplicate name."""
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_groups.insert().values(name=name, createdAt=now, updatedAt=now))
            return result.inserted_primary_key[0]

    def get_group(self, name: str) -> Group | None:
        with self.engine.connect() as conn:
            row = conn.execute(_groups.select().where(_groups.c.name == name)).fetchone()
        return _row_to_group(row) if row is not None else None

    def list_groups(self) -> list[Group]:
        with self.engine.connect() as conn:
            rows = conn.execute(_groups.select().order_by(_groups.c.id)).fetchall()
        return [_row_to_group(r) for r in rows]

    def delete_group(self, name: str) -> bool:
        with self.engine.begin() as conn:
            group_id = conn.execute(select(_groups.c.id).where(_groups.c.name == name)).scalar()
            if group_id is None:
                return False
            conn.execute(_user_groups.delete().where(_user_groups.c.groupId == group_id))
            conn.execute(_groups.delete().where(_groups.c.id == group_id))
        return True

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def add_membership(self, user_id: int, group_id: int) -> bool:
        """Add a user to a group. Returns False if the membership already existed."""
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(_user_groups.c.userId).where(
                    (_user_groups.c.userId == user_id) & (_user_groups.c.groupId == group_id)
                )
            ).fetchone()
            if exists is not None:
                return False
            conn.execute(_user_groups.insert().values(userId=user_id, groupId=group_id))
        return True

    def remove_membership(self, user_id: int, group_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _user_groups.delete().where((_user_groups.c.userId == user_id) & (_user_groups.c.groupId == group_id))
            )
        return result.rowcount > 0

    def get_group_ids(self, user_id: int) -> list[int]:
        """Group Resolver: IDs of every group the user belongs to (may be empty).

        Ordered by group ID for stable output; callers must treat it as a set.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_groups.c.id)
                .join(_user_groups, _groups.c.id == _user_groups.c.groupId)
                .where(_user_groups.c.userId == user_id)
                .order_by(_groups.c.id)
            ).fetchall()
        return [r.id for r in rows]

    def get_groups_for_user(self, user_id: int) -> list[Group]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _groups.select()
                .join(_user_groups, _groups.c.id == _user_groups.c.groupId)
                .where(_user_groups.c.userId == user_id)
                .order_by(_groups.c.id)
            ).fetchall()
        return [_row_to_group(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.password or None,
        is_active=bool(row.isActive),
        is_verified=bool(row.isVerified),
        provider_key=row.providerKey,
        created_at=str(row.createdAt) if row.createdAt is not None else None,
    )


def _row_to_group(row) -> Group:
    return Group(id=row.id, name=row.name)
