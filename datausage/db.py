"""
Access to the DE database: user identities and synchronized usage rows.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy import Column, Float, ForeignKey, String, create_engine, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from datausage.exceptions import NoRowsError, TransactionFinalizedError

# Keeps IN (...) lists and multi-row VALUES under driver bind parameter limits.
LOOKUP_CHUNK_SIZE = 500


@dataclass
class UserInfo:
    id: str
    username: str


@dataclass
class UserDataUsage:
    id: str
    user_id: str
    username: str
    total: float
    time: float = field(default_factory=lambda: time.time())
    last_modified: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.username,
            "total": self.total,
            "time": self.time,
            "last_modified": self.last_modified,
        }


def chunked(items: list, size: int = LOOKUP_CHUNK_SIZE):
    for i in range(0, len(items), size):
        yield items[i : i + size]


def create_db_engine(database_url: str, schema: Optional[str] = None):
    """Create an engine; unqualified tables resolve to ``schema`` when given."""
    options = {"schema_translate_map": {None: schema}} if schema else {}
    return create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
        pool_recycle=1800,
        execution_options=options,
    )


class TxDatabase:
    """
    Accessor bound to a single open session transaction.

    Finalizing twice raises ``TransactionFinalizedError``, mirroring what
    database drivers report for a transaction that is already done.
    """

    def __init__(self, session: Session):
        self.session = session
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _finalize(self) -> None:
        if self._finalized:
            raise TransactionFinalizedError()
        self._finalized = True

    def commit(self) -> None:
        self._finalize()
        try:
            self.session.commit()
        finally:
            self.session.close()

    def rollback(self) -> None:
        self._finalize()
        try:
            self.session.rollback()
        finally:
            self.session.close()


def _dialect_insert(dialect_name: str):
    if dialect_name == "sqlite":
        return sqlite.insert
    return postgresql.insert


def begin_session(factory: sessionmaker) -> Session:
    """Open a session and force it to acquire a connection and begin."""
    session = factory()
    try:
        session.connection()
    except Exception:
        session.close()
        raise
    return session


class MetadataDatabase(TxDatabase):
    """DE database operations inside one transaction."""

    def get_user_info(self, username: str) -> UserInfo:
        row = self.session.execute(
            select(UserRow).where(UserRow.username == username)
        ).scalar_one_or_none()
        if row is None:
            raise NoRowsError(f"no user named {username}")
        return UserInfo(id=row.id, username=row.username)

    def ensure_users(self, usernames: Iterable[str]) -> None:
        """Create rows for any of ``usernames`` that do not exist yet."""
        wanted = sorted(set(usernames))
        if not wanted:
            return
        insert = _dialect_insert(self.session.get_bind().dialect.name)
        for chunk in chunked(wanted):
            stmt = insert(UserRow).values(
                [{"id": uuid.uuid4().hex, "username": username} for username in chunk]
            )
            self.session.execute(
                stmt.on_conflict_do_nothing(index_elements=[UserRow.username])
            )


class MetadataConnector:
    """
    SQLAlchemy-backed connection to the DE database. Accepts any SQLAlchemy URL
    (e.g., Postgres, or SQLite for tests).
    """

    def __init__(
        self,
        database_url: str,
        schema: Optional[str] = None,
        *,
        create_tables: bool = False,
    ):
        if not database_url:
            raise ValueError("db.uri is required for MetadataConnector")
        self.engine = create_db_engine(database_url, schema)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        # The DE schema is owned by its migrations; only local/test databases are created here.
        if create_tables:
            Base.metadata.create_all(self.engine)

    def pool_status(self) -> str:
        return self.engine.pool.status()

    def begin(self) -> MetadataDatabase:
        return MetadataDatabase(begin_session(self.Session))

    def latest_user_data_usage(self, username: str) -> Optional[UserDataUsage]:
        with self.Session() as session:
            stmt = (
                select(UserDataUsageRow, UserRow.username)
                .join(UserRow, UserRow.id == UserDataUsageRow.user_id)
                .where(UserRow.username == username)
                .order_by(UserDataUsageRow.time.desc())
                .limit(1)
            )
            found = session.execute(stmt).first()
            if not found:
                return None
            row, name = found
            return to_user_data_usage(row, name)


def to_user_data_usage(row: "UserDataUsageRow", username: str) -> UserDataUsage:
    return UserDataUsage(
        id=row.id,
        user_id=row.user_id,
        username=username,
        total=row.total,
        time=row.time,
        last_modified=row.last_modified,
    )


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    username = Column(String, nullable=False, unique=True, index=True)


class UserDataUsageRow(Base):
    __tablename__ = "user_data_usage"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    total = Column(Float, nullable=False)
    time = Column(Float, nullable=False, index=True)
    last_modified = Column(Float, nullable=False)
