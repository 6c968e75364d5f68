"""Database engine, sessions and schema bootstrap for Tangent."""

from __future__ import annotations

from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tangent.storage.schema import Base, TangentMetaRow

SCHEMA_VERSION = "1"

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=5000",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
)


def _apply_sqlite_pragmas(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
        cursor = dbapi_conn.cursor()
        for pragma in _SQLITE_PRAGMAS:
            cursor.execute(pragma)
        cursor.close()


def create_tangent_engine(
    db_path: str = ":memory:",
    *,
    url: str | None = None,
) -> Engine:
    """Build the engine behind a Workspace.

    ``db_path`` is a SQLite file or ``":memory:"``; *url* (any SQLAlchemy
    URL) wins when given. SQLite connections get WAL, a busy timeout and
    enforced foreign keys. An in-memory database lives on a single shared
    connection so worker threads see the caller's writes.
    """
    if url is not None:
        engine = create_engine(url)
    else:
        sqlite_kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if db_path == ":memory:":
            target = "sqlite://"
            sqlite_kwargs["poolclass"] = StaticPool
        else:
            target = f"sqlite:///{db_path}"
        engine = create_engine(target, **sqlite_kwargs)

    if engine.dialect.name == "sqlite":
        _apply_sqlite_pragmas(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Sessions keep loaded attributes after commit (``expire_on_commit=False``)."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create missing tables and stamp ``schema_version`` on a fresh database."""
    Base.metadata.create_all(engine)

    with create_session_factory(engine)() as session:
        stamped = session.execute(
            select(TangentMetaRow.value).where(TangentMetaRow.key == "schema_version")
        ).scalar_one_or_none()
        if stamped is None:
            session.add(TangentMetaRow(key="schema_version", value=SCHEMA_VERSION))
            session.commit()
