from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from fastapi import Depends
from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import settings

logger = logging.getLogger(__name__)

# execution option asking SQLite to take the write lock at BEGIN
WRITE_LOCK_OPTION = "sqlite_immediate"


class Base(DeclarativeBase):
    pass


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def make_engine(url: str, *, busy_timeout: float | None = None) -> Engine:
    """
    SQLite: transactions opened by ``transaction()`` start with BEGIN IMMEDIATE
    so writers serialize on the database lock; plain read sessions use a
    deferred BEGIN and never wait on each other. Foreign keys are enforced and
    ``lower()`` folds Unicode on every connection. Everything else runs at
    SERIALIZABLE.
    """
    if not _is_sqlite(url):
        return create_engine(url, isolation_level="SERIALIZABLE", pool_pre_ping=True)

    timeout = settings.SQLITE_BUSY_TIMEOUT_SECONDS if busy_timeout is None else busy_timeout
    engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": timeout})

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # take over BEGIN from pysqlite so we can emit our own
        dbapi_connection.isolation_level = None
        # the built-in lower() only folds ASCII; the generated search_key and
        # search queries both go through this one
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(WRITE_LOCK_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def _ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite" or not parsed.database or parsed.database == ":memory:":
        return
    Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)


def init_db(bind: Engine) -> None:
    # models must be imported so their tables are registered on Base.metadata
    from .models import entry, vote  # noqa: F401

    _ensure_sqlite_dir(str(bind.url))
    Base.metadata.create_all(bind)
    logger.info("schema ready on %s", bind.url.render_as_string(hide_password=True))


@contextmanager
def transaction(factory: sessionmaker[Session]) -> Iterator[Session]:
    """
    Yield a session inside one transaction.

    Commits when the block exits normally. Any exception, including
    KeyboardInterrupt and cancellation, rolls back before it propagates, and
    a failed commit rolls back as well. The session is always closed.
    """
    session = factory()
    try:
        session.connection(execution_options={WRITE_LOCK_OPTION: True})
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()


def ping(factory: sessionmaker[Session]) -> bool:
    try:
        with factory() as session:
            session.execute(text("SELECT 1"))
        return True
    except Exception:  # noqa: BLE001
        logger.warning("database ping failed", exc_info=True)
        return False


engine = make_engine(settings.DATABASE_URL)
SessionLocal = make_session_factory(engine)


def get_session_factory() -> sessionmaker[Session]:
    return SessionLocal


def get_db(factory: sessionmaker[Session] = Depends(get_session_factory)) -> Iterator[Session]:
    db = factory()
    try:
        yield db
    finally:
        db.close()
