import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def make_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite gets writer-serialized transactions.

    pysqlite defers BEGIN until the first write, which lets two spins read the
    same counts before either inserts. Emitting BEGIN IMMEDIATE ourselves takes
    the database write lock up front, the SQLite equivalent of the row locks
    used on PostgreSQL.
    """
    if url.startswith("sqlite"):
        eng = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(eng, "connect")
        def _sqlite_connect(dbapi_conn, _record):
            dbapi_conn.isolation_level = None
            dbapi_conn.execute("PRAGMA foreign_keys=ON")

        @event.listens_for(eng, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return eng
    return create_engine(url, echo=echo, pool_pre_ping=True)


engine = make_engine(settings.database_url, echo=settings.db_echo)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Scoped transaction: commit on normal exit, roll back on any exception.

    A transaction already open on ``db`` is rolled back first, so the scope
    starts from a fresh snapshot. Uncommitted changes made on the session
    before entering are discarded.
    """
    if db.in_transaction():
        logger.debug("atomic: rolling back transaction opened before the scope")
        db.rollback()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def ping(db: Session) -> bool:
    return db.execute(text("select 1")).scalar() == 1
