# app/db/session.py
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings


def enable_sqlite_savepoints(eng: Engine) -> None:
    """
    pysqlite starts transactions lazily and breaks SAVEPOINT handling.
    Take over BEGIN so nested transactions behave like on MySQL.
    """

    @event.listens_for(eng, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(db_uri: str, *, echo: bool = False) -> Engine:
    if db_uri.startswith("sqlite"):
        eng = create_engine(
            db_uri,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo,
            future=True,
        )
        enable_sqlite_savepoints(eng)
        return eng

    return create_engine(
        db_uri,
        pool_pre_ping=True,
        pool_recycle=280,
        pool_size=10,
        max_overflow=20,
        echo=echo,
        future=True,
    )


engine: Engine = build_engine(settings.SQLALCHEMY_DATABASE_URI, echo=settings.SQL_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    One all-or-nothing unit of work.
    Opens a transaction, or a SAVEPOINT when the session already has one.
    """
    if db.in_transaction():
        with db.begin_nested():
            yield db
    else:
        with db.begin():
            yield db
