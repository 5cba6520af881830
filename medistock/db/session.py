# medistock/db/session.py
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from medistock.core.config import settings


def _is_sqlite(url: str) -> bool:
    return str(url).startswith("sqlite")


def enable_sqlite_savepoints(eng: Engine) -> Engine:
    """
    pysqlite opens transactions lazily and breaks SAVEPOINT handling;
    take over BEGIN so begin_nested() works (bulk operations need it).
    """

    @event.listens_for(eng, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return eng


def build_engine(url: str, **kwargs) -> Engine:
    if _is_sqlite(url):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        return enable_sqlite_savepoints(
            create_engine(url, echo=settings.SQL_ECHO, future=True, **kwargs))

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=280,
        pool_size=10,
        max_overflow=20,
        echo=settings.SQL_ECHO,
        future=True,
        **kwargs,
    )


engine: Engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)
