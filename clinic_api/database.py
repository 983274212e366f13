"""Database engine and session setup.

Production Pattern:
- One engine and session factory per process, passed to the services
- Automatic table creation on startup
- Writers serialised on SQLite (BEGIN IMMEDIATE) so that check-then-write
  sequences run atomically
"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinic_api.api.database_models import Base


def _is_memory_sqlite(database_url: str) -> bool:
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def _use_immediate_transactions(engine: Engine) -> None:
    """
    Make every SQLite transaction take the write lock up front.

    pysqlite's own transaction handling is disabled so that SQLAlchemy's
    BEGIN is the one sent to the database.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """
    Owns the engine and session factory.

    Pattern: Thin wrapper around SQLAlchemy, injected into every service.
    """

    def __init__(self, database_url: str):
        """
        Initialize database connection and create tables.

        Args:
            database_url: SQLAlchemy connection string
        """
        engine_kwargs = {"pool_pre_ping": True}
        if make_url(database_url).get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if _is_memory_sqlite(database_url):
                # Single shared connection, otherwise each thread sees an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            _use_immediate_transactions(self.engine)

        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def dispose(self):
        """Close all pooled connections. Call during application shutdown."""
        self.engine.dispose()
