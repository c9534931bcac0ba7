import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, text

from .settings import settings

logger = logging.getLogger(__name__)


class Database:
    """Owns the SQLAlchemy engine for one process.

    Built by the entry point (the FastAPI lifespan or the refresh job) and
    handed to whoever needs sessions; nothing in the package keeps a global
    engine around.
    """

    def __init__(self, url: str | None = None, **engine_kwargs) -> None:
        self.url = url or settings.database_url
        if self.url.startswith("sqlite"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine_kwargs.setdefault("echo", settings.sql_echo)
        self.engine: Engine = create_engine(self.url, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            # SQLite ignores ON DELETE rules unless asked per connection
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

    def create_all(self) -> None:
        from . import models  # noqa: F401 - registers the tables on SQLModel.metadata

        SQLModel.metadata.create_all(self.engine)
        logger.info("Database tables ensured")

    def check_connection(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    @contextmanager
    def session(self) -> Iterator[Session]:
        with Session(self.engine) as session:
            yield session

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_session(request: Request) -> Iterator[Session]:
    with get_database(request).session() as session:
        yield session
