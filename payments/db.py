"""Database setup, session utilities and SQL dialect helpers."""
from __future__ import annotations

import re
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import CursorResult
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql.elements import TextClause

from .settings import settings

POSTGRES = "postgresql"
SQLITE = "sqlite"

_connect_args = (
    {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
)
engine = create_engine(settings.database_url, connect_args=_connect_args)

if engine.dialect.name == SQLITE:

    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record) -> None:
        # pysqlite must not issue BEGIN itself or SAVEPOINT breaks
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(connection) -> None:
        connection.exec_driver_sql("BEGIN")


SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

_PLACEHOLDER = re.compile(r"\$([0-9]+)")


@contextmanager
def get_session() -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dialect_name(session: Session) -> str:
    """Return the SQLAlchemy dialect name of the session's connection."""
    return session.get_bind().dialect.name


def prepare(template: str, dialect: str) -> TextClause:
    """Translate a ``$N`` query template into a statement for ``dialect``.

    ``{coalesce}`` in the template becomes the dialect's null-coalescing
    function. Positional placeholders become the named binds ``:p1, :p2 ...``.
    """
    function = "COALESCE" if dialect == POSTGRES else "IFNULL"
    rendered = template.replace("{coalesce}", function)
    return text(_PLACEHOLDER.sub(r":p\1", rendered))


def execute(session: Session, template: str, *params: Any) -> CursorResult:
    """Run a ``$N`` query template with positional parameters."""
    statement = prepare(template, dialect_name(session))
    binds = {f"p{index}": value for index, value in enumerate(params, start=1)}
    return session.execute(statement, binds)


__all__ = [
    "POSTGRES",
    "SQLITE",
    "SessionLocal",
    "dialect_name",
    "engine",
    "execute",
    "get_session",
    "prepare",
]
