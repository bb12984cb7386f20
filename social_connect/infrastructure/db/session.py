from collections.abc import Callable, Generator
from time import perf_counter

from sqlalchemy import create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from social_connect.core.config import settings
from social_connect.infrastructure.observability.metrics import observe_db_query

SessionFactory = Callable[[], Session]


def build_engine(database_uri: str) -> Engine:
    connect_args = {"check_same_thread": False} if database_uri.startswith("sqlite") else {}
    built = create_engine(database_uri, pool_pre_ping=True, connect_args=connect_args)
    event.listen(built, "before_cursor_execute", _before_cursor_execute)
    event.listen(built, "after_cursor_execute", _after_cursor_execute)
    return built


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_started_at_stack", []).append(perf_counter())


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    stack = conn.info.get("query_started_at_stack", [])
    if not stack:
        return
    started_at = stack.pop(-1)
    observe_db_query(perf_counter() - started_at, operation="sync_sql")


engine = build_engine(settings.sqlalchemy_database_uri)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
