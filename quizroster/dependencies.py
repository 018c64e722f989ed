from __future__ import annotations

from functools import lru_cache
from time import perf_counter
from typing import Any, AsyncIterator
from uuid import uuid4

from fastapi import Depends, Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from quizroster.config import Settings, get_settings
from quizroster.errors import Forbidden, Unauthorized
from quizroster.logger import get_logger
from quizroster.security import Principal
from quizroster.services.notifications import LogNotifier, Notifier
from quizroster.services.rate_limits import FixedWindowRateLimiter
from quizroster.services.users import IdentityProvider, UserDirectory

_DB_LOGGER = get_logger("db")
_DB_SESSION_LOGGER = get_logger("db.session")
_QUERY_CONTEXT_STACK_KEY = "quizroster_query_stack"


def _truncate(value: str, max_length: int) -> str:
    if max_length <= 0 or len(value) <= max_length:
        return value
    if max_length <= 3:
        return value[:max_length]
    return f"{value[: max_length - 3]}..."


def _format_sql(statement: Any, max_length: int) -> str:
    return _truncate(" ".join(str(statement or "").split()), max_length)


def _get_query_stack(connection: Any) -> list[dict[str, Any]]:
    stack = connection.info.get(_QUERY_CONTEXT_STACK_KEY)
    if isinstance(stack, list):
        return stack
    stack = []
    connection.info[_QUERY_CONTEXT_STACK_KEY] = stack
    return stack


def _install_query_logging(engine: AsyncEngine, *, settings: Settings) -> None:
    sync_engine = engine.sync_engine
    if getattr(sync_engine, "_quizroster_query_logging", False):
        return
    setattr(sync_engine, "_quizroster_query_logging", True)

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _before_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: Any,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        del cursor, parameters, context
        _get_query_stack(conn).append(
            {"start": perf_counter(), "statement": statement, "executemany": executemany}
        )

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _after_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: Any,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        del statement, context, executemany
        stack = _get_query_stack(conn)
        query_context = stack.pop() if stack else {}
        duration_ms = (perf_counter() - float(query_context.get("start", perf_counter()))) * 1000
        sql = _format_sql(query_context.get("statement"), settings.log_sql_max_length)

        if settings.log_db_queries:
            fields: dict[str, Any] = {
                "duration_ms": round(duration_ms, 1),
                "rowcount": getattr(cursor, "rowcount", None),
                "sql": sql,
            }
            if settings.log_db_query_params:
                fields["params"] = _truncate(repr(parameters), settings.log_sql_max_length)
            _DB_LOGGER.debug("query.execute", "Executed SQL statement", **fields)

        if duration_ms >= 200:
            _DB_LOGGER.warning(
                "query.slow",
                "Slow SQL statement",
                duration_ms=round(duration_ms, 1),
                sql=sql,
            )

    @event.listens_for(sync_engine, "handle_error")
    def _handle_error(exception_context: Any) -> None:
        connection = exception_context.connection
        if connection is not None:
            stack = _get_query_stack(connection)
            if stack:
                stack.pop()
        _DB_LOGGER.error(
            "query.error",
            "SQL execution failed",
            error_type=type(exception_context.original_exception).__name__,
            error=str(exception_context.original_exception),
            sql=_format_sql(exception_context.statement, settings.log_sql_max_length),
        )


def _install_sqlite_transactions(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINTs nest inside the real transaction."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        del connection_record
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, settings: Settings, **engine_kwargs: Any) -> AsyncEngine:
    engine = create_async_engine(database_url, pool_pre_ping=True, **engine_kwargs)
    if database_url.startswith("sqlite"):
        _install_sqlite_transactions(engine)
    _install_query_logging(engine, settings=settings)
    return engine


@lru_cache
def get_engine(database_url: str) -> AsyncEngine:
    return build_engine(database_url, get_settings())


@lru_cache
def get_sessionmaker(database_url: str) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=get_engine(database_url), expire_on_commit=False)


async def get_db_session(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[AsyncSession]:
    sessionmaker = get_sessionmaker(settings.database_url)
    session_id = uuid4().hex[:12]
    start = perf_counter()

    with _DB_SESSION_LOGGER.context(db_session_id=session_id):
        async with sessionmaker() as session:
            try:
                yield session
            except Exception as exc:
                if session.in_transaction():
                    await session.rollback()
                    _DB_SESSION_LOGGER.warning(
                        "session.rollback",
                        "Rolled back DB transaction after error",
                        error_type=type(exc).__name__,
                    )
                raise
            finally:
                _DB_SESSION_LOGGER.debug(
                    "session.close",
                    "Closed DB session",
                    duration_ms=round((perf_counter() - start) * 1000, 1),
                )


def get_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise Unauthorized("Authentication required")
    return principal


def require_mentor(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_mentor:
        raise Forbidden("Mentor role required")
    return principal


def require_student(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_student:
        raise Forbidden("Student role required")
    return principal


@lru_cache
def get_bulk_invite_limiter() -> FixedWindowRateLimiter:
    settings = get_settings()
    return FixedWindowRateLimiter(
        max_requests=settings.bulk_invite_rate_limit,
        window_seconds=settings.bulk_invite_window_seconds,
    )


def get_identity_provider() -> IdentityProvider:
    return UserDirectory()


def get_notifier() -> Notifier:
    return LogNotifier()


def get_base_url(request: Request, settings: Settings = Depends(get_settings)) -> str:
    if settings.site_base_url:
        return settings.site_base_url.rstrip("/")
    scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}"
