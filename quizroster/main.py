from __future__ import annotations

from contextlib import asynccontextmanager
from time import perf_counter
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from quizroster import metrics
from quizroster.config import DEFAULT_AUTH_SECRET_KEY, get_settings
from quizroster.errors import Internal, RateLimited, RosterError
from quizroster.logger import configure_logging, get_logger
from quizroster.routes import events, groups, invites, join, quizzes, system
from quizroster.security import (
    SESSION_COOKIE_NAME,
    decode_session_token,
    token_from_authorization,
)

settings = get_settings()
configure_logging(settings.log_level, settings.log_file)
logger = get_logger("api")

_PUBLIC_PATHS = {"/health", "/version", "/metrics", "/docs", "/openapi.json"}


def _is_public(request: Request) -> bool:
    path = request.url.path
    if path in _PUBLIC_PATHS:
        return True
    # Invite links are opened from email before the student has an account.
    return request.method == "GET" and path.startswith("/invites/")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("app.startup", "Starting app", env=settings.app_env, version=settings.app_version)
    if not settings.is_production:
        if settings.auth_secret_key == DEFAULT_AUTH_SECRET_KEY:
            logger.warning(
                "security.defaults",
                "AUTH_SECRET_KEY is using a default placeholder; set a unique secret before production",
            )
        if not settings.site_base_url:
            logger.warning(
                "config.base_url",
                "SITE_BASE_URL is unset; join links are derived from request headers",
            )
    yield
    logger.info("app.shutdown", "Shutting down app")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


@app.exception_handler(RosterError)
async def roster_error_handler(request: Request, exc: RosterError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code >= 500:
        logger.error(
            "request.internal",
            exc.message,
            method=request.method,
            path=request.url.path,
            code=exc.code,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    del request
    error = Internal("Internal server error")
    logger.error(
        "request.unhandled",
        "Unhandled exception",
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.middleware("http")
async def auth_guard(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    token = token_from_authorization(request.headers.get("authorization"))
    if not token:
        token = request.cookies.get(SESSION_COOKIE_NAME, "")
    principal = decode_session_token(token, settings.auth_secret_key) if token else None
    request.state.principal = principal

    if principal is None and not _is_public(request):
        return JSONResponse(
            status_code=401,
            content={"detail": "Authentication required", "code": "unauthorized"},
        )
    return await call_next(request)


@app.middleware("http")
async def request_logging(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = request.headers.get("x-request-id") or str(uuid4())
    client: Optional[str] = None
    if request.client:
        client = request.client.host

    start = perf_counter()
    with logger.context(request_id=request_id):
        logger.info(
            "request.start",
            "Started",
            method=request.method,
            path=request.url.path,
            client=client,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (perf_counter() - start) * 1000
            logger.exception(
                "request.error",
                "Failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 1),
                error_type=type(exc).__name__,
            )
            raise

        duration = perf_counter() - start
        route = request.scope.get("route")
        route_path = getattr(route, "path", "unmatched")
        logger.info(
            "request.complete",
            "Completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 1),
        )
        if settings.metrics_enabled:
            metrics.observe_http_request(
                method=request.method,
                path=route_path,
                status=response.status_code,
                duration_seconds=duration,
            )

    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(system.router)
app.include_router(groups.router)
app.include_router(join.router)
app.include_router(invites.router)
app.include_router(quizzes.router)
app.include_router(events.router)
