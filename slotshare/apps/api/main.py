from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from slotshare.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from slotshare.apps.api.routes.admin import router as admin_router
from slotshare.apps.api.routes.auth import router as auth_router
from slotshare.apps.api.routes.catalog import router as catalog_router
from slotshare.apps.api.routes.health import router as health_router
from slotshare.apps.api.routes.subscriptions import router as subscriptions_router
from slotshare.core.config import Settings, get_settings
from slotshare.core.errors import SlotShareError
from slotshare.core.logging import configure_logging
from slotshare.persistence.db import Database
from slotshare.services.subscriptions import SubscriptionService


logger = logging.getLogger(__name__)


def _bind_state(app: FastAPI, database: Database, settings: Settings) -> None:
    app.state.database = database
    app.state.settings = settings
    app.state.subscription_service = SubscriptionService(database, settings=settings)


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    """Build the HTTP app.

    A caller-supplied ``database`` is bound immediately and left open on shutdown;
    otherwise the lifespan opens one from ``settings.database_url`` and disposes it.
    """
    resolved = settings or get_settings()
    configure_logging(resolved.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned: Database | None = None
        if getattr(app.state, "database", None) is None:
            owned = Database(settings=resolved)
            _bind_state(app, owned, resolved)
        logger.info("app_started app_name=%s", resolved.app_name)
        try:
            yield
        finally:
            if owned is not None:
                await owned.dispose()
                app.state.database = None
            logger.info("app_stopped app_name=%s", resolved.app_name)

    app = FastAPI(title="SlotShare API", lifespan=lifespan)
    app.state.database = None
    if database is not None:
        _bind_state(app, database, resolved)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.debug(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(SlotShareError)
    async def _domain_exception_handler(request: Request, exc: SlotShareError):
        return await domain_exception_handler(request, exc)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(catalog_router)
    app.include_router(subscriptions_router)
    # Admin routes enforce role=admin per endpoint.
    app.include_router(admin_router)
    return app


app = create_app()
