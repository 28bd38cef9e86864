"""FastAPI application factory for the serverless functions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.exceptions import HTTPException as StarletteHTTPException

from servicegrid.config.logging import setup_logging
from servicegrid.config.settings import get_settings
from servicegrid.storage.database import get_db_engine
from servicegrid.web.auth.webhook import router as webhook_router
from servicegrid.web.envelope import error_response, ok, validation_message
from servicegrid.web.middleware import RateLimitMiddleware, RequestIDMiddleware
from servicegrid.web.routes.billing import router as billing_router
from servicegrid.web.routes.customers import router as customers_router
from servicegrid.web.routes.dashboard import router as dashboard_router
from servicegrid.web.routes.jobs import router as jobs_router
from servicegrid.web.routes.session import router as session_router
from servicegrid.web.routes.team import router as team_router

if TYPE_CHECKING:
    from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type", "x-business-id"]


def create_app() -> FastAPI:
    """Create and configure the functions application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="ServiceGrid Functions",
        description="Tenant-scoped edge functions for the ServiceGrid data layer",
        version="0.1.0",
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return error_response(exc.status_code, str(exc.detail), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        message = validation_message(exc.errors())
        logger.info("request_invalid", path=request.url.path, error=message)
        return error_response(400, message)

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return error_response(400, validation_message(exc.errors()))

    # Middleware (order matters: last added runs first)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        max_violations=settings.rate_limit_max_violations,
        block_seconds=settings.rate_limit_block_seconds,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=CORS_ALLOW_HEADERS,
    )
    app.add_middleware(RequestIDMiddleware)

    # Clerk webhooks (public, signature-verified internally)
    app.include_router(webhook_router)

    @app.get("/functions/v1/health")
    async def health_check(engine: AsyncEngine = Depends(get_db_engine)) -> dict[str, object]:
        from servicegrid.web.health import check_health

        return ok(await check_health(engine))

    # Tenant-scoped functions (bearer token required, resolved per route)
    for router in (
        session_router,
        customers_router,
        jobs_router,
        billing_router,
        dashboard_router,
        team_router,
    ):
        app.include_router(router)

    logger.info("app_created", auth_mode=settings.auth_mode)
    return app
