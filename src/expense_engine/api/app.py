"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import httpx
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from expense_engine.api.routes import (
    approval_rules_router,
    approvals_router,
    companies_router,
    countries_router,
    dashboard_router,
    expenses_router,
    health_router,
    users_router,
)
from expense_engine.api.schemas import ValidationErrorResponse
from expense_engine.config import Settings, get_settings
from expense_engine.database import create_schema, dispose_db, init_db
from expense_engine.errors import (
    AuthenticationError,
    AuthorizationError,
    ExpenseEngineError,
    NotFoundError,
    UpstreamServiceError,
)
from expense_engine.services.cache import TTLCache

logger = logging.getLogger(__name__)

# Checked in order; the first matching base class wins.
ERROR_STATUS_CODES: list[tuple[type[ExpenseEngineError], int]] = [
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UpstreamServiceError, status.HTTP_502_BAD_GATEWAY),
]


def status_code_for(exc: ExpenseEngineError) -> int:
    """HTTP status for a business error; everything else is a bad request."""
    for error_class, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    init_db(app.state.settings.database_url)
    await create_schema()
    logger.info("Database ready")
    yield
    # Shutdown
    await app.state.http_client.aclose()
    await dispose_db()


def create_app(
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Expense Approval Engine API",
        description="Multi-tenant expense submission and conditional approval",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.http_client = http_client or httpx.AsyncClient(
        timeout=settings.http_timeout_seconds
    )
    app.state.rate_cache = TTLCache(settings.rate_cache_ttl_seconds)
    app.state.country_cache = TTLCache(settings.country_cache_ttl_seconds)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(ExpenseEngineError)
    async def engine_exception_handler(
        request: Request, exc: ExpenseEngineError
    ) -> JSONResponse:
        """Map business errors to structured responses."""
        code = status_code_for(exc)
        if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        content = {"detail": exc.message, "code": exc.code}
        if exc.details:
            content["context"] = jsonable_encoder(exc.details)
        return JSONResponse(status_code=code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed requests as 400."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ValidationErrorResponse(
                detail="Request validation failed",
                errors=jsonable_encoder(exc.errors()),
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(companies_router, prefix="/api/v1")
    app.include_router(users_router, prefix="/api/v1")
    app.include_router(expenses_router, prefix="/api/v1")
    app.include_router(approvals_router, prefix="/api/v1")
    app.include_router(approval_rules_router, prefix="/api/v1")
    app.include_router(countries_router, prefix="/api/v1")
    app.include_router(dashboard_router, prefix="/api/v1")

    return app
