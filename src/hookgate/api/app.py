"""FastAPI application for Hookgate."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hookgate.config import Settings
from hookgate.exceptions import (
    AuthenticationError,
    AuthorizationError,
    HookgateError,
    MalformedRequestError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from hookgate.logging import bind_context, clear_context, configure_logging, get_logger
from hookgate.service import HookgateService

from .router import router, set_service

logger = get_logger(__name__)

RequestHandler = Callable[[Request], Awaitable[Response]]


def _first_error_field(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "body"
    loc = [str(part) for part in errors[0].get("loc", ()) if part != "body"]
    return ".".join(loc) or "body"


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from hookgate.api import create_app

        app = create_app()
        # Run with: uvicorn hookgate.api:create_app --factory --reload
        ```
    """
    if settings is None:
        settings = Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create and initialize the HookgateService; close it on shutdown."""
        configure_logging(level=settings.log_level, format=settings.log_format)
        logger.info(
            "Starting Hookgate API",
            env=settings.env,
            log_level=settings.log_level,
            auth_enabled=settings.auth_enabled,
        )

        service = HookgateService.create(settings)
        await service.initialize()
        set_service(service)

        yield

        await service.close()
        set_service(None)
        logger.info("Hookgate API stopped")

    app = FastAPI(
        title="Hookgate",
        description="API key authentication and signed webhook fan-out.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add CORS middleware if enabled
    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
        )

    @app.middleware("http")
    async def request_log_context(request: Request, call_next: RequestHandler) -> Response:
        """Start each request with a fresh logging context."""
        clear_context()
        bind_context(method=request.method, path=request.url.path)
        return await call_next(request)

    # Register exception handlers
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report missing or malformed request fields as 400."""
        error = MalformedRequestError(_first_error_field(exc), "Missing or invalid field")
        logger.warning(
            "Malformed request",
            field=error.field,
            errors=len(exc.errors()),
            path=str(request.url),
        )
        return JSONResponse(status_code=400, content=error.to_dict())

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request, exc: AuthenticationError
    ) -> JSONResponse:
        """Handle authentication errors with 401 status."""
        logger.warning(
            "Authentication failed",
            reason=exc.reason,
            error=exc.message,
            path=str(request.url),
        )
        content = exc.to_dict()
        content["error"]["reason"] = exc.reason  # type: ignore[index]
        return JSONResponse(
            status_code=401,
            content=content,
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(
        request: Request, exc: AuthorizationError
    ) -> JSONResponse:
        """Handle authorization errors with 403 status."""
        logger.warning("Authorization failed", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=403, content=exc.to_dict())

    @app.exception_handler(RateLimitError)
    async def rate_limit_error_handler(request: Request, exc: RateLimitError) -> JSONResponse:
        """Handle rate limit errors with 429 status."""
        logger.warning("Rate limit exceeded", retry_after=exc.retry_after, path=str(request.url))
        return JSONResponse(
            status_code=429,
            content=exc.to_dict(),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(HookgateError)
    async def hookgate_error_handler(request: Request, exc: HookgateError) -> JSONResponse:
        """Handle all other Hookgate errors (storage, configuration) with 500 status."""
        logger.error("Hookgate error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())

    app.include_router(router, prefix="/api/v1")

    return app
