"""FastAPI application for the priceledger JSON API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from priceledger.core.logging import configure_logging
from priceledger.db.connection import close_db
from priceledger.exceptions import ConflictError, NotFoundError, PricingError, ValidationError
from priceledger.web.routes import change_logs, exchange_rates, prices

logger = structlog.get_logger()


# Request Logging Middleware
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()

        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            logger.info(
                "request_completed",
                status_code=response.status_code,
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            logger.error("request_failed", error=str(exc))
            raise


ERROR_STATUS: dict[type[PricingError], int] = {
    ConflictError: 409,
    ValidationError: 422,
    NotFoundError: 404,
}


async def pricing_error_handler(request: Request, exc: PricingError) -> JSONResponse:
    """Map engine errors to HTTP status codes."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        400,
    )
    logger.warning(
        "pricing_error",
        error_type=type(exc).__name__,
        status_code=status_code,
        detail=str(exc),
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_db()


def create_app() -> FastAPI:
    """Build the API app with middleware, error handlers and routers."""
    app = FastAPI(
        title="priceledger",
        description="Effective-dated multi-currency price versioning API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(PricingError, pricing_error_handler)

    app.include_router(prices.router)
    app.include_router(change_logs.router)
    app.include_router(exchange_rates.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


# Initialize structured logging
configure_logging()
app = create_app()
