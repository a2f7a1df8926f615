"""FastAPI application entry point."""

import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from pos_promotions import models  # noqa: F401  (registers tables on Base.metadata)
from pos_promotions.api.routes import api_router
from pos_promotions.core.config import settings
from pos_promotions.core.rate_limit import limiter
from pos_promotions.core.responses import error_response
from pos_promotions.db.base import Base
from pos_promotions.db.session import SessionLocal, engine
from pos_promotions.services.promotion_service import (
    DuplicatePromotionCodeError,
    InvoiceNotFoundError,
    InvoiceStateError,
    PromotionError,
    PromotionNotFoundError,
    PromotionRuleError,
)

APP_VERSION = "1.0.0"


class JSONFormatter(logging.Formatter):
    """One JSON object per log line, for production log shipping."""

    def format(self, record):
        return json.dumps({
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        })


# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        # Skip logging for health checks and docs
        if request.url.path in ["/health", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            raise

        process_time = time.time() - start_time
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {process_time:.3f}s - Client: {client_ip}"
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting POS Promotions API")

    # Create tables if they don't exist (for SQLite dev)
    # In production with PostgreSQL, use Alembic migrations
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    yield

    logger.info("Shutting down POS Promotions API")


app = FastAPI(
    title="POS Promotions API",
    description="Promotion codes for the restaurant POS: management, validation and redemption",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting setup
app.state.limiter = limiter


# ---- Exception handlers: failures use the same response envelope ----

PROMOTION_ERROR_STATUS = {
    PromotionNotFoundError: status.HTTP_404_NOT_FOUND,
    InvoiceNotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicatePromotionCodeError: status.HTTP_409_CONFLICT,
    InvoiceStateError: status.HTTP_409_CONFLICT,
    PromotionRuleError: status.HTTP_400_BAD_REQUEST,
}


@app.exception_handler(PromotionError)
async def promotion_error_handler(request: Request, exc: PromotionError):
    status_code = PROMOTION_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return error_response(str(exc), status_code=status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(str(exc.detail), status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        errors.append(f"{field}: {error.get('msg')}" if field else error.get("msg", ""))
    return error_response(
        "Invalid request data",
        errors=errors,
        status_code=422,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(
        f"Rate limit exceeded: {exc.detail}",
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return error_response(
        "Internal server error",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


# Security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - added last so it runs first (Starlette LIFO order)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
    max_age=600,  # Cache preflight for 10 minutes
)

# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Basic liveness check endpoint."""
    return {"status": "healthy", "version": APP_VERSION}


@app.get("/health/ready")
def readiness_check():
    """Readiness probe with database connectivity check."""
    database = "unknown"
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        database = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database = "unhealthy"
    finally:
        db.close()

    return {
        "status": "ready" if database == "healthy" else "degraded",
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {"database": database},
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "POS Promotions API",
        "docs": "/docs",
        "health": "/health",
    }
