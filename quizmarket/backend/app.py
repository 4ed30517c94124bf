"""
QuizMarket Attempt Service
FastAPI application factory and configuration
"""

import logging
import time

from fastapi import FastAPI, Request, status, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

# Import API routers
from .api import auth, quiz_attempts, rankings

from .database.connection import check_database_health
from .exceptions import AppException
from ..config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

SECURITY_HEADERS = [
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"DENY"),
    (b"x-xss-protection", b"1; mode=block"),
]


class RequestContextMiddleware:
    """Middleware to add request timing and security headers"""

    def __init__(self, app, log_requests: bool = False):
        self.app = app
        self.log_requests = log_requests

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                process_time = time.time() - start_time
                message["headers"] = list(message.get("headers", []))
                message["headers"].append(
                    (b"x-process-time", f"{process_time:.6f}".encode())
                )
                message["headers"].extend(SECURITY_HEADERS)
            await send(message)

        await self.app(scope, receive, send_wrapper)

        if self.log_requests:
            logger.info(
                f"{scope['method']} {scope['path']} -> {status_code} "
                f"in {(time.time() - start_time) * 1000:.1f}ms"
            )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""

    settings = get_settings()

    app = FastAPI(
        title="QuizMarket Attempt API",
        description="Quiz attempt lifecycle, scoring and abuse protection",
        version=settings.VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        default_response_class=JSONResponse
    )

    # Add custom middleware
    app.add_middleware(RequestContextMiddleware, log_requests=settings.ENABLE_REQUEST_LOGGING)

    # Add compression middleware
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts,
        allow_credentials="*" not in settings.allowed_hosts,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-process-time"]
    )

    # Exception handlers
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        """Handle custom application exceptions"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error_code,
                "message": exc.message,
                "details": exc.details,
                "timestamp": time.time()
            }
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors"""
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
                "timestamp": time.time()
            }
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "HTTP_ERROR",
                "message": exc.detail,
                "timestamp": time.time()
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.exception(f"Unexpected error: {exc}")

        content = {
            "error": "INTERNAL_ERROR",
            "message": str(exc) if settings.DEBUG else "An internal server error occurred",
            "timestamp": time.time()
        }
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check():
        """API health check endpoint"""
        database = await check_database_health()
        return {
            "status": database["status"],
            "api_version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "database": database["database"],
            "timestamp": time.time()
        }

    # Include API routers
    app.include_router(
        auth.router,
        prefix="/auth",
        tags=["Authentication"]
    )

    app.include_router(
        quiz_attempts.router,
        tags=["Quiz Attempts"]
    )

    app.include_router(
        rankings.router,
        tags=["Quiz Rankings"]
    )

    logger.info("✅ Backend API configured successfully")
    return app


# Export the app factory
__all__ = ["create_app"]
