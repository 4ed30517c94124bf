"""
QuizMarket Attempt Service
Main application entry point
"""

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .config import get_settings
from .backend.app import create_app
from .backend.database.connection import init_database, close_database_connections
from .backend.dependencies import cleanup_dependencies
from .backend.utils.helpers import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events"""

    # Startup
    logger.info("🚀 Starting QuizMarket Attempt Service...")
    await init_database()
    logger.info("🎉 Application startup complete!")

    yield

    # Shutdown
    logger.info("🛑 Shutting down application...")
    await cleanup_dependencies()
    await close_database_connections()
    logger.info("✅ Application shutdown complete")


def create_main_app() -> FastAPI:
    """Create the API application with database lifespan attached"""

    settings = get_settings()

    main_app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan
    )

    # Mount the backend API
    main_app.mount("/api", create_app())

    @main_app.get("/health")
    async def health_check():
        """Liveness probe"""
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT
        }

    return main_app


def main():
    """Main entry point"""
    setup_logging()

    settings = get_settings()
    logger.info(f"Starting application in {settings.ENVIRONMENT} mode")

    try:
        uvicorn.run(
            "quizmarket.main:app_instance",
            host=settings.HOST,
            port=settings.PORT,
            reload=settings.DEBUG,
            log_level="info" if settings.DEBUG else "warning",
            access_log=settings.DEBUG
        )
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
    except Exception as e:
        logger.error(f"Application failed to start: {e}")
        sys.exit(1)


# Create app instance for uvicorn
app_instance = create_main_app()

if __name__ == "__main__":
    main()
