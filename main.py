import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ptsa.config import settings
from ptsa.exception_handlers import register_exception_handlers
from ptsa.middleware.logging import StructuredLoggingMiddleware, setup_structured_logging
from ptsa.middleware.rate_limit import configure_rate_limiting
from ptsa.routes import api_router
from ptsa.scheduler import shutdown_scheduler, start_scheduler
from ptsa.utils.env_validator import validate_secret_key

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Tasks to run at application startup and shutdown."""
    logger.info("Starting up the application...")
    for warning in validate_secret_key(settings.secret_key):
        logger.warning(f"SECRET_KEY: {warning}")

    if settings.scheduler_enabled:
        start_scheduler()
    yield

    logger.info("Shutting down the application...")
    shutdown_scheduler()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    setup_structured_logging(log_level=settings.log_level, json_format=settings.log_json)

    app = FastAPI(
        title=settings.app_name,
        description="PTSA membership, payments, events and privacy compliance backend",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    configure_rate_limiting(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(StructuredLoggingMiddleware)

    app.include_router(api_router)

    @app.get("/health", tags=["Root"])
    async def health():
        return {"status": "ok", "version": settings.app_version, "environment": settings.environment}

    if settings.debug:
        logger.info(f"Running in {settings.environment} mode")
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
