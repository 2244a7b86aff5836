"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from outreach_engine.api.v1.endpoints import health
from outreach_engine.api.v1.routes import api_router
from outreach_engine.core.config import get_settings
from outreach_engine.core.validation import validate_providers_on_startup

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup validates provider configuration: fatal in production, a
    warning everywhere else.
    """
    settings = get_settings()
    logger.info("Starting Outreach Dispatch Engine...")

    strict_validation = settings.environment == "production"

    try:
        validate_providers_on_startup(strict=strict_validation, settings=settings)
    except RuntimeError as e:
        if strict_validation:
            logger.error(f"Startup failed: {e}")
            raise
        else:
            logger.warning(f"Configuration warnings (non-fatal in {settings.environment}): {e}")

    logger.info("Outreach Dispatch Engine started successfully")

    yield  # Application is running

    logger.info("Outreach Dispatch Engine shutdown complete")


app = FastAPI(
    title="Outreach Dispatch Engine",
    description="Agent task scheduler and compliant multi-channel dispatch for rental lead outreach",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(health.router)
app.include_router(api_router, prefix=get_settings().api_prefix)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
