import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from app.core.config import settings
from app.core.database import init_db
from app.core.logging_config import setup_logging
from app.core.security_headers import SecurityHeadersMiddleware
from app.api.endpoints import health, registration, verification

# Configure logging
setup_logging(settings.LOG_LEVEL, json_logs=settings.JSON_LOGS)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    logger.info(f"Starting up {settings.PROJECT_NAME} ({settings.APP_ENV})...")

    missing = settings.missing_required()
    if missing:
        if settings.APP_ENV == "production":
            raise RuntimeError(f"Missing required settings: {', '.join(missing)}")
        logger.warning(f"Missing required settings: {', '.join(missing)}")

    init_db()
    logger.info("Database models registered")

    yield

    logger.info(f"Shutting down {settings.PROJECT_NAME}...")


# Create FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Opt-in email confirmation service",
    lifespan=lifespan
)

app.add_middleware(SecurityHeadersMiddleware)

# Include routers
app.include_router(registration.router)
app.include_router(verification.router)
app.include_router(health.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        server_header=False,
        log_level="info"
    )
