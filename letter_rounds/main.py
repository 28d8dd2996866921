"""Main application entry point with FastAPI."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import Settings, get_settings
from .database import list_tables
from .exceptions import LetterRoundsError
from .routes import router, service_router
from .services import Services, build_services

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def validate_environment() -> Settings:
    """Validate all environment variables on startup."""
    try:
        settings = get_settings()
        logger.info("Environment variables validated successfully")
        return settings
    except ValidationError as e:
        logger.error("ERROR: Missing or invalid environment variables:")
        logger.error(str(e))
        sys.exit(1)


def create_app(services: Services | None = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        services: Pre-built service graph. When omitted, one is built from
            settings at startup and torn down at shutdown.

    Returns:
        The configured application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup and shutdown."""
        owned = services is None
        if owned:
            settings = validate_environment()
            configure_logging(settings.log_level)
            logger.info("Starting Letter Rounds...")
            app.state.services = build_services(settings)
            for engine in app.state.services.engines:
                logger.info(f"=== Tables in {engine.url.database}: {list_tables(engine)} ===")
        else:
            app.state.services = services

        logger.info("Letter Rounds started successfully")

        yield

        # Shutdown
        logger.info("Shutting down Letter Rounds...")
        if owned:
            await app.state.services.close()
        else:
            await app.state.services.notes.flush()
            await app.state.services.ideas.drain()
        logger.info("Letter Rounds shutdown complete")

    app = FastAPI(
        title="Letter Rounds",
        description="Take turns planning an activity for every letter of the alphabet",
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        # Usable without entering the lifespan (e.g. TestClient without a with-block)
        app.state.services = services

    @app.exception_handler(LetterRoundsError)
    async def misuse_handler(request: Request, exc: LetterRoundsError):
        logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    app.include_router(service_router)
    app.include_router(router)
    return app


# ASGI entry point: uvicorn letter_rounds.main:app
app = create_app()
