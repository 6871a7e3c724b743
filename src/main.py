"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api import health
from src.api.v1 import router as v1_router
from src.core.config import Settings, get_settings
from src.core.database import close_database, init_database
from src.core.exceptions import setup_exception_handlers
from src.core.logging import setup_logging, setup_request_logging
from src.services.identity_service import PrincipalCache

logger = logging.getLogger("medvault")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database pool and the principal cache for the app's lifetime."""
    settings: Settings = app.state.settings
    init_database(settings)
    app.state.principal_cache = PrincipalCache.from_settings(settings)
    logger.info(
        "MedVault started",
        extra={
            "env": settings.app_env,
            "identity_cache_ttl_seconds": settings.identity_cache_ttl_seconds,
        },
    )
    try:
        yield
    finally:
        logger.info("MedVault shutting down")
        app.state.principal_cache.clear()
        await close_database()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application: logging, middleware, error handlers, routers."""
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="MedVault API",
        description="Consent-gated access control for encrypted medical records",
        version="0.1.0",
        debug=settings.app_debug,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Request logging wraps CORS so preflight requests get a request id too
    setup_request_logging(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(v1_router)
    return app


app = create_app()


def run() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.app_log_level.lower(),
    )


if __name__ == "__main__":
    run()
