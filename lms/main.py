"""
lms/main.py
FastAPI application factory

Controllers live with the host application; this app only wires the
database lifecycle, the error contract and a health endpoint.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from lms import __version__
from lms.config.settings import LMSSettings, get_settings
from lms.container import build_container, register_default_listeners
from lms.middleware.error_handler import register_error_handlers

logger = logging.getLogger(__name__)


def create_app(settings: LMSSettings = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    from lms.database import AsyncSessionLocal, close_db, engine, init_db

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db()
        logger.info(f"LMS core {__version__} started (progress={settings.progress_calculator})")
        yield
        await close_db()

    app = FastAPI(title="LMS Progress Core", version=__version__, lifespan=lifespan)

    container = build_container(settings)
    register_default_listeners(container, AsyncSessionLocal)
    app.state.container = container

    register_error_handlers(app)

    @app.get("/health")
    async def health():
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {
            "status": "ok",
            "version": __version__,
            "database": engine.url.get_backend_name(),
            "progress_calculator": settings.progress_calculator,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    reload = os.getenv("ENVIRONMENT", "development") == "development"

    logger.info(f"Starting server on {host}:{port} (auto-reload: {reload})")

    uvicorn.run(
        "lms.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )
