"""FastAPI application for logical foreign key review."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from schemalens_core import close_engine
from schemalens_core.telemetry import init_telemetry, shutdown_telemetry

from app.middleware import SessionMiddleware
from app.routes import db, health, logical_fks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    if init_telemetry(service_suffix="-api"):
        logger.info("Telemetry enabled for API")
    yield
    await close_engine()
    await shutdown_telemetry()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="SchemaLens API",
        description="Logical foreign key detection and review for legacy databases",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Session middleware (must be added before CORS)
    app.add_middleware(SessionMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:8000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/api")
    app.include_router(db.router, prefix="/api")
    app.include_router(logical_fks.router, prefix="/api")

    return app


app = create_app()
