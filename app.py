"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and services, registers routers, and runs startup
initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.accommodation_controller import router as accommodation_router
from backend.controllers.auth_controller import router as auth_router
from backend.repository.data_repository import DataRepository
from backend.services.accommodation_service import AccommodationService
from backend.services.auth_service import AuthService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every dependency hangs off app.state so controllers and tests can reach
    the same instances.
    """
    settings = settings or get_settings()

    repository = DataRepository(settings)
    accommodation_service = AccommodationService(repository=repository, settings=settings)
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.include_router(auth_router)
    app.include_router(accommodation_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.accommodation_service = accommodation_service
    app.state.auth_service = auth_service

    return app


def startup(app: FastAPI) -> None:
    """Initialize schema and, when enabled, seed demo data."""
    repository: DataRepository = app.state.repository
    settings: Settings = app.state.settings

    repository.initialize_database()
    if settings.synthetic_seed_enabled:
        repository.seed_synthetic_data()
    logger.info("System startup completed | database=%s", repository.database_path)


app = create_app()


if __name__ == "__main__":
    startup(app)
