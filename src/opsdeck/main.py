"""Dashboard FastAPI entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI

from opsdeck import __version__
from opsdeck.config import Settings, get_settings, validate_settings_for_env
from opsdeck.exception_handlers import register_exception_handlers
from opsdeck.logging import configure_logging
from opsdeck.portainer.client import PortainerClient
from opsdeck.routes import containers, deploy
from opsdeck.routes import settings as settings_routes
from opsdeck.routes.health import router as health_router
from opsdeck.runner.client import RunnerClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    validate_settings_for_env(settings)
    configure_logging(settings.log_level)
    logger.info("dashboard starting", extra={"runner_url": settings.runner_url})
    yield


def create_app(
    settings: Settings | None = None,
    runner: RunnerClient | None = None,
    portainer: PortainerClient | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="opsdeck", version=__version__, lifespan=lifespan)
    app.state.runner = runner or RunnerClient()
    app.state.portainer = portainer or PortainerClient(settings=settings)
    register_exception_handlers(app)

    api = APIRouter(prefix="/api")
    api.include_router(deploy.router)
    api.include_router(containers.router)
    api.include_router(settings_routes.router)

    app.include_router(health_router)
    app.include_router(api)
    return app
