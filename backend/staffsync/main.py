from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from staffsync.api.health import router as health_router
from staffsync.api.router import build_api_router
from staffsync.config import Settings, get_settings
from staffsync.db import create_schema, dispose_engine
from staffsync.exceptions import setup_exception_handlers
from staffsync.logging_config import configure_logging
from staffsync.middleware import setup_middleware
from staffsync.services.gateway import build_peer_gateway
from staffsync.services.propagation import PropagationChannel

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from staffsync.services.gateway import PeerGateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup and shutdown."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting %s v%s [%s] as %s service",
        settings.app_name,
        settings.app_version,
        settings.environment,
        settings.service_role,
    )
    if settings.auto_create_schema:
        await create_schema(app)
    yield
    channel: PropagationChannel = app.state.propagation_channel
    if channel.in_flight:
        logger.info("Waiting for %d deferred propagations", channel.in_flight)
    await channel.drain()
    await app.state.peer_gateway.aclose()
    await dispose_engine(app)
    logger.info("Shutting down %s", settings.app_name)


def create_app(settings: Settings | None = None, *, peer_gateway: PeerGateway | None = None) -> FastAPI:
    """Application factory.

    ``peer_gateway`` replaces the gateway built from settings, e.g. with a
    test double or a client wired to an in-process peer.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    application = FastAPI(
        title=f"{settings.app_name} ({settings.service_role})",
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )
    application.state.settings = settings
    application.state.engine = None
    application.state.session_factory = None
    application.state.peer_gateway = peer_gateway or build_peer_gateway(settings)
    application.state.propagation_channel = PropagationChannel()

    setup_middleware(application, settings)
    setup_exception_handlers(application)

    application.include_router(health_router)
    application.include_router(build_api_router(settings.service_role))

    return application


app = create_app()
