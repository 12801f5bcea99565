from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from staffsync.config import Settings


def get_engine(settings: Settings) -> AsyncEngine:
    """Create an async engine for the database named in ``settings``."""
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
    )


def get_session_factory(app: FastAPI) -> async_sessionmaker[AsyncSession]:
    """Return the app's session factory, creating its engine on first call.

    The engine lives on ``app.state`` next to the settings it was built
    from, so two apps in one process never share a database by accident.
    """
    if app.state.session_factory is None:
        app.state.engine = get_engine(app.state.settings)
        app.state.session_factory = async_sessionmaker(
            app.state.engine,
            expire_on_commit=False,
        )
    return app.state.session_factory


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an async database session."""
    factory = get_session_factory(request.app)
    async with factory() as session:
        yield session


SessionDep = Annotated[AsyncSession, Depends(get_session)]


async def create_schema(app: FastAPI) -> None:
    """Create all tables that do not exist yet."""
    from staffsync.models import SQLModel

    get_session_factory(app)
    async with app.state.engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose_engine(app: FastAPI) -> None:
    """Dispose the app's engine, if one was created. Call on app shutdown."""
    if app.state.engine is not None:
        await app.state.engine.dispose()
        app.state.engine = None
        app.state.session_factory = None
