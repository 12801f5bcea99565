from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from staffsync.config import Settings
from staffsync.db import get_session
from staffsync.main import create_app
from staffsync.models import SQLModel
from staffsync.services.gateway import COMPANIES, USERS, InMemoryPeerGateway

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

    from staffsync.services.gateway import PeerGateway


def make_settings(role: str, **overrides: object) -> Settings:
    """Settings for an app under test; the database comes from the fixtures."""
    return Settings(service_role=role, database_url="sqlite+aiosqlite://", **overrides)  # type: ignore[arg-type]


async def make_engine(path: Path) -> AsyncEngine:
    """Create a file-backed SQLite engine with all tables."""
    _engine = create_async_engine(f"sqlite+aiosqlite:///{path}")
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return _engine


def make_app(
    settings: Settings,
    gateway: PeerGateway,
    session_factory: async_sessionmaker[AsyncSession],
) -> FastAPI:
    """Build an app whose sessions come from ``session_factory``."""
    application = create_app(settings, peer_gateway=gateway)

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_session] = _override_get_session
    return application


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """A fresh database per test."""
    _engine = await make_engine(tmp_path / "staffsync.db")
    yield _engine
    await _engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """A session for arranging and inspecting rows directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def company_peer() -> InMemoryPeerGateway:
    """The company service as seen from the user service."""
    return InMemoryPeerGateway(COMPANIES)


@pytest.fixture
def user_peer() -> InMemoryPeerGateway:
    """The user service as seen from the company service."""
    return InMemoryPeerGateway(USERS)


@pytest.fixture
def user_app(
    company_peer: InMemoryPeerGateway,
    session_factory: async_sessionmaker[AsyncSession],
) -> FastAPI:
    return make_app(make_settings("user"), company_peer, session_factory)


@pytest.fixture
def company_app(
    user_peer: InMemoryPeerGateway,
    session_factory: async_sessionmaker[AsyncSession],
) -> FastAPI:
    return make_app(make_settings("company"), user_peer, session_factory)


@pytest.fixture
async def user_client(user_app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Async HTTP client for the user service."""
    async with AsyncClient(transport=ASGITransport(app=user_app), base_url="http://test") as client:
        yield client
    await user_app.state.propagation_channel.drain()


@pytest.fixture
async def company_client(company_app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Async HTTP client for the company service."""
    async with AsyncClient(transport=ASGITransport(app=company_app), base_url="http://test") as client:
        yield client
    await company_app.state.propagation_channel.drain()
