"""The database layer follows the settings each app was built with."""

from __future__ import annotations

from typing import TYPE_CHECKING

from httpx import ASGITransport, AsyncClient
from sqlalchemy import func
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import select

from staffsync.config import Settings
from staffsync.main import create_app
from staffsync.models import User
from staffsync.services.gateway import COMPANIES, InMemoryPeerGateway

if TYPE_CHECKING:
    from pathlib import Path


def _settings(path: Path, **overrides: object) -> Settings:
    return Settings(
        service_role="user",
        database_url=f"sqlite+aiosqlite:///{path}",
        **overrides,  # type: ignore[arg-type]
    )


def test_engine_is_created_lazily(tmp_path: Path) -> None:
    application = create_app(_settings(tmp_path / "lazy.db"), peer_gateway=InMemoryPeerGateway(COMPANIES))
    assert application.state.engine is None
    assert application.state.session_factory is None


async def test_app_serves_from_its_own_database(tmp_path: Path) -> None:
    path = tmp_path / "own.db"
    application = create_app(
        _settings(path, auto_create_schema=True),
        peer_gateway=InMemoryPeerGateway(COMPANIES),
    )

    async with application.router.lifespan_context(application):
        assert application.state.engine.url.database == str(path)
        async with AsyncClient(transport=ASGITransport(app=application), base_url="http://test") as client:
            health = await client.get("/health")
            created = await client.post(
                "/users",
                json={"first_name": "Ada", "last_name": "Lovelace", "phone": "+15550100", "company_id": None},
            )
            listing = await client.get("/users")

    assert health.json()["status"] == "ok"
    assert created.status_code == 201, created.text
    assert listing.json()["total"] == 1
    assert application.state.engine is None

    engine = create_async_engine(f"sqlite+aiosqlite:///{path}")
    try:
        async with engine.connect() as conn:
            count = (await conn.execute(select(func.count()).select_from(User))).scalar_one()
    finally:
        await engine.dispose()
    assert count == 1


async def test_apps_do_not_share_an_engine(tmp_path: Path) -> None:
    first = create_app(
        _settings(tmp_path / "first.db", auto_create_schema=True), peer_gateway=InMemoryPeerGateway(COMPANIES)
    )
    second = create_app(
        _settings(tmp_path / "second.db", auto_create_schema=True), peer_gateway=InMemoryPeerGateway(COMPANIES)
    )

    async with first.router.lifespan_context(first), second.router.lifespan_context(second):
        async with AsyncClient(transport=ASGITransport(app=first), base_url="http://test") as client:
            await client.post(
                "/users",
                json={"first_name": "Ada", "last_name": "Lovelace", "phone": "+15550100", "company_id": None},
            )
        async with AsyncClient(transport=ASGITransport(app=second), base_url="http://test") as client:
            listing = await client.get("/users")

        assert first.state.engine is not second.state.engine

    assert listing.json()["total"] == 0
