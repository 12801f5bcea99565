"""Both services wired to each other over HTTP, each with its own database."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker

from conftest import make_app, make_engine, make_settings
from staffsync.services.gateway import COMPANIES, USERS, HttpPeerGateway, InMemoryPeerGateway

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from fastapi import FastAPI


class Deployment:
    """A user service and a company service that call each other."""

    def __init__(self, user_app: FastAPI, company_app: FastAPI) -> None:
        self.user_app = user_app
        self.company_app = company_app
        self.users = AsyncClient(transport=ASGITransport(app=user_app), base_url="http://users")
        self.companies = AsyncClient(transport=ASGITransport(app=company_app), base_url="http://companies")

    async def settle(self) -> None:
        """Drain both channels until neither has work left."""
        channels = [self.user_app.state.propagation_channel, self.company_app.state.propagation_channel]
        while any(channel.in_flight for channel in channels):
            for channel in channels:
                await channel.drain()

    async def create_company(self, name: str, employee_ids: list[str] | None = None) -> dict:
        resp = await self.companies.post(
            "/companies", json={"name": name, "budget": 100, "employee_ids": employee_ids or []}
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    async def create_user(self, phone: str, company_id: str | None = None) -> dict:
        resp = await self.users.post(
            "/users",
            json={"first_name": "Ada", "last_name": "Lovelace", "phone": phone, "company_id": company_id},
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    async def employee_ids(self, company_id: str) -> list[str]:
        resp = await self.companies.get(f"/companies/{company_id}")
        assert resp.status_code == 200
        return resp.json()["employee_ids"]

    async def user(self, user_id: str) -> dict:
        resp = await self.users.get(f"/users/{user_id}")
        assert resp.status_code == 200
        return resp.json()


@pytest.fixture
async def deployment(tmp_path: Path) -> AsyncIterator[Deployment]:
    user_engine = await make_engine(tmp_path / "users.db")
    company_engine = await make_engine(tmp_path / "companies.db")
    user_app = make_app(
        make_settings("user"),
        InMemoryPeerGateway(COMPANIES),
        async_sessionmaker(user_engine, expire_on_commit=False),
    )
    company_app = make_app(
        make_settings("company"),
        InMemoryPeerGateway(USERS),
        async_sessionmaker(company_engine, expire_on_commit=False),
    )
    user_app.state.peer_gateway = HttpPeerGateway(
        COMPANIES, "http://companies", transport=ASGITransport(app=company_app)
    )
    company_app.state.peer_gateway = HttpPeerGateway(USERS, "http://users", transport=ASGITransport(app=user_app))

    env = Deployment(user_app, company_app)
    yield env

    await env.settle()
    await env.users.aclose()
    await env.companies.aclose()
    await user_app.state.peer_gateway.aclose()
    await company_app.state.peer_gateway.aclose()
    await user_engine.dispose()
    await company_engine.dispose()


async def test_user_created_under_company_appears_in_company(deployment: Deployment) -> None:
    company = await deployment.create_company("Acme")
    user = await deployment.create_user("+15550100", company["id"])
    assert user["membership_status"] == "PENDING"

    await deployment.settle()

    assert await deployment.employee_ids(company["id"]) == [user["id"]]
    assert (await deployment.user(user["id"]))["membership_status"] == "SYNCED"


async def test_user_created_under_missing_company_is_rejected(deployment: Deployment) -> None:
    resp = await deployment.users.post(
        "/users",
        json={"first_name": "Ada", "last_name": "Lovelace", "phone": "+15550100", "company_id": str(uuid.uuid4())},
    )
    assert resp.status_code == 404

    listing = (await deployment.users.get("/users")).json()
    assert listing["total"] == 0


async def test_company_created_with_employees_points_users_at_it(deployment: Deployment) -> None:
    user = await deployment.create_user("+15550100")
    company = await deployment.create_company("Acme", [user["id"]])

    await deployment.settle()

    stored = await deployment.user(user["id"])
    assert stored["company_id"] == company["id"]
    assert stored["membership_status"] == "SYNCED"


async def test_reassigning_user_moves_membership(deployment: Deployment) -> None:
    company_a = await deployment.create_company("Acme")
    company_b = await deployment.create_company("Globex")
    user = await deployment.create_user("+15550100", company_a["id"])
    await deployment.settle()

    resp = await deployment.users.put(
        f"/users/{user['id']}",
        json={"first_name": "Ada", "last_name": "Lovelace", "phone": "+15550100", "company_id": company_b["id"]},
    )
    assert resp.status_code == 200

    assert await deployment.employee_ids(company_a["id"]) == []
    assert await deployment.employee_ids(company_b["id"]) == [user["id"]]


async def test_reassigning_to_missing_company_keeps_both_sides(deployment: Deployment) -> None:
    company = await deployment.create_company("Acme")
    user = await deployment.create_user("+15550100", company["id"])
    await deployment.settle()

    resp = await deployment.users.put(
        f"/users/{user['id']}",
        json={"first_name": "Ada", "last_name": "Lovelace", "phone": "+15550100", "company_id": str(uuid.uuid4())},
    )
    assert resp.status_code == 404

    assert (await deployment.user(user["id"]))["company_id"] == company["id"]
    assert await deployment.employee_ids(company["id"]) == [user["id"]]


async def test_adding_employee_elsewhere_releases_previous_company(deployment: Deployment) -> None:
    company_a = await deployment.create_company("Acme")
    company_b = await deployment.create_company("Globex")
    user = await deployment.create_user("+15550100", company_a["id"])
    await deployment.settle()

    resp = await deployment.companies.post(f"/companies/{company_b['id']}/employees/{user['id']}")
    assert resp.status_code == 200
    await deployment.settle()

    assert (await deployment.user(user["id"]))["company_id"] == company_b["id"]
    assert await deployment.employee_ids(company_a["id"]) == []
    assert await deployment.employee_ids(company_b["id"]) == [user["id"]]


async def test_removing_employee_clears_user_company(deployment: Deployment) -> None:
    company = await deployment.create_company("Acme")
    user = await deployment.create_user("+15550100", company["id"])
    await deployment.settle()

    resp = await deployment.companies.delete(f"/companies/{company['id']}/employees/{user['id']}")
    assert resp.status_code == 204

    stored = await deployment.user(user["id"])
    assert stored["company_id"] is None
    assert stored["membership_status"] is None


async def test_deleting_company_detaches_its_users(deployment: Deployment) -> None:
    company = await deployment.create_company("Acme")
    first = await deployment.create_user("+15550100", company["id"])
    second = await deployment.create_user("+15550101", company["id"])
    await deployment.settle()

    resp = await deployment.companies.delete(f"/companies/{company['id']}")
    assert resp.status_code == 204
    await deployment.settle()

    assert (await deployment.user(first["id"]))["company_id"] is None
    assert (await deployment.user(second["id"]))["company_id"] is None


async def test_deleting_user_removes_it_from_company(deployment: Deployment) -> None:
    company = await deployment.create_company("Acme")
    user = await deployment.create_user("+15550100", company["id"])
    await deployment.settle()

    resp = await deployment.users.delete(f"/users/{user['id']}")
    assert resp.status_code == 204
    await deployment.settle()

    assert await deployment.employee_ids(company["id"]) == []


async def test_expanded_reads_cross_the_boundary(deployment: Deployment) -> None:
    company = await deployment.create_company("Acme")
    user = await deployment.create_user("+15550100", company["id"])
    await deployment.settle()

    user_view = (await deployment.users.get(f"/users/{user['id']}", params={"expand": "company"})).json()
    company_view = (
        await deployment.companies.get(f"/companies/{company['id']}", params={"expand": "employees"})
    ).json()

    assert user_view["company"]["name"] == "Acme"
    assert [e["id"] for e in company_view["employees"]] == [user["id"]]


async def test_expanded_listings_cross_the_boundary(deployment: Deployment) -> None:
    company = await deployment.create_company("Acme")
    user = await deployment.create_user("+15550100", company["id"])
    await deployment.settle()

    users = (await deployment.users.get("/users", params={"expand": "company"})).json()
    companies = (await deployment.companies.get("/companies", params={"expand": "employees"})).json()

    assert [u["company"]["name"] for u in users["items"]] == ["Acme"]
    assert [[e["id"] for e in c["employees"]] for c in companies["items"]] == [[user["id"]]]
