# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from typing import Literal

from fastapi import APIRouter, Query, Response

from staffsync.api.deps import CoordinatorDep, GatewayDep, SettingsDep
from staffsync.api.headers import set_warning_header
from staffsync.db import SessionDep
from staffsync.schemas.company import (
    CompanyListResponse,
    CompanyResponse,
    CreateCompanyRequest,
    UpdateCompanyRequest,
)
from staffsync.services import company as company_service

companies_router = APIRouter(prefix="/companies", tags=["companies"])


@companies_router.post(
    "",
    response_model=CompanyResponse,
    status_code=201,
)
async def create_company(
    payload: CreateCompanyRequest,
    session: SessionDep,
    coordinator: CoordinatorDep,
    response: Response,
) -> CompanyResponse:
    """Create a company with an optional initial set of employees."""
    created = await company_service.create_company(session, coordinator, payload)
    set_warning_header(response, created.warnings)
    return created


@companies_router.get(
    "",
    response_model=CompanyListResponse,
)
async def list_companies(
    session: SessionDep,
    gateway: GatewayDep,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    expand: Literal["employees"] | None = Query(default=None),
) -> CompanyListResponse:
    """List companies, optionally with each company's employees."""
    return await company_service.list_companies(
        session, gateway, offset, limit, expand_employees=expand == "employees"
    )


@companies_router.get(
    "/{company_id}",
    response_model=CompanyResponse,
)
async def get_company(
    company_id: uuid.UUID,
    session: SessionDep,
    gateway: GatewayDep,
    expand: Literal["employees"] | None = Query(default=None),
) -> CompanyResponse:
    """Get a company. Also the existence check used by the user service."""
    return await company_service.load_company(
        session, gateway, company_id, expand_employees=expand == "employees"
    )


@companies_router.put(
    "/{company_id}",
    response_model=CompanyResponse,
)
async def update_company(
    company_id: uuid.UUID,
    payload: UpdateCompanyRequest,
    session: SessionDep,
) -> CompanyResponse:
    """Update a company's name and budget."""
    return await company_service.update_company(session, company_id, payload)


@companies_router.delete(
    "/{company_id}",
    status_code=204,
)
async def delete_company(
    company_id: uuid.UUID,
    session: SessionDep,
    coordinator: CoordinatorDep,
    settings: SettingsDep,
    response: Response,
) -> None:
    """Delete a company and detach its employees."""
    warnings = await company_service.delete_company(session, coordinator, company_id, settings.unlink_on_delete)
    set_warning_header(response, warnings)


@companies_router.post(
    "/{company_id}/employees/{user_id}",
    response_model=CompanyResponse,
)
async def add_employee(
    company_id: uuid.UUID,
    user_id: uuid.UUID,
    session: SessionDep,
    coordinator: CoordinatorDep,
) -> CompanyResponse:
    """Add an employee to the company and point the user at it."""
    return await company_service.add_employee(session, coordinator, company_id, user_id)


@companies_router.delete(
    "/{company_id}/employees/{user_id}",
    status_code=204,
)
async def remove_employee(
    company_id: uuid.UUID,
    user_id: uuid.UUID,
    session: SessionDep,
    coordinator: CoordinatorDep,
) -> None:
    """Remove an employee from the company and clear the user's company."""
    await company_service.remove_employee(session, coordinator, company_id, user_id)


# ---------------------------------------------------------------------------
# Peer endpoints (called by the user service)
# ---------------------------------------------------------------------------


@companies_router.post(
    "/{company_id}/members/{user_id}",
    status_code=204,
)
async def accept_member(
    company_id: uuid.UUID,
    user_id: uuid.UUID,
    session: SessionDep,
) -> None:
    """Record the company's half of a link; 409 when it already exists."""
    await company_service.accept_member(session, company_id, user_id)


@companies_router.delete(
    "/{company_id}/members/{user_id}",
    status_code=204,
)
async def release_member(
    company_id: uuid.UUID,
    user_id: uuid.UUID,
    session: SessionDep,
) -> None:
    """Drop the company's half of a link."""
    await company_service.release_member(session, company_id, user_id)
