# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from typing import Literal

from fastapi import APIRouter, Query, Response

from staffsync.api.deps import CoordinatorDep, GatewayDep, SettingsDep
from staffsync.api.headers import set_warning_header
from staffsync.db import SessionDep
from staffsync.schemas.user import CreateUserRequest, UpdateUserRequest, UserListResponse, UserResponse
from staffsync.services import user as user_service

users_router = APIRouter(prefix="/users", tags=["users"])


@users_router.post(
    "",
    response_model=UserResponse,
    status_code=201,
)
async def create_user(
    payload: CreateUserRequest,
    session: SessionDep,
    coordinator: CoordinatorDep,
    response: Response,
) -> UserResponse:
    """Create a user, optionally under a company."""
    created = await user_service.create_user(session, coordinator, payload)
    set_warning_header(response, created.warnings)
    return created


@users_router.get(
    "",
    response_model=UserListResponse,
)
async def list_users(
    session: SessionDep,
    gateway: GatewayDep,
    company_id: uuid.UUID | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    expand: Literal["company"] | None = Query(default=None),
) -> UserListResponse:
    """List users, optionally filtered by company and enriched with it."""
    return await user_service.list_users(
        session, gateway, company_id, offset, limit, expand_company=expand == "company"
    )


@users_router.get(
    "/{user_id}",
    response_model=UserResponse,
)
async def get_user(
    user_id: uuid.UUID,
    session: SessionDep,
    gateway: GatewayDep,
    expand: Literal["company"] | None = Query(default=None),
) -> UserResponse:
    """Get a user. Also the existence check used by the company service."""
    return await user_service.load_user(session, gateway, user_id, expand_company=expand == "company")


@users_router.put(
    "/{user_id}",
    response_model=UserResponse,
)
async def update_user(
    user_id: uuid.UUID,
    payload: UpdateUserRequest,
    session: SessionDep,
    coordinator: CoordinatorDep,
) -> UserResponse:
    """Update a user; a different company_id reassociates it."""
    return await user_service.update_user(session, coordinator, user_id, payload)


@users_router.delete(
    "/{user_id}",
    status_code=204,
)
async def delete_user(
    user_id: uuid.UUID,
    session: SessionDep,
    coordinator: CoordinatorDep,
    settings: SettingsDep,
    response: Response,
) -> None:
    """Delete a user and unlink it from its company."""
    warnings = await user_service.delete_user(session, coordinator, user_id, settings.unlink_on_delete)
    set_warning_header(response, warnings)


# ---------------------------------------------------------------------------
# Peer endpoints (called by the company service)
# ---------------------------------------------------------------------------


@users_router.post(
    "/{company_id}/members/{user_id}",
    status_code=204,
)
async def attach_company(
    company_id: uuid.UUID,
    user_id: uuid.UUID,
    session: SessionDep,
    coordinator: CoordinatorDep,
) -> None:
    """Point the user at the company."""
    await user_service.attach_company(session, coordinator, company_id, user_id)


@users_router.delete(
    "/{company_id}/members/{user_id}",
    status_code=204,
)
async def detach_company(
    company_id: uuid.UUID,
    user_id: uuid.UUID,
    session: SessionDep,
) -> None:
    """Clear the user's company if it is this one."""
    await user_service.detach_company(session, company_id, user_id)
