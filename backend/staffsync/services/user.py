# ruff: noqa: TC003
"""User service operations: the user's half of each membership."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Literal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col

from staffsync.exceptions import Conflict, NotFoundError, ValidationError
from staffsync.models.enums import MembershipStatus
from staffsync.models.user import User
from staffsync.schemas.user import UserListResponse, UserResponse
from staffsync.services.store import commit_or_fail, flush_or_conflict

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from typing import Any

    from staffsync.schemas.user import CreateUserRequest, UpdateUserRequest
    from staffsync.services.gateway import PeerGateway, PeerResult
    from staffsync.services.membership import MembershipCoordinator

logger = logging.getLogger(__name__)


def _build_user_response(
    user: User,
    *,
    company: dict[str, Any] | None = None,
    company_load_error: str | None = None,
    warnings: list[str] | None = None,
) -> UserResponse:
    return UserResponse(
        id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        phone=user.phone,
        company_id=user.company_id,
        membership_status=MembershipStatus(user.membership_status) if user.membership_status else None,
        created_at=user.created_at,
        company=company,
        company_load_error=company_load_error,
        warnings=warnings or [],
    )


async def get_user(
    session: AsyncSession,
    user_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> User:
    """Get a single user or raise 404."""
    stmt = select(User).where(col(User.id) == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError(f"User not found with id: {user_id}")
    return user


def _status_recorder(
    session: AsyncSession,
    user_id: uuid.UUID,
    company_id: uuid.UUID,
) -> Callable[[PeerResult], Awaitable[None]]:
    """Build a callback that stores the outcome of a deferred propagation.

    It runs after the request's session is gone, so it opens its own session
    on the same bind. The update only applies while the user still points at
    the same company.
    """
    bind = session.bind

    async def _record(result: PeerResult) -> None:
        async with AsyncSession(bind, expire_on_commit=False) as status_session:
            await status_session.execute(
                update(User)
                .where(col(User.id) == user_id, col(User.company_id) == company_id)
                .values(membership_status=result.as_status().value)
            )
            await status_session.commit()

    return _record


async def create_user(
    session: AsyncSession,
    coordinator: MembershipCoordinator,
    payload: CreateUserRequest,
) -> UserResponse:
    """Create a user, validating its company on the company service first."""
    async with coordinator.transaction(session):
        existing = await session.execute(select(User.id).where(col(User.phone) == payload.phone))
        if existing.scalar_one_or_none() is not None:
            raise Conflict("Phone number already exists")

        status: MembershipStatus | None = None
        if payload.company_id is not None:
            status = await coordinator.check_counterpart(payload.company_id)

        user = User(
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
            company_id=payload.company_id,
            membership_status=status,
        )
        session.add(user)
        await flush_or_conflict(session, "Phone number already exists")

        if payload.company_id is not None:
            coordinator.defer_link(
                session,
                payload.company_id,
                user.id,
                _status_recorder(session, user.id, payload.company_id),
            )
        await coordinator.commit(session)

    logger.info("Created user %s (company=%s, status=%s)", user.id, user.company_id, user.membership_status)
    return _build_user_response(user, warnings=coordinator.warnings)


def _with_company(user: User, result: PeerResult) -> UserResponse:
    """Build a user response from the company service's answer about its company."""
    if result.ok:
        return _build_user_response(user, company=result.record)
    if result.not_found:
        return _build_user_response(user, company_load_error=f"Company not found with id: {user.company_id}")
    return _build_user_response(user, company_load_error="Company service is unavailable")


async def load_user(
    session: AsyncSession,
    gateway: PeerGateway,
    user_id: uuid.UUID,
    *,
    expand_company: bool = False,
) -> UserResponse:
    """Fetch a user, optionally enriched with the company's snapshot."""
    user = await get_user(session, user_id)
    if not expand_company or user.company_id is None:
        return _build_user_response(user)
    return _with_company(user, await gateway.fetch_snapshot(user.company_id))


async def list_users(
    session: AsyncSession,
    gateway: PeerGateway,
    company_id: uuid.UUID | None = None,
    offset: int = 0,
    limit: int = 50,
    *,
    expand_company: bool = False,
) -> UserListResponse:
    """List users, optionally only those pointing at one company.

    With ``expand_company`` each distinct company is fetched once per page.
    """
    base_filter = []
    if company_id is not None:
        base_filter.append(col(User.company_id) == company_id)

    count_result = await session.execute(select(func.count()).select_from(User).where(*base_filter))
    total = count_result.scalar_one()

    result = await session.execute(
        select(User).where(*base_filter).order_by(col(User.created_at), col(User.id)).offset(offset).limit(limit)
    )
    users = list(result.scalars().all())
    if not expand_company:
        return UserListResponse(items=[_build_user_response(u) for u in users], total=total)

    snapshots: dict[uuid.UUID, PeerResult] = {}
    items = []
    for user in users:
        if user.company_id is None:
            items.append(_build_user_response(user))
            continue
        if user.company_id not in snapshots:
            snapshots[user.company_id] = await gateway.fetch_snapshot(user.company_id)
        items.append(_with_company(user, snapshots[user.company_id]))
    return UserListResponse(items=items, total=total)


async def update_user(
    session: AsyncSession,
    coordinator: MembershipCoordinator,
    user_id: uuid.UUID,
    payload: UpdateUserRequest,
) -> UserResponse:
    """Update a user's names and, when it changes, its company.

    A company change is applied on the company service before the local
    write; if that fails the stored company is left as it was.
    """
    async with coordinator.transaction(session):
        user = await get_user(session, user_id, for_update=True)
        if user.phone != payload.phone:
            raise ValidationError("Phone number cannot be updated")

        if user.company_id != payload.company_id:
            previous = user.company_id
            status = await coordinator.reassociate(user.id, previous, payload.company_id)
            user.company_id = payload.company_id
            user.membership_status = status
            logger.info("Reassigned user %s from company %s to %s", user.id, previous, payload.company_id)

        user.first_name = payload.first_name
        user.last_name = payload.last_name
        session.add(user)
        await coordinator.commit(session)

    logger.info("Updated user %s", user.id)
    return _build_user_response(user)


async def delete_user(
    session: AsyncSession,
    coordinator: MembershipCoordinator,
    user_id: uuid.UUID,
    unlink_mode: Literal["deferred", "eager"] = "deferred",
) -> list[str]:
    """Delete a user and unlink it from its company. Returns any warnings."""
    async with coordinator.transaction(session):
        user = await get_user(session, user_id, for_update=True)
        if user.company_id is not None:
            await coordinator.unlink_for_delete(session, user.company_id, user.id, unlink_mode)
        await session.delete(user)
        await coordinator.commit(session)

    logger.info("Deleted user %s", user_id)
    return coordinator.warnings


# ---------------------------------------------------------------------------
# Peer-facing operations, called by the company service. They change only
# the user's half of a link and never call back synchronously.
# ---------------------------------------------------------------------------


async def attach_company(
    session: AsyncSession,
    coordinator: MembershipCoordinator,
    company_id: uuid.UUID,
    user_id: uuid.UUID,
) -> None:
    """Point a user at a company on the company service's request.

    A user belongs to at most one company, so a previous company is asked
    to drop the user once this change commits.
    """
    async with coordinator.transaction(session):
        user = await get_user(session, user_id, for_update=True)
        previous = user.company_id
        user.company_id = company_id
        user.membership_status = MembershipStatus.SYNCED
        session.add(user)
        if previous is not None and previous != company_id:
            coordinator.defer_unlink(session, previous, user.id)
        await coordinator.commit(session)

    if previous == company_id:
        logger.info("User %s already attached to company %s", user_id, company_id)
    else:
        logger.info("Attached user %s to company %s (was %s)", user_id, company_id, previous)


async def detach_company(
    session: AsyncSession,
    company_id: uuid.UUID,
    user_id: uuid.UUID,
) -> None:
    """Clear a user's company on the company service's request."""
    user = await get_user(session, user_id, for_update=True)
    if user.company_id != company_id:
        logger.warning("User %s is not attached to company %s, nothing to detach", user_id, company_id)
        await session.rollback()
        return

    user.company_id = None
    user.membership_status = None
    session.add(user)
    await commit_or_fail(session, f"detach of user {user_id}")
    logger.info("Detached user %s from company %s", user_id, company_id)
