# ruff: noqa: TC003
"""Company service operations: the company's half of each membership."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Literal

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col

from staffsync.exceptions import AppError, Conflict, NotFoundError
from staffsync.models.company import Company, CompanyEmployee
from staffsync.models.enums import MembershipStatus
from staffsync.schemas.company import CompanyListResponse, CompanyMemberResponse, CompanyResponse
from staffsync.services.store import commit_or_fail, flush_or_conflict

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from typing import Any

    from staffsync.schemas.company import CreateCompanyRequest, UpdateCompanyRequest
    from staffsync.services.gateway import PeerGateway, PeerResult
    from staffsync.services.membership import MembershipCoordinator

logger = logging.getLogger(__name__)


def _build_company_response(
    company: Company,
    members: list[CompanyEmployee],
    *,
    employees: list[dict[str, Any]] | None = None,
    employees_load_error: str | None = None,
    warnings: list[str] | None = None,
) -> CompanyResponse:
    ordered = sorted(members, key=lambda m: str(m.user_id))
    return CompanyResponse(
        id=company.id,
        name=company.name,
        budget=company.budget,
        employee_ids=[m.user_id for m in ordered],
        members=[CompanyMemberResponse(user_id=m.user_id, status=MembershipStatus(m.status)) for m in ordered],
        created_at=company.created_at,
        employees=employees,
        employees_load_error=employees_load_error,
        warnings=warnings or [],
    )


async def get_company(
    session: AsyncSession,
    company_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Company:
    """Get a single company or raise 404."""
    stmt = select(Company).where(col(Company.id) == company_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    company = result.scalar_one_or_none()
    if company is None:
        raise NotFoundError(f"Company not found with id: {company_id}")
    return company


async def _members(session: AsyncSession, company_id: uuid.UUID) -> list[CompanyEmployee]:
    result = await session.execute(select(CompanyEmployee).where(col(CompanyEmployee.company_id) == company_id))
    return list(result.scalars().all())


async def _find_member(session: AsyncSession, company_id: uuid.UUID, user_id: uuid.UUID) -> CompanyEmployee | None:
    result = await session.execute(
        select(CompanyEmployee).where(
            col(CompanyEmployee.company_id) == company_id,
            col(CompanyEmployee.user_id) == user_id,
        )
    )
    return result.scalar_one_or_none()


async def _other_company_of(session: AsyncSession, user_id: uuid.UUID, company_id: uuid.UUID) -> uuid.UUID | None:
    result = await session.execute(
        select(CompanyEmployee.company_id).where(
            col(CompanyEmployee.user_id) == user_id,
            col(CompanyEmployee.company_id) != company_id,
        )
    )
    return result.scalars().first()


async def _ensure_name_available(session: AsyncSession, name: str) -> None:
    existing = await session.execute(select(Company.id).where(col(Company.name) == name))
    if existing.scalar_one_or_none() is not None:
        raise Conflict(f"Company with name '{name}' already exists")


def _status_recorder(
    session: AsyncSession,
    company_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Callable[[PeerResult], Awaitable[None]]:
    """Build a callback that stores the outcome of a deferred propagation on the link row."""
    bind = session.bind

    async def _record(result: PeerResult) -> None:
        async with AsyncSession(bind, expire_on_commit=False) as status_session:
            await status_session.execute(
                update(CompanyEmployee)
                .where(
                    col(CompanyEmployee.company_id) == company_id,
                    col(CompanyEmployee.user_id) == user_id,
                )
                .values(status=result.as_status().value)
            )
            await status_session.commit()

    return _record


async def create_company(
    session: AsyncSession,
    coordinator: MembershipCoordinator,
    payload: CreateCompanyRequest,
) -> CompanyResponse:
    """Create a company with its initial employees.

    Every initial employee is checked on the user service before anything
    is written; the user service learns about the links after commit.
    """
    async with coordinator.transaction(session):
        await _ensure_name_available(session, payload.name)

        statuses: dict[uuid.UUID, MembershipStatus] = {}
        for user_id in sorted(payload.employee_ids, key=str):
            statuses[user_id] = await coordinator.check_counterpart(user_id)

        company = Company(name=payload.name, budget=payload.budget)
        session.add(company)
        await flush_or_conflict(session, f"Company with name '{payload.name}' already exists")

        members = [
            CompanyEmployee(company_id=company.id, user_id=user_id, status=status)
            for user_id, status in statuses.items()
        ]
        session.add_all(members)
        await flush_or_conflict(session, "Duplicate employee in request")

        for member in members:
            coordinator.defer_link(
                session,
                company.id,
                member.user_id,
                _status_recorder(session, company.id, member.user_id),
            )
        await coordinator.commit(session)

    logger.info("Created company %s with %d employees", company.id, len(members))
    return _build_company_response(company, members, warnings=coordinator.warnings)


async def _with_employees(gateway: PeerGateway, company: Company, members: list[CompanyEmployee]) -> CompanyResponse:
    """Build a company response carrying its employees' snapshots from the user service."""
    employees: list[dict[str, Any]] = []
    unavailable = 0
    for member in sorted(members, key=lambda m: str(m.user_id)):
        result = await gateway.fetch_snapshot(member.user_id)
        if result.ok and result.record is not None:
            employees.append(result.record)
        elif result.unavailable:
            unavailable += 1
        else:
            logger.warning("Company %s lists user %s which the user service does not know", company.id, member.user_id)

    error = f"User service is unavailable ({unavailable} employees not loaded)" if unavailable else None
    return _build_company_response(company, members, employees=employees, employees_load_error=error)


async def load_company(
    session: AsyncSession,
    gateway: PeerGateway,
    company_id: uuid.UUID,
    *,
    expand_employees: bool = False,
) -> CompanyResponse:
    """Fetch a company, optionally enriched with its employees' snapshots."""
    company = await get_company(session, company_id)
    members = await _members(session, company.id)
    if not expand_employees:
        return _build_company_response(company, members)
    return await _with_employees(gateway, company, members)


async def list_companies(
    session: AsyncSession,
    gateway: PeerGateway,
    offset: int = 0,
    limit: int = 50,
    *,
    expand_employees: bool = False,
) -> CompanyListResponse:
    """List companies ordered by name, optionally enriched like ``load_company``."""
    count_result = await session.execute(select(func.count()).select_from(Company))
    total = count_result.scalar_one()

    result = await session.execute(select(Company).order_by(col(Company.name)).offset(offset).limit(limit))
    companies = list(result.scalars().all())

    items = []
    for company in companies:
        members = await _members(session, company.id)
        if expand_employees:
            items.append(await _with_employees(gateway, company, members))
        else:
            items.append(_build_company_response(company, members))
    return CompanyListResponse(items=items, total=total)


async def update_company(
    session: AsyncSession,
    company_id: uuid.UUID,
    payload: UpdateCompanyRequest,
) -> CompanyResponse:
    """Update a company's name and budget. Employees change through their own endpoints."""
    company = await get_company(session, company_id, for_update=True)
    if company.name != payload.name:
        await _ensure_name_available(session, payload.name)

    company.name = payload.name
    company.budget = payload.budget
    session.add(company)
    await flush_or_conflict(session, f"Company with name '{payload.name}' already exists")
    await commit_or_fail(session, f"update of company {company_id}")
    await session.refresh(company)

    logger.info("Updated company %s", company_id)
    return _build_company_response(company, await _members(session, company.id))


async def delete_company(
    session: AsyncSession,
    coordinator: MembershipCoordinator,
    company_id: uuid.UUID,
    unlink_mode: Literal["deferred", "eager"] = "deferred",
) -> list[str]:
    """Delete a company and detach its employees on the user service. Returns any warnings."""
    async with coordinator.transaction(session):
        company = await get_company(session, company_id, for_update=True)
        members = await _members(session, company.id)
        for member in members:
            await coordinator.unlink_for_delete(session, company.id, member.user_id, unlink_mode)
        await session.execute(delete(CompanyEmployee).where(col(CompanyEmployee.company_id) == company.id))
        await session.delete(company)
        await coordinator.commit(session)

    logger.info("Deleted company %s with %d employees", company_id, len(members))
    return coordinator.warnings


async def add_employee(
    session: AsyncSession,
    coordinator: MembershipCoordinator,
    company_id: uuid.UUID,
    user_id: uuid.UUID,
) -> CompanyResponse:
    """Add one employee, recording the link on the user service first.

    If the user belonged to another company, the user service releases
    that membership on its own after pointing the user here. Should the
    local commit then fail, the compensation only detaches the user from
    this company; the previous membership is not restored and the user is
    left without a company. The previous company is logged so it can be
    re-added by hand.
    """
    previous_company_id: uuid.UUID | None = None
    moved = False
    try:
        async with coordinator.transaction(session):
            company = await get_company(session, company_id, for_update=True)
            if await _find_member(session, company.id, user_id) is not None:
                raise Conflict(f"Employee {user_id} already exists in company {company_id}")

            await coordinator.require_counterpart(user_id)
            previous_company_id = await _other_company_of(session, user_id, company.id)
            await coordinator.link_now(company.id, user_id)
            moved = True

            session.add(CompanyEmployee(company_id=company.id, user_id=user_id, status=MembershipStatus.SYNCED))
            await flush_or_conflict(session, f"Employee {user_id} already exists in company {company_id}")
            await coordinator.commit(session)
    except AppError:
        if moved and previous_company_id is not None:
            logger.warning(
                "Adding employee %s to company %s failed after the user service moved them; "
                "membership in company %s was not restored",
                user_id,
                company_id,
                previous_company_id,
            )
        raise

    logger.info("Added employee %s to company %s", user_id, company_id)
    return _build_company_response(company, await _members(session, company.id))


async def remove_employee(
    session: AsyncSession,
    coordinator: MembershipCoordinator,
    company_id: uuid.UUID,
    user_id: uuid.UUID,
) -> None:
    """Remove one employee, clearing the link on the user service first."""
    async with coordinator.transaction(session):
        company = await get_company(session, company_id, for_update=True)
        member = await _find_member(session, company.id, user_id)
        if member is None:
            logger.warning("Employee %s not found in company %s", user_id, company_id)
            await coordinator.commit(session)
            return

        await coordinator.unlink_now(company.id, user_id)
        await session.delete(member)
        await coordinator.commit(session)

    logger.info("Removed employee %s from company %s", user_id, company_id)


# ---------------------------------------------------------------------------
# Peer-facing operations, called by the user service. They change only the
# company's half of a link and never call back.
# ---------------------------------------------------------------------------


async def accept_member(
    session: AsyncSession,
    company_id: uuid.UUID,
    user_id: uuid.UUID,
) -> None:
    """Record a link the user service has already applied on its side."""
    company = await get_company(session, company_id, for_update=True)
    if await _find_member(session, company.id, user_id) is not None:
        raise Conflict(f"Employee {user_id} already exists in company {company_id}")

    session.add(CompanyEmployee(company_id=company.id, user_id=user_id, status=MembershipStatus.SYNCED))
    await flush_or_conflict(session, f"Employee {user_id} already exists in company {company_id}")
    await commit_or_fail(session, f"membership {company_id}/{user_id}")
    logger.info("Accepted employee %s into company %s", user_id, company_id)


async def release_member(
    session: AsyncSession,
    company_id: uuid.UUID,
    user_id: uuid.UUID,
) -> None:
    """Drop a link the user service has already removed on its side."""
    company = await get_company(session, company_id, for_update=True)
    member = await _find_member(session, company.id, user_id)
    if member is None:
        logger.warning("Employee %s not found in company %s", user_id, company_id)
        await session.rollback()
        return

    await session.delete(member)
    await commit_or_fail(session, f"membership {company_id}/{user_id}")
    logger.info("Released employee %s from company %s", user_id, company_id)
