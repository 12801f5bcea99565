"""Tests for the post-commit propagation channel."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from staffsync.models import Company
from staffsync.services.propagation import PropagationChannel

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


def _recorder(log: list[str], label: str) -> Callable[[], Awaitable[None]]:
    async def _handler() -> None:
        log.append(label)

    return _handler


async def test_handler_not_run_before_commit(db_session: AsyncSession) -> None:
    channel = PropagationChannel()
    ran: list[str] = []

    channel.defer(db_session, "add", _recorder(ran, "add"))
    db_session.add(Company(name="Acme", budget=10))
    await db_session.flush()
    await channel.drain()

    assert ran == []
    assert channel.pending(db_session) == 1
    assert channel.dispatched == 0


async def test_handler_runs_after_commit(db_session: AsyncSession) -> None:
    channel = PropagationChannel()
    ran: list[str] = []

    db_session.add(Company(name="Acme", budget=10))
    channel.defer(db_session, "first", _recorder(ran, "first"))
    channel.defer(db_session, "second", _recorder(ran, "second"))
    await db_session.commit()
    await channel.drain()

    assert sorted(ran) == ["first", "second"]
    assert channel.dispatched == 2
    assert channel.pending(db_session) == 0
    assert channel.in_flight == 0


async def test_rollback_discards_handlers(db_session: AsyncSession) -> None:
    channel = PropagationChannel()
    ran: list[str] = []

    db_session.add(Company(name="Acme", budget=10))
    await db_session.flush()
    channel.defer(db_session, "add", _recorder(ran, "add"))
    await db_session.rollback()
    await channel.drain()

    assert ran == []
    assert channel.discarded == 1
    assert channel.dispatched == 0


async def test_handlers_do_not_leak_into_next_transaction(db_session: AsyncSession) -> None:
    channel = PropagationChannel()
    ran: list[str] = []

    db_session.add(Company(name="Dropped", budget=1))
    await db_session.flush()
    channel.defer(db_session, "dropped", _recorder(ran, "dropped"))
    await db_session.rollback()
    db_session.add(Company(name="Acme", budget=10))
    await db_session.commit()
    await channel.drain()

    assert ran == []


async def test_failing_handler_is_logged_not_raised(
    db_session: AsyncSession,
    caplog: pytest.LogCaptureFixture,
) -> None:
    channel = PropagationChannel()
    ran: list[str] = []

    async def _boom() -> None:
        raise RuntimeError("peer exploded")

    db_session.add(Company(name="Acme", budget=10))
    channel.defer(db_session, "boom", _boom)
    channel.defer(db_session, "after", _recorder(ran, "after"))
    with caplog.at_level(logging.ERROR, logger="staffsync.services.propagation"):
        await db_session.commit()
        await channel.drain()

    assert ran == ["after"]
    assert "Deferred propagation boom failed" in caplog.text


async def test_drain_waits_for_nested_dispatch(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    channel = PropagationChannel()
    ran: list[str] = []

    async def _outer() -> None:
        async with session_factory() as inner:
            channel.defer(inner, "inner", _recorder(ran, "inner"))
            inner.add(Company(name="Nested", budget=1))
            await inner.commit()
        ran.append("outer")

    db_session.add(Company(name="Acme", budget=10))
    channel.defer(db_session, "outer", _outer)
    await db_session.commit()
    await channel.drain()

    assert sorted(ran) == ["inner", "outer"]
    assert channel.dispatched == 2


async def test_discard_without_open_transaction(db_session: AsyncSession) -> None:
    channel = PropagationChannel()
    ran: list[str] = []

    channel.defer(db_session, "add", _recorder(ran, "add"))
    channel.discard(db_session)
    db_session.add(Company(name="Acme", budget=10))
    await db_session.commit()
    await channel.drain()

    assert ran == []
    assert channel.discarded == 1
