"""Post-commit propagation of membership changes to the peer service.

Handlers are attached to the session that performs the local write and are
released by the session's commit. A rollback discards them, so a failed
local write never produces a remote call. Delivery is at most once per
commit: a handler that fails is logged and not retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_PENDING_KEY = "staffsync.deferred_propagations"


@dataclass(frozen=True)
class DeferredPropagation:
    """A remote call waiting for its session to commit."""

    label: str
    handler: Callable[[], Awaitable[None]]
    channel: PropagationChannel


class PropagationChannel:
    """Runs deferred handlers as background tasks once their session commits."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()
        self.dispatched = 0
        self.discarded = 0

    def defer(self, session: AsyncSession, label: str, handler: Callable[[], Awaitable[None]]) -> None:
        """Schedule ``handler`` to run after ``session`` commits."""
        pending = session.info.setdefault(_PENDING_KEY, [])
        pending.append(DeferredPropagation(label=label, handler=handler, channel=self))
        logger.debug("Deferred %s until commit", label)

    def pending(self, session: AsyncSession) -> int:
        """Number of handlers attached to ``session`` and not yet released."""
        return len(session.info.get(_PENDING_KEY, ()))

    def discard(self, session: AsyncSession) -> None:
        """Drop handlers attached to ``session``; a rollback with no open transaction fires no event."""
        _discard(session.info)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(self, item: DeferredPropagation) -> None:
        """Start ``item`` as a background task on the running loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Dropped %s: committed outside of an event loop", item.label)
            return
        task = loop.create_task(self._run(item), name=f"propagate:{item.label}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.dispatched += 1

    async def drain(self) -> None:
        """Wait for every in-flight handler, including ones they schedule."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _run(self, item: DeferredPropagation) -> None:
        try:
            await item.handler()
        except Exception:
            logger.exception("Deferred propagation %s failed", item.label)


@event.listens_for(Session, "after_commit")
def _release_after_commit(session: Session) -> None:
    pending: list[DeferredPropagation] = session.info.pop(_PENDING_KEY, [])
    for item in pending:
        item.channel.dispatch(item)


def _discard(info: dict[Any, Any]) -> None:
    pending: list[DeferredPropagation] = info.pop(_PENDING_KEY, [])
    for item in pending:
        item.channel.discarded += 1
        logger.info("Discarded %s: transaction rolled back", item.label)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    _discard(session.info)
