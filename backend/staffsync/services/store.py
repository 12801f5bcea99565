from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from staffsync.exceptions import Conflict, PersistenceError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


async def flush_or_conflict(session: AsyncSession, conflict_message: str) -> None:
    """Flush pending writes, reporting a unique-constraint violation as a conflict."""
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise Conflict(conflict_message) from None
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("Flush failed")
        raise PersistenceError("Local store rejected the write") from exc


async def commit_or_fail(session: AsyncSession, what: str) -> None:
    """Commit the session, rolling back and raising PersistenceError on failure."""
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("Commit of %s failed", what)
        raise PersistenceError(f"Could not persist {what}") from exc
