"""Per-request coordination of cross-service membership changes.

A :class:`MembershipCoordinator` is created for every mutating request and
walks one mutation through ``VALIDATING -> LOCAL_WRITE_APPLIED ->
REMOTE_SYNC_ATTEMPTED -> DONE``. Everything before the local commit,
including synchronous peer calls, happens while ``VALIDATING``; that is
the only state from which a mutation can be ``ABORTED``. Peer calls that
already succeeded when an abort happens are compensated in reverse order.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Literal

from staffsync.exceptions import CounterpartNotFound, PeerUnavailable
from staffsync.models.enums import MembershipStatus, MutationState
from staffsync.services.gateway import COMPANIES
from staffsync.services.store import commit_or_fail

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from staffsync.services.gateway import PeerGateway, PeerResult
    from staffsync.services.propagation import PropagationChannel

    ResultCallback = Callable[[PeerResult], Awaitable[None]]

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[MutationState, frozenset[MutationState]] = {
    MutationState.VALIDATING: frozenset({MutationState.LOCAL_WRITE_APPLIED, MutationState.ABORTED}),
    MutationState.LOCAL_WRITE_APPLIED: frozenset({MutationState.REMOTE_SYNC_ATTEMPTED, MutationState.DONE}),
    MutationState.REMOTE_SYNC_ATTEMPTED: frozenset({MutationState.DONE}),
    MutationState.DONE: frozenset(),
    MutationState.ABORTED: frozenset(),
}


class InvalidTransition(RuntimeError):
    """A mutation tried to move to a state not reachable from its current one."""


class MembershipCoordinator:
    """Decides, performs and settles the peer calls of a single mutation."""

    def __init__(
        self,
        gateway: PeerGateway,
        channel: PropagationChannel,
        *,
        unavailable_policy: Literal["abort", "degrade"] = "abort",
        operation: str = "mutation",
    ) -> None:
        self.gateway = gateway
        self.channel = channel
        self.unavailable_policy = unavailable_policy
        self.operation = operation
        self.state = MutationState.VALIDATING
        self.warnings: list[str] = []
        self._deferred = 0
        self._compensations: list[tuple[str, Callable[[], Awaitable[PeerResult]]]] = []

    @property
    def peer(self) -> str:
        return self.gateway.resource

    # ------------------------------------------------------------------
    # Transaction scope
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self, session: AsyncSession) -> AsyncIterator[MembershipCoordinator]:
        """Scope a mutation: roll back and compensate on any failure before commit."""
        try:
            yield self
        except BaseException as exc:
            if self.state == MutationState.VALIDATING:
                await session.rollback()
                self.channel.discard(session)
                await self._compensate()
                self._advance(MutationState.ABORTED)
                logger.info("%s aborted: %s", self.operation, exc)
            raise

    async def commit(self, session: AsyncSession) -> None:
        """Commit the local write, then release deferred propagations."""
        await commit_or_fail(session, self.operation)

        self._advance(MutationState.LOCAL_WRITE_APPLIED)
        self._compensations.clear()
        if self._deferred:
            self._advance(MutationState.REMOTE_SYNC_ATTEMPTED)
        self._advance(MutationState.DONE)

    # ------------------------------------------------------------------
    # Pre-commit validation
    # ------------------------------------------------------------------

    async def check_counterpart(self, counterpart_id: uuid.UUID) -> MembershipStatus:
        """Validate a counterpart for create-with-association.

        Returns the status the new link starts with. Raises when the peer
        confirms absence, or is unavailable under the ``abort`` policy.
        """
        result = await self.gateway.exists(counterpart_id)
        if result.ok:
            return MembershipStatus.PENDING
        if result.not_found:
            raise CounterpartNotFound(f"{self._noun()} {counterpart_id} not found")
        if self.unavailable_policy == "degrade":
            message = f"{self._noun()} {counterpart_id} could not be verified; association flagged unverified"
            logger.warning("%s: %s (%s)", self.operation, message, result.detail)
            self.warnings.append(message)
            return MembershipStatus.UNVERIFIED
        raise PeerUnavailable(f"{self.peer} service is unavailable")

    async def require_counterpart(self, counterpart_id: uuid.UUID) -> None:
        """Validate a counterpart for reassociation. Never degrades."""
        result = await self.gateway.exists(counterpart_id)
        if result.not_found:
            raise CounterpartNotFound(f"{self._noun()} {counterpart_id} not found")
        if result.unavailable:
            raise PeerUnavailable(f"{self.peer} service is unavailable")

    # ------------------------------------------------------------------
    # Synchronous peer mutations (reassociation, eager unlink)
    # ------------------------------------------------------------------

    async def link_now(self, company_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Add the peer's half of a link before the local write commits."""
        result = await self.gateway.add_membership(company_id, user_id)
        if result.not_found:
            raise CounterpartNotFound(f"{self._noun()} {self._owned(company_id, user_id)} not found")
        if result.unavailable:
            raise PeerUnavailable(f"{self.peer} service is unavailable")
        logger.info("%s: linked %s/%s on %s", self.operation, company_id, user_id, self.peer)
        self._compensations.append(
            (f"unlink {company_id}/{user_id}", lambda: self.gateway.remove_membership(company_id, user_id))
        )

    async def unlink_now(
        self,
        company_id: uuid.UUID,
        user_id: uuid.UUID,
        *,
        tolerate_unavailable: bool = False,
    ) -> bool:
        """Remove the peer's half of a link before the local write commits.

        Returns False when the peer could not be reached and the caller
        asked to tolerate that; the gap is recorded in ``warnings``.
        """
        result = await self.gateway.remove_membership(company_id, user_id)
        if result.not_found:
            logger.warning(
                "%s: %s %s already gone, nothing to unlink",
                self.operation,
                self._noun(),
                self._owned(company_id, user_id),
            )
            return True
        if result.unavailable:
            if not tolerate_unavailable:
                raise PeerUnavailable(f"{self.peer} service is unavailable")
            message = f"membership {company_id}/{user_id} was not removed on the {self.peer} service"
            logger.warning("%s: %s (%s)", self.operation, message, result.detail)
            self.warnings.append(message)
            return False
        logger.info("%s: unlinked %s/%s on %s", self.operation, company_id, user_id, self.peer)
        self._compensations.append(
            (f"relink {company_id}/{user_id}", lambda: self.gateway.add_membership(company_id, user_id))
        )
        return True

    async def reassociate(
        self,
        user_id: uuid.UUID,
        old_company_id: uuid.UUID | None,
        new_company_id: uuid.UUID | None,
    ) -> MembershipStatus | None:
        """Move a user between companies on the peer before the local write.

        The new company is validated first, then the old link is removed
        and the new one added. If the add fails, the old link is restored
        and the error propagates, leaving the local association untouched.
        Returns the status the local link should carry afterwards.
        """
        if old_company_id == new_company_id:
            return None
        if new_company_id is not None:
            await self.require_counterpart(new_company_id)
        if old_company_id is not None:
            await self.unlink_now(old_company_id, user_id)
        if new_company_id is None:
            return None
        try:
            await self.link_now(new_company_id, user_id)
        except (CounterpartNotFound, PeerUnavailable):
            await self._compensate()
            raise
        return MembershipStatus.SYNCED

    # ------------------------------------------------------------------
    # Deferred propagation
    # ------------------------------------------------------------------

    def defer_link(
        self,
        session: AsyncSession,
        company_id: uuid.UUID,
        user_id: uuid.UUID,
        on_result: ResultCallback | None = None,
    ) -> None:
        """Add the peer's half of a link once ``session`` commits."""

        async def _propagate() -> None:
            result = await self.gateway.add_membership(company_id, user_id)
            self._log_propagation("add", company_id, user_id, result)
            if on_result is not None:
                await on_result(result)

        self.channel.defer(session, f"add {company_id}/{user_id} on {self.peer}", _propagate)
        self._deferred += 1

    def defer_unlink(
        self,
        session: AsyncSession,
        company_id: uuid.UUID,
        user_id: uuid.UUID,
        on_result: ResultCallback | None = None,
    ) -> None:
        """Remove the peer's half of a link once ``session`` commits."""

        async def _propagate() -> None:
            result = await self.gateway.remove_membership(company_id, user_id)
            self._log_propagation("remove", company_id, user_id, result)
            if on_result is not None:
                await on_result(result)

        self.channel.defer(session, f"remove {company_id}/{user_id} on {self.peer}", _propagate)
        self._deferred += 1

    async def unlink_for_delete(
        self,
        session: AsyncSession,
        company_id: uuid.UUID,
        user_id: uuid.UUID,
        mode: Literal["deferred", "eager"],
    ) -> None:
        """Unlink the peer's half of a link for a local deletion.

        ``deferred`` unlinks best-effort after the deletion commits.
        ``eager`` unlinks first and lets the deletion proceed with a warning
        when the peer is unavailable.
        """
        if mode == "eager":
            await self.unlink_now(company_id, user_id, tolerate_unavailable=True)
        else:
            self.defer_unlink(session, company_id, user_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _advance(self, target: MutationState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.operation}: {self.state} -> {target}")
        logger.debug("%s: %s -> %s", self.operation, self.state, target)
        self.state = target

    async def _compensate(self) -> None:
        while self._compensations:
            label, undo = self._compensations.pop()
            result = await undo()
            if result.ok:
                logger.info("%s: compensated (%s)", self.operation, label)
            else:
                logger.error(
                    "%s: compensation %s failed with %s; %s needs manual reconciliation",
                    self.operation,
                    label,
                    result.outcome,
                    self.peer,
                )

    def _log_propagation(self, action: str, company_id: uuid.UUID, user_id: uuid.UUID, result: PeerResult) -> None:
        if result.ok:
            logger.info("Propagated %s %s/%s to %s", action, company_id, user_id, self.peer)
        else:
            logger.error(
                "Failed to propagate %s %s/%s to %s: %s (%s)",
                action,
                company_id,
                user_id,
                self.peer,
                result.outcome,
                result.detail,
            )

    def _noun(self) -> str:
        return "Company" if self.peer == COMPANIES else "User"

    def _owned(self, company_id: uuid.UUID, user_id: uuid.UUID) -> uuid.UUID:
        return company_id if self.peer == COMPANIES else user_id
