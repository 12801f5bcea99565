# ruff: noqa: TC003
"""Typed client for the peer service's HTTP API.

Every call resolves to exactly one :class:`PeerOutcome`. A remote 404 is a
business fact (``COUNTERPART_NOT_FOUND``); a timeout, transport error or
any other status is an infrastructure fact (``PEER_UNAVAILABLE``). The two
are never conflated, so a network blip is not reported as absence.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel

from staffsync.models.enums import MembershipStatus, PeerOutcome, ServiceRole

if TYPE_CHECKING:
    from staffsync.config import Settings

logger = logging.getLogger(__name__)

COMPANIES = "companies"
USERS = "users"


class PeerResult(BaseModel):
    """Outcome of a single peer call, with the record for successful reads."""

    outcome: PeerOutcome
    record: dict[str, Any] | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == PeerOutcome.OK

    @property
    def not_found(self) -> bool:
        return self.outcome == PeerOutcome.COUNTERPART_NOT_FOUND

    @property
    def unavailable(self) -> bool:
        return self.outcome == PeerOutcome.PEER_UNAVAILABLE

    def as_status(self) -> MembershipStatus:
        """Sync status recorded for a link after this propagation result."""
        return MembershipStatus.SYNCED if self.ok else MembershipStatus.FAILED


@runtime_checkable
class PeerGateway(Protocol):
    """Interface for calls to the peer service.

    Membership calls always take ``(company_id, user_id)``; the peer decides
    which of the two it owns.
    """

    resource: str

    async def exists(self, entity_id: uuid.UUID) -> PeerResult:
        """Check whether the peer holds the entity."""
        ...

    async def fetch_snapshot(self, entity_id: uuid.UUID) -> PeerResult:
        """Fetch the peer's record for enrichment. Never mutates."""
        ...

    async def add_membership(self, company_id: uuid.UUID, user_id: uuid.UUID) -> PeerResult:
        """Ask the peer to record its half of a link."""
        ...

    async def remove_membership(self, company_id: uuid.UUID, user_id: uuid.UUID) -> PeerResult:
        """Ask the peer to drop its half of a link."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        ...


class HttpPeerGateway:
    """Peer gateway over HTTP using httpx with a bounded timeout."""

    def __init__(
        self,
        resource: str,
        base_url: str = "",
        timeout: float = 2.0,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.resource = resource
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def exists(self, entity_id: uuid.UUID) -> PeerResult:
        return await self._read(entity_id, "exists")

    async def fetch_snapshot(self, entity_id: uuid.UUID) -> PeerResult:
        return await self._read(entity_id, "fetch_snapshot")

    async def add_membership(self, company_id: uuid.UUID, user_id: uuid.UUID) -> PeerResult:
        path = f"/{self.resource}/{company_id}/members/{user_id}"
        response = await self._send("POST", path, "add_membership")
        if isinstance(response, PeerResult):
            return response
        if response.status_code == httpx.codes.CONFLICT:
            # The peer already holds the link; the desired state is in place.
            logger.warning("Peer %s already holds membership %s/%s", self.resource, company_id, user_id)
            return PeerResult(outcome=PeerOutcome.OK, detail="already a member")
        return self._classify(response, "add_membership", path)

    async def remove_membership(self, company_id: uuid.UUID, user_id: uuid.UUID) -> PeerResult:
        path = f"/{self.resource}/{company_id}/members/{user_id}"
        response = await self._send("DELETE", path, "remove_membership")
        if isinstance(response, PeerResult):
            return response
        return self._classify(response, "remove_membership", path)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _read(self, entity_id: uuid.UUID, op: str) -> PeerResult:
        path = f"/{self.resource}/{entity_id}"
        response = await self._send("GET", path, op)
        if isinstance(response, PeerResult):
            return response
        result = self._classify(response, op, path)
        if not result.ok:
            return result
        try:
            record = response.json()
        except ValueError:
            logger.warning("Peer %s returned a non-JSON body for %s", self.resource, path)
            return PeerResult(outcome=PeerOutcome.PEER_UNAVAILABLE, detail="malformed response body")
        return PeerResult(outcome=PeerOutcome.OK, record=record)

    async def _send(self, method: str, path: str, op: str) -> httpx.Response | PeerResult:
        try:
            return await self._client.request(method, path)
        except httpx.TimeoutException:
            logger.warning("Peer %s timed out on %s %s", self.resource, op, path)
            return PeerResult(outcome=PeerOutcome.PEER_UNAVAILABLE, detail="timed out")
        except httpx.HTTPError as exc:
            logger.warning("Peer %s unreachable on %s %s: %s", self.resource, op, path, exc)
            return PeerResult(outcome=PeerOutcome.PEER_UNAVAILABLE, detail=str(exc) or type(exc).__name__)

    def _classify(self, response: httpx.Response, op: str, path: str) -> PeerResult:
        if response.is_success:
            return PeerResult(outcome=PeerOutcome.OK)
        if response.status_code == httpx.codes.NOT_FOUND:
            logger.info("Peer %s reported not found on %s %s", self.resource, op, path)
            return PeerResult(outcome=PeerOutcome.COUNTERPART_NOT_FOUND, detail="not found")
        logger.warning("Peer %s answered %d on %s %s", self.resource, response.status_code, op, path)
        return PeerResult(outcome=PeerOutcome.PEER_UNAVAILABLE, detail=f"HTTP {response.status_code}")


class InMemoryPeerGateway:
    """In-memory stub implementation for development and tests.

    Keeps a journal of every call in ``calls`` and can simulate an outage
    globally (``unavailable``) or for selected operations (``failing_ops``).
    """

    def __init__(self, resource: str = COMPANIES) -> None:
        self.resource = resource
        self.records: dict[uuid.UUID, dict[str, Any]] = {}
        self.memberships: set[tuple[uuid.UUID, uuid.UUID]] = set()
        self.calls: list[tuple[str, ...]] = []
        self.unavailable = False
        self.failing_ops: set[str] = set()

    def seed(self, entity_id: uuid.UUID, **fields: Any) -> None:
        """Seed a peer-side record for testing."""
        self.records[entity_id] = {"id": str(entity_id), **fields}

    def calls_to(self, op: str) -> list[tuple[str, ...]]:
        """Return the journalled calls of one operation."""
        return [call for call in self.calls if call[0] == op]

    async def exists(self, entity_id: uuid.UUID) -> PeerResult:
        self.calls.append(("exists", str(entity_id)))
        return self._lookup("exists", entity_id)

    async def fetch_snapshot(self, entity_id: uuid.UUID) -> PeerResult:
        self.calls.append(("fetch_snapshot", str(entity_id)))
        return self._lookup("fetch_snapshot", entity_id)

    async def add_membership(self, company_id: uuid.UUID, user_id: uuid.UUID) -> PeerResult:
        self.calls.append(("add_membership", str(company_id), str(user_id)))
        result = self._lookup("add_membership", self._owned_id(company_id, user_id))
        if result.ok:
            if self.resource == USERS:
                # A user belongs to at most one company.
                self.memberships = {m for m in self.memberships if m[1] != user_id}
            self.memberships.add((company_id, user_id))
            return PeerResult(outcome=PeerOutcome.OK)
        return result

    async def remove_membership(self, company_id: uuid.UUID, user_id: uuid.UUID) -> PeerResult:
        self.calls.append(("remove_membership", str(company_id), str(user_id)))
        result = self._lookup("remove_membership", self._owned_id(company_id, user_id))
        if result.ok:
            self.memberships.discard((company_id, user_id))
            return PeerResult(outcome=PeerOutcome.OK)
        return result

    async def aclose(self) -> None:
        return None

    def _owned_id(self, company_id: uuid.UUID, user_id: uuid.UUID) -> uuid.UUID:
        return company_id if self.resource == COMPANIES else user_id

    def _lookup(self, op: str, entity_id: uuid.UUID) -> PeerResult:
        if self.unavailable or op in self.failing_ops:
            return PeerResult(outcome=PeerOutcome.PEER_UNAVAILABLE, detail="simulated outage")
        record = self.records.get(entity_id)
        if record is None:
            return PeerResult(outcome=PeerOutcome.COUNTERPART_NOT_FOUND, detail="not found")
        return PeerResult(outcome=PeerOutcome.OK, record=record)


def peer_resource_for(role: ServiceRole | str) -> str:
    """Return the peer's resource collection for a service role."""
    return USERS if ServiceRole(role) == ServiceRole.COMPANY else COMPANIES


def build_peer_gateway(settings: Settings) -> PeerGateway:
    """Build the gateway to the peer service from settings."""
    resource = peer_resource_for(settings.service_role)
    if settings.peer_base_url is None:
        logger.warning("No peer_base_url configured; using an in-memory %s peer", resource)
        return InMemoryPeerGateway(resource)
    return HttpPeerGateway(resource, settings.peer_base_url, settings.peer_timeout_seconds)
