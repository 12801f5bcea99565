from __future__ import annotations

import enum


class ServiceRole(enum.StrEnum):
    """Which half of the split domain a process serves."""

    COMPANY = "company"
    USER = "user"


class MembershipStatus(enum.StrEnum):
    """Propagation state of the local half of a company/user link."""

    PENDING = "PENDING"
    SYNCED = "SYNCED"
    UNVERIFIED = "UNVERIFIED"
    FAILED = "FAILED"


class PeerOutcome(enum.StrEnum):
    """Result of a call to the peer service."""

    OK = "OK"
    COUNTERPART_NOT_FOUND = "COUNTERPART_NOT_FOUND"
    PEER_UNAVAILABLE = "PEER_UNAVAILABLE"


class MutationState(enum.StrEnum):
    """Progress of a single membership-affecting mutation."""

    VALIDATING = "VALIDATING"
    LOCAL_WRITE_APPLIED = "LOCAL_WRITE_APPLIED"
    REMOTE_SYNC_ATTEMPTED = "REMOTE_SYNC_ATTEMPTED"
    DONE = "DONE"
    ABORTED = "ABORTED"
