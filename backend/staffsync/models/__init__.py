from sqlmodel import SQLModel

from staffsync.models.base import TimestampMixin, UUIDBase
from staffsync.models.company import Company, CompanyEmployee
from staffsync.models.enums import MembershipStatus, MutationState, PeerOutcome, ServiceRole
from staffsync.models.user import User

__all__ = [
    "Company",
    "CompanyEmployee",
    "MembershipStatus",
    "MutationState",
    "PeerOutcome",
    "SQLModel",
    "ServiceRole",
    "TimestampMixin",
    "UUIDBase",
    "User",
]
