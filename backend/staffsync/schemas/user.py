# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from staffsync.models.enums import MembershipStatus

PHONE_PATTERN = r"^\+?[0-9][0-9\- ()]{2,30}$"


class CreateUserRequest(BaseModel):
    """Request body for creating a user, optionally under a company."""

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str = Field(pattern=PHONE_PATTERN, max_length=32)
    company_id: uuid.UUID | None = None


class UpdateUserRequest(BaseModel):
    """Request body for updating a user.

    ``phone`` must match the stored value; a different ``company_id``
    reassociates the user and an explicit ``null`` detaches it. The field
    is required so that leaving it out never detaches by accident.
    """

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str = Field(pattern=PHONE_PATTERN, max_length=32)
    company_id: uuid.UUID | None


class UserResponse(BaseModel):
    """Response schema for a user."""

    id: uuid.UUID
    first_name: str
    last_name: str
    phone: str
    company_id: uuid.UUID | None
    membership_status: MembershipStatus | None
    created_at: datetime
    company: dict[str, Any] | None = None
    company_load_error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class UserListResponse(BaseModel):
    """Paginated list of users."""

    items: list[UserResponse]
    total: int
