# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from staffsync.models.enums import MembershipStatus


class CreateCompanyRequest(BaseModel):
    """Request body for creating a company with an optional initial employee set."""

    name: str = Field(min_length=1, max_length=255)
    budget: int = Field(ge=0)
    employee_ids: set[uuid.UUID] = Field(default_factory=set)


class UpdateCompanyRequest(BaseModel):
    """Request body for updating a company's own fields."""

    name: str = Field(min_length=1, max_length=255)
    budget: int = Field(ge=0)


class CompanyMemberResponse(BaseModel):
    """The company's half of one membership link."""

    user_id: uuid.UUID
    status: MembershipStatus


class CompanyResponse(BaseModel):
    """Response schema for a company."""

    id: uuid.UUID
    name: str
    budget: int
    employee_ids: list[uuid.UUID]
    members: list[CompanyMemberResponse]
    created_at: datetime
    employees: list[dict[str, Any]] | None = None
    employees_load_error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class CompanyListResponse(BaseModel):
    """Paginated list of companies."""

    items: list[CompanyResponse]
    total: int
