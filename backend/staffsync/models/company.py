# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from staffsync.models.base import TimestampMixin, UUIDBase
from staffsync.models.enums import MembershipStatus


def _now_utc() -> datetime:
    return datetime.now(UTC)


class Company(UUIDBase, TimestampMixin, table=True):
    """A company owned by the company service."""

    __tablename__ = "company"
    __table_args__ = (sa.UniqueConstraint("name", name="uq_company_name"),)

    name: str = Field(max_length=255)
    budget: int = Field(ge=0)


class CompanyEmployee(SQLModel, table=True):
    """The company service's half of a membership: one row per employee id."""

    __tablename__ = "company_employee"

    company_id: uuid.UUID = Field(
        sa_column=sa.Column(sa.Uuid, sa.ForeignKey("company.id", ondelete="CASCADE"), primary_key=True),
    )
    # Opaque id owned by the user service; no foreign key across the boundary.
    user_id: uuid.UUID = Field(primary_key=True, index=True)
    status: str = Field(
        default=MembershipStatus.PENDING, max_length=50, sa_column_kwargs={"server_default": "PENDING"}
    )
    updated_at: datetime = Field(
        default_factory=_now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now(), "onupdate": sa.func.now()},
    )
