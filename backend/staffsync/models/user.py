# ruff: noqa: TC003
from __future__ import annotations

import uuid

import sqlalchemy as sa
from sqlmodel import Field

from staffsync.models.base import TimestampMixin, UUIDBase


class User(UUIDBase, TimestampMixin, table=True):
    """An employee owned by the user service."""

    __tablename__ = "app_user"
    __table_args__ = (sa.UniqueConstraint("phone", name="uq_user_phone"),)

    first_name: str = Field(max_length=100)
    last_name: str = Field(max_length=100)
    phone: str = Field(max_length=32)
    # Opaque id owned by the company service; no foreign key across the boundary.
    company_id: uuid.UUID | None = Field(default=None, index=True)
    membership_status: str | None = Field(default=None, max_length=50)
