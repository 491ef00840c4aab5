"""Base models for the application."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


def utc_now() -> datetime:
    """Current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models.

    Every table gets a UUID primary key plus created/modified timestamps.
    """

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    modified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class ScopedMixin:
    """Columns that file a row under a tenant scope.

    ``scope_key`` is the canonical string used in unique indexes; the broken-out
    agency/sub-account columns serve rollup queries.
    """

    @declared_attr
    def scope_kind(cls) -> Mapped[str]:  # noqa: N805
        return mapped_column(String(16), nullable=False)

    @declared_attr
    def scope_key(cls) -> Mapped[str]:  # noqa: N805
        return mapped_column(String(512), nullable=False)

    @declared_attr
    def agency_id(cls) -> Mapped[str]:  # noqa: N805
        return mapped_column(String(255), nullable=False)

    @declared_attr
    def sub_account_id(cls) -> Mapped[Optional[str]]:  # noqa: N805
        return mapped_column(String(255), nullable=True)
