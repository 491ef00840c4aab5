"""Idempotency record model."""

from typing import Optional

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from meterline.models._base import Base


class IdempotencyRecord(Base):
    """Outcome of a guarded mutation, keyed by (scope, operation kind, key).

    The row is claimed in the same transaction as the mutation's side effect,
    so it exists if and only if that side effect committed.
    """

    __tablename__ = "idempotency_record"

    scope_key: Mapped[str] = mapped_column(String(512), nullable=False)
    operation_kind: Mapped[str] = mapped_column(String(64), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    fingerprint: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "scope_key", "operation_kind", "idempotency_key", name="uq_idempotency_record_key"
        ),
    )
