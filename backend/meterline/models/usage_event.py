"""Usage event model."""

from typing import Optional

from sqlalchemy import BigInteger, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from meterline.models._base import Base, ScopedMixin


class UsageEvent(Base, ScopedMixin):
    """Append-only record of one metered action. Never updated or deleted."""

    __tablename__ = "usage_event"

    feature_key: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    operation_kind: Mapped[str] = mapped_column(String(64), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    event_metadata: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint(
            "scope_key", "operation_kind", "idempotency_key", name="uq_usage_event_idempotency"
        ),
        Index("idx_usage_event_scope_feature_created", "scope_key", "feature_key", "created_at"),
        Index("idx_usage_event_agency_feature_created", "agency_id", "feature_key", "created_at"),
    )
