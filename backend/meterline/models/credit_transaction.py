"""Credit transaction model."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from meterline.models._base import Base, ScopedMixin


class CreditTransaction(Base, ScopedMixin):
    """Append-only credit ledger entry.

    ``amount`` is signed. ``balance_after`` is persisted as written and is the
    audit trail. ``sequence`` numbers the rows of one (scope, feature) without
    gaps; replaying the signed amounts in that order reproduces every
    ``balance_after``.
    """

    __tablename__ = "credit_transaction"

    feature_key: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False, default="")
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    operation_kind: Mapped[str] = mapped_column(String(64), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_metadata: Mapped[dict] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )

    __table_args__ = (
        UniqueConstraint(
            "scope_key",
            "operation_kind",
            "idempotency_key",
            name="uq_credit_transaction_idempotency",
        ),
        UniqueConstraint(
            "scope_key", "feature_key", "sequence", name="uq_credit_transaction_sequence"
        ),
        Index("idx_credit_transaction_scope_created", "scope_key", "created_at"),
    )
