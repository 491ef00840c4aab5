"""Materialized credit position model."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from meterline.models._base import Base, ScopedMixin


class CreditPosition(Base, ScopedMixin):
    """Running balance for one (scope, feature).

    A cache over ``credit_transaction``: ``balance`` always equals the signed
    sum of that pair's transactions. Writers lock this row (SELECT ... FOR
    UPDATE) for the length of their unit of work.
    """

    __tablename__ = "credit_position"

    feature_key: Mapped[str] = mapped_column(String(255), nullable=False)
    balance: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False, default=Decimal("0"))
    reserved: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False, default=Decimal("0"))
    lifetime_credited: Mapped[Decimal] = mapped_column(
        Numeric(20, 6), nullable=False, default=Decimal("0")
    )
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    last_sequence: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    next_expiry_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("scope_key", "feature_key", name="uq_credit_position_scope_feature"),
        Index("idx_credit_position_next_expiry", "next_expiry_at"),
    )
