"""Entitlement model (plan-configuration store)."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from meterline.models._base import Base


class Entitlement(Base):
    """Effective entitlement row written by plan configuration.

    Rows with ``sub_account_id`` set override the agency row for that
    sub-account. Read-only to this service.
    """

    __tablename__ = "entitlement"

    agency_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sub_account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    feature_key: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="general")
    unit: Mapped[str] = mapped_column(String(32), nullable=False, default="units")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_unlimited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metering_type: Mapped[str] = mapped_column(String(16), nullable=False, default="COUNT")
    period: Mapped[str] = mapped_column(String(16), nullable=False, default="MONTHLY")
    enforcement: Mapped[str] = mapped_column(String(16), nullable=False, default="HARD")
    overage_mode: Mapped[str] = mapped_column(String(32), nullable=False, default="NONE")
    credits_per_unit: Mapped[Decimal] = mapped_column(
        Numeric(20, 6), nullable=False, default=Decimal("1")
    )
    credit_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    credit_expires: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurring_credit_grant: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6), nullable=True)
    rollover_credits: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint(
            "agency_id", "sub_account_id", "feature_key", name="uq_entitlement_scope_feature"
        ),
    )
