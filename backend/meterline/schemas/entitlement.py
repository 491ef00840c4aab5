"""Entitlement schemas."""

from decimal import Decimal
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from meterline.schemas.scope import Scope


class UsagePeriod(str, Enum):
    """Calendar period a usage limit applies to."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class MeteringType(str, Enum):
    """How usage events aggregate into a metric."""

    NONE = "NONE"
    COUNT = "COUNT"
    SUM = "SUM"


class LimitEnforcement(str, Enum):
    """What happens when an action would exceed the limit."""

    HARD = "HARD"
    SOFT = "SOFT"


class OverageMode(str, Enum):
    """How over-limit usage is paid for."""

    NONE = "NONE"
    INTERNAL_CREDITS = "INTERNAL_CREDITS"
    STRIPE_METERED = "STRIPE_METERED"


class Entitlement(BaseModel):
    """Per-tenant, per-feature permission and limit definition.

    Comes from plan configuration and is read-only to this service.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    feature_key: str = Field(..., min_length=1)
    title: str = ""
    description: Optional[str] = None
    category: str = "general"
    unit: str = "units"

    enabled: bool = True
    limit: Optional[int] = Field(None, ge=0, description="None only when unlimited")
    is_unlimited: bool = False

    metering_type: MeteringType = MeteringType.COUNT
    period: UsagePeriod = UsagePeriod.MONTHLY
    enforcement: LimitEnforcement = LimitEnforcement.HARD
    overage_mode: OverageMode = OverageMode.NONE
    credits_per_unit: Decimal = Field(Decimal("1"), ge=0)

    credit_enabled: bool = False
    credit_expires: bool = False
    recurring_credit_grant: Optional[Decimal] = Field(None, gt=0)
    rollover_credits: bool = False

    @model_validator(mode="after")
    def _limit_required_unless_unlimited(self) -> "Entitlement":
        if not self.is_unlimited and self.limit is None:
            raise ValueError("limit is required unless the entitlement is unlimited")
        return self


CheckReason = Literal[
    "granted", "within_limit", "unlimited", "disabled", "over_limit", "no_entitlement"
]


class EntitlementCheck(BaseModel):
    """Ephemeral result of evaluating an action against an entitlement."""

    allowed: bool
    reason: CheckReason
    current_usage: Optional[int] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
    is_overage: bool = False
    overage_units: int = 0
    credits_required: Decimal = Decimal("0")


class EntitlementCheckRequest(BaseModel):
    """Request schema for checking an entitlement via API."""

    feature_key: str = Field(..., min_length=1)
    quantity: int = Field(1, gt=0)


class EntitlementsResponse(BaseModel):
    """Effective entitlements for a scope, keyed by feature."""

    scope: Scope
    entitlements: dict[str, Entitlement]
