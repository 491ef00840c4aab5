"""Usage schemas."""

from datetime import datetime
from typing import Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from meterline.schemas.credit import CreditTransaction
from meterline.schemas.entitlement import EntitlementCheck, UsagePeriod
from meterline.schemas.scope import Scope


class UsageEvent(BaseModel):
    """Immutable record of one metered action."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    scope: Scope
    feature_key: str
    quantity: int
    action_key: Optional[str] = None
    idempotency_key: str
    created_at: datetime
    metadata: dict[str, str] = Field(default_factory=dict)


class UsageWindow(BaseModel):
    """Half-open window ``[period_start, period_end)`` in UTC."""

    model_config = ConfigDict(frozen=True)

    period_start: datetime
    period_end: datetime

    def contains(self, moment: datetime) -> bool:
        """Whether ``moment`` falls inside the window."""
        return self.period_start <= moment < self.period_end


class UsageMetric(BaseModel):
    """Derived aggregate for one feature over one window."""

    key: str
    name: str
    description: Optional[str] = None
    current: int
    limit: Union[int, Literal["unlimited"]]
    unit: str
    period: UsagePeriod
    percentage: Optional[float] = None
    is_overage: bool = False
    overage_amount: int = 0


class UsageSummary(BaseModel):
    """Metrics plus constituent events for one scope and window."""

    scope: Scope
    period: UsagePeriod
    window: UsageWindow
    metrics: list[UsageMetric] = Field(default_factory=list)
    events: list[UsageEvent] = Field(default_factory=list)


class RecordUsageRequest(BaseModel):
    """Request schema for recording (consuming) usage via API."""

    feature_key: str = Field(..., min_length=1)
    quantity: int = Field(1, gt=0)
    idempotency_key: str = Field(..., min_length=1)
    action_key: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class ConsumeResult(BaseModel):
    """Outcome of check, record and (when needed) overage debit."""

    check: EntitlementCheck
    event: UsageEvent
    overage_transaction: Optional[CreditTransaction] = None
