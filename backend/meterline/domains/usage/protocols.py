"""Usage domain protocols: event storage and the ledger service over it."""

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.schemas.entitlement import Entitlement, MeteringType, UsagePeriod
from meterline.schemas.scope import Scope
from meterline.schemas.usage import UsageEvent, UsageSummary, UsageWindow


@runtime_checkable
class UsageEventRepositoryProtocol(Protocol):
    """Append-only access to usage events."""

    async def add(self, db: AsyncSession, *, event: UsageEvent) -> UsageEvent:
        """Append one event."""
        ...

    async def list_in_window(
        self,
        db: AsyncSession,
        *,
        scope: Scope,
        window: UsageWindow,
        feature_keys: Optional[list[str]] = None,
        include_sub_accounts: bool = False,
    ) -> list[UsageEvent]:
        """Events created inside ``window``, oldest first.

        ``include_sub_accounts`` widens an agency scope to every sub-account of
        that agency; it has no effect on sub-account scopes.
        """
        ...

    async def aggregate_in_window(
        self,
        db: AsyncSession,
        *,
        scope: Scope,
        feature_key: str,
        window: UsageWindow,
        metering_type: MeteringType,
        include_sub_accounts: bool = False,
    ) -> int:
        """Count (COUNT) or sum (SUM) of events in ``window``."""
        ...

    async def lock_feature(self, db: AsyncSession, *, scope: Scope, feature_key: str) -> None:
        """Serialize consumers of one (scope, feature) until ``db`` commits."""
        ...


@runtime_checkable
class UsageLedgerProtocol(Protocol):
    """Records usage and derives summaries. Owns its own DB sessions."""

    async def record_usage(
        self,
        scope: Scope,
        feature_key: str,
        quantity: int,
        idempotency_key: str,
        action_key: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> UsageEvent:
        """Append one usage event, at most once per idempotency key."""
        ...

    async def record_in(
        self,
        db: AsyncSession,
        scope: Scope,
        entitlement: Entitlement,
        quantity: int,
        idempotency_key: str,
        action_key: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> UsageEvent:
        """Record inside a unit of work the caller already opened."""
        ...

    async def summarize(
        self,
        scope: Scope,
        feature_key: str,
        period: UsagePeriod,
        as_of: Optional[datetime] = None,
        periods_back: int = 0,
        include_sub_accounts: bool = False,
    ) -> UsageSummary:
        """Metric and events for one feature over one calendar window."""
        ...

    async def summarize_all(
        self,
        scope: Scope,
        period: UsagePeriod,
        as_of: Optional[datetime] = None,
        periods_back: int = 0,
        include_sub_accounts: bool = False,
    ) -> UsageSummary:
        """Metrics and events for every metered entitlement of the scope."""
        ...

    async def current_usage(
        self,
        scope: Scope,
        feature_key: str,
        period: UsagePeriod,
        metering_type: MeteringType = MeteringType.COUNT,
        as_of: Optional[datetime] = None,
        include_sub_accounts: bool = False,
        db: Optional[AsyncSession] = None,
    ) -> int:
        """Scalar usage for the window containing ``as_of``."""
        ...
