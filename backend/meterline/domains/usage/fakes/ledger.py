"""Fake usage ledger for testing.

Returns configured usage numbers without touching any repository.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.usage.protocols import UsageLedgerProtocol
from meterline.domains.usage.types import get_usage_window
from meterline.schemas.entitlement import Entitlement, MeteringType, UsagePeriod
from meterline.schemas.scope import Scope
from meterline.schemas.usage import UsageEvent, UsageSummary


class FakeUsageLedger(UsageLedgerProtocol):
    """Test implementation of UsageLedgerProtocol.

    Usage:
        ledger = FakeUsageLedger()
        ledger.set_usage(scope, "exports", 95)

        check = await evaluator.check(scope, "exports", quantity=10)
        assert check.current_usage == 95
    """

    def __init__(self) -> None:
        """Initialize with zero usage everywhere."""
        self._usage: dict[tuple[str, str], int] = {}
        self.recorded: list[UsageEvent] = []
        self.current_usage_calls: list[tuple[str, str, UsagePeriod, bool]] = []

    def set_usage(self, scope: Scope, feature_key: str, current: int) -> None:
        """Configure the value ``current_usage`` returns."""
        self._usage[(scope.scope_key, feature_key)] = current

    async def record_usage(
        self,
        scope: Scope,
        feature_key: str,
        quantity: int,
        idempotency_key: str,
        action_key: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> UsageEvent:
        """Record the event in memory and bump the configured usage."""
        event = UsageEvent(
            id=uuid4(),
            scope=scope,
            feature_key=feature_key,
            quantity=quantity,
            action_key=action_key,
            idempotency_key=idempotency_key,
            created_at=datetime.now(timezone.utc),
            metadata=metadata or {},
        )
        self.recorded.append(event)
        key = (scope.scope_key, feature_key)
        self._usage[key] = self._usage.get(key, 0) + quantity
        return event

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
        """Same as ``record_usage``; the session is ignored."""
        return await self.record_usage(
            scope, entitlement.feature_key, quantity, idempotency_key, action_key, metadata
        )

    async def summarize(
        self,
        scope: Scope,
        feature_key: str,
        period: UsagePeriod,
        as_of: Optional[datetime] = None,
        periods_back: int = 0,
        include_sub_accounts: bool = False,
    ) -> UsageSummary:
        """Empty summary for the requested window."""
        return UsageSummary(
            scope=scope, period=period, window=get_usage_window(period, as_of, periods_back)
        )

    async def summarize_all(
        self,
        scope: Scope,
        period: UsagePeriod,
        as_of: Optional[datetime] = None,
        periods_back: int = 0,
        include_sub_accounts: bool = False,
    ) -> UsageSummary:
        """Empty summary for the requested window."""
        return UsageSummary(
            scope=scope, period=period, window=get_usage_window(period, as_of, periods_back)
        )

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
        """Return the configured usage, 0 by default."""
        self.current_usage_calls.append((scope.scope_key, feature_key, period, include_sub_accounts))
        return self._usage.get((scope.scope_key, feature_key), 0)
