"""Fake usage event repository for testing."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.usage.protocols import UsageEventRepositoryProtocol
from meterline.domains.usage.types import aggregate_events
from meterline.schemas.entitlement import MeteringType
from meterline.schemas.scope import AgencyScope, Scope
from meterline.schemas.usage import UsageEvent, UsageWindow


class FakeUsageEventRepository(UsageEventRepositoryProtocol):
    """In-memory fake for UsageEventRepositoryProtocol."""

    def __init__(self) -> None:
        """Initialize empty in-memory store."""
        self._events: list[UsageEvent] = []
        self._calls: list[tuple] = []

    def seed(self, *events: UsageEvent) -> None:
        """Add pre-existing events."""
        self._events.extend(events)

    @property
    def events(self) -> list[UsageEvent]:
        """Every stored event, in insertion order."""
        return list(self._events)

    def call_count(self, method: str) -> int:
        """Return the number of times a method was called."""
        return sum(1 for name, *_ in self._calls if name == method)

    def snapshot(self) -> list[UsageEvent]:
        """Events are frozen, so a shallow copy is a full snapshot."""
        return list(self._events)

    def restore(self, state: list[UsageEvent]) -> None:
        """Replace the events with a snapshot."""
        self._events = list(state)

    def _matches(self, event: UsageEvent, scope: Scope, include_sub_accounts: bool) -> bool:
        if include_sub_accounts and isinstance(scope, AgencyScope):
            return event.scope.agency_id == scope.agency_id
        return event.scope.scope_key == scope.scope_key

    async def add(self, db: AsyncSession, *, event: UsageEvent) -> UsageEvent:
        """Append one event."""
        self._calls.append(("add", event))
        self._events.append(event)
        return event

    async def list_in_window(
        self,
        db: AsyncSession,
        *,
        scope: Scope,
        window: UsageWindow,
        feature_keys: Optional[list[str]] = None,
        include_sub_accounts: bool = False,
    ) -> list[UsageEvent]:
        """Events created inside ``window``, oldest first."""
        self._calls.append(("list_in_window", scope, window))
        matched = [
            e
            for e in self._events
            if self._matches(e, scope, include_sub_accounts)
            and window.contains(e.created_at)
            and (feature_keys is None or e.feature_key in feature_keys)
        ]
        return sorted(matched, key=lambda e: e.created_at)

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
        """Count or sum of events in ``window``."""
        self._calls.append(("aggregate_in_window", scope, feature_key, window))
        events = await self.list_in_window(
            db,
            scope=scope,
            window=window,
            feature_keys=[feature_key],
            include_sub_accounts=include_sub_accounts,
        )
        return aggregate_events(events, metering_type)

    async def lock_feature(self, db: AsyncSession, *, scope: Scope, feature_key: str) -> None:
        """No-op; the fake session factory already serializes units of work."""
        self._calls.append(("lock_feature", scope, feature_key))
