"""Usage ledger: idempotent event recording and window summaries.

One instance lives in the container. Writes go through the idempotency guard
so a retried request never produces a second event; reads open their own
plain session and recompute from the event log on every call.
"""

from datetime import datetime
from typing import Callable, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.core.exceptions import InvalidRequestError
from meterline.core.logging import logger
from meterline.db.session import SessionFactory, get_db_context
from meterline.domains.entitlements.protocols import EntitlementRepositoryProtocol
from meterline.domains.idempotency.protocols import IdempotencyGuardProtocol
from meterline.domains.idempotency.types import OperationKind, fingerprint_request
from meterline.domains.usage.protocols import UsageEventRepositoryProtocol, UsageLedgerProtocol
from meterline.domains.usage.types import (
    aggregate_events,
    as_utc,
    build_usage_metric,
    get_usage_window,
    resolve_recorded_quantity,
)
from meterline.models._base import utc_now
from meterline.schemas.entitlement import Entitlement, MeteringType, UsagePeriod
from meterline.schemas.scope import Scope
from meterline.schemas.usage import UsageEvent, UsageSummary, UsageWindow


class UsageLedger(UsageLedgerProtocol):
    """Append-only usage store with on-demand aggregation."""

    def __init__(
        self,
        usage_repo: UsageEventRepositoryProtocol,
        entitlement_repo: EntitlementRepositoryProtocol,
        guard: IdempotencyGuardProtocol,
        session_factory: SessionFactory = get_db_context,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the ledger with its repositories and the idempotency guard."""
        self._usage_repo = usage_repo
        self._entitlement_repo = entitlement_repo
        self._guard = guard
        self._session_factory = session_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

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
        async with self._session_factory() as db:
            entitlement = await self._entitlement_repo.get(
                db, scope=scope, feature_key=feature_key
            )
        if entitlement is None:
            raise InvalidRequestError(f"Unknown feature '{feature_key}' for this scope")

        return await self._guard.execute(
            scope,
            OperationKind.USAGE_RECORD,
            idempotency_key,
            lambda db: self._append(
                db, scope, entitlement, quantity, idempotency_key, action_key, metadata
            ),
            UsageEvent,
            fingerprint=self._fingerprint(entitlement, quantity, action_key),
        )

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
        return await self._guard.run_in(
            db,
            scope,
            OperationKind.USAGE_RECORD,
            idempotency_key,
            lambda inner: self._append(
                inner, scope, entitlement, quantity, idempotency_key, action_key, metadata
            ),
            UsageEvent,
            fingerprint=self._fingerprint(entitlement, quantity, action_key),
        )

    async def _append(
        self,
        db: AsyncSession,
        scope: Scope,
        entitlement: Entitlement,
        quantity: int,
        idempotency_key: str,
        action_key: Optional[str],
        metadata: Optional[dict[str, str]],
    ) -> UsageEvent:
        recorded = resolve_recorded_quantity(entitlement, quantity)
        event = UsageEvent(
            id=uuid4(),
            scope=scope,
            feature_key=entitlement.feature_key,
            quantity=recorded,
            action_key=action_key,
            idempotency_key=idempotency_key,
            created_at=as_utc(self._clock()),
            metadata=metadata or {},
        )
        await self._usage_repo.add(db, event=event)
        logger.with_context(scope=scope.scope_key, feature_key=entitlement.feature_key).info(
            f"Recorded usage quantity={recorded} key='{idempotency_key}'"
        )
        return event

    @staticmethod
    def _fingerprint(entitlement: Entitlement, quantity: int, action_key: Optional[str]) -> str:
        return fingerprint_request(
            feature_key=entitlement.feature_key,
            quantity=resolve_recorded_quantity(entitlement, quantity),
            action_key=action_key,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

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
        window = get_usage_window(period, as_of or self._clock(), periods_back)
        async with self._session_factory() as db:
            entitlement = await self._entitlement_repo.get(
                db, scope=scope, feature_key=feature_key
            )
            if entitlement is None:
                raise InvalidRequestError(f"Unknown feature '{feature_key}' for this scope")
            events = await self._usage_repo.list_in_window(
                db,
                scope=scope,
                window=window,
                feature_keys=[feature_key],
                include_sub_accounts=include_sub_accounts,
            )

        current = aggregate_events(events, entitlement.metering_type)
        return UsageSummary(
            scope=scope,
            period=period,
            window=window,
            metrics=[build_usage_metric(entitlement, current, period)],
            events=events,
        )

    async def summarize_all(
        self,
        scope: Scope,
        period: UsagePeriod,
        as_of: Optional[datetime] = None,
        periods_back: int = 0,
        include_sub_accounts: bool = False,
    ) -> UsageSummary:
        """Metrics and events for every metered entitlement of the scope."""
        window = get_usage_window(period, as_of or self._clock(), periods_back)
        async with self._session_factory() as db:
            entitlements = await self._entitlement_repo.list_for_scope(db, scope=scope)
            metered = {
                key: ent
                for key, ent in entitlements.items()
                if ent.metering_type != MeteringType.NONE
            }
            events = await self._usage_repo.list_in_window(
                db,
                scope=scope,
                window=window,
                feature_keys=sorted(metered),
                include_sub_accounts=include_sub_accounts,
            )

        metrics = []
        for key in sorted(metered):
            entitlement = metered[key]
            feature_events = [e for e in events if e.feature_key == key]
            current = aggregate_events(feature_events, entitlement.metering_type)
            metrics.append(build_usage_metric(entitlement, current, period))

        logger.with_context(scope=scope.scope_key).debug(
            f"Summarized {len(events)} events across {len(metrics)} features "
            f"for {window.period_start.isoformat()}"
        )
        return UsageSummary(scope=scope, period=period, window=window, metrics=metrics, events=events)

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
        """Scalar usage for the window containing ``as_of``.

        Reads through ``db`` when given, so a caller holding a unit of work
        sees its own uncommitted events.
        """
        window = get_usage_window(period, as_of or self._clock())
        if db is not None:
            return await self._aggregate(
                db, scope, feature_key, window, metering_type, include_sub_accounts
            )
        async with self._session_factory() as session:
            return await self._aggregate(
                session, scope, feature_key, window, metering_type, include_sub_accounts
            )

    async def _aggregate(
        self,
        db: AsyncSession,
        scope: Scope,
        feature_key: str,
        window: UsageWindow,
        metering_type: MeteringType,
        include_sub_accounts: bool,
    ) -> int:
        return await self._usage_repo.aggregate_in_window(
            db,
            scope=scope,
            feature_key=feature_key,
            window=window,
            metering_type=metering_type,
            include_sub_accounts=include_sub_accounts,
        )
