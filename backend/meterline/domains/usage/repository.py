"""Usage event repository backed by the usage_event table."""

from typing import Optional

from sqlalchemy import and_, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.idempotency.types import OperationKind
from meterline.domains.usage.protocols import UsageEventRepositoryProtocol
from meterline.models.usage_event import UsageEvent as UsageEventModel
from meterline.schemas.entitlement import MeteringType
from meterline.schemas.scope import AgencyScope, Scope, scope_from_ids
from meterline.schemas.usage import UsageEvent, UsageWindow


def _scope_clause(scope: Scope, include_sub_accounts: bool):
    if include_sub_accounts and isinstance(scope, AgencyScope):
        return UsageEventModel.agency_id == scope.agency_id
    return UsageEventModel.scope_key == scope.scope_key


def _window_clause(window: UsageWindow):
    return and_(
        UsageEventModel.created_at >= window.period_start,
        UsageEventModel.created_at < window.period_end,
    )


def _to_schema(row: UsageEventModel) -> UsageEvent:
    return UsageEvent(
        id=row.id,
        scope=scope_from_ids(row.agency_id, row.sub_account_id),
        feature_key=row.feature_key,
        quantity=row.quantity,
        action_key=row.action_key,
        idempotency_key=row.idempotency_key,
        created_at=row.created_at,
        metadata=row.event_metadata or {},
    )


class UsageEventRepository(UsageEventRepositoryProtocol):
    """Appends and queries usage events via direct queries."""

    async def add(self, db: AsyncSession, *, event: UsageEvent) -> UsageEvent:
        """Append one event."""
        row = UsageEventModel(
            id=event.id,
            scope_kind=event.scope.kind,
            scope_key=event.scope.scope_key,
            agency_id=event.scope.agency_id,
            sub_account_id=event.scope.sub_account_id,
            feature_key=event.feature_key,
            quantity=event.quantity,
            action_key=event.action_key,
            operation_kind=OperationKind.USAGE_RECORD.value,
            idempotency_key=event.idempotency_key,
            event_metadata=dict(event.metadata),
            created_at=event.created_at,
            modified_at=event.created_at,
        )
        db.add(row)
        await db.flush()
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
        query = select(UsageEventModel).where(
            _scope_clause(scope, include_sub_accounts), _window_clause(window)
        )
        if feature_keys is not None:
            query = query.where(UsageEventModel.feature_key.in_(feature_keys))
        query = query.order_by(UsageEventModel.created_at, UsageEventModel.id)

        result = await db.execute(query)
        return [_to_schema(row) for row in result.scalars().all()]

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
        if metering_type == MeteringType.NONE:
            return 0
        if metering_type == MeteringType.COUNT:
            measure = func.count(UsageEventModel.id)
        else:
            measure = func.coalesce(func.sum(UsageEventModel.quantity), 0)

        stmt = select(measure).where(
            _scope_clause(scope, include_sub_accounts),
            _window_clause(window),
            UsageEventModel.feature_key == feature_key,
        )
        result = await db.execute(stmt)
        return int(result.scalar_one() or 0)

    async def lock_feature(self, db: AsyncSession, *, scope: Scope, feature_key: str) -> None:
        """Take a transaction-scoped advisory lock on (scope, feature)."""
        await db.execute(
            text("SELECT pg_advisory_xact_lock(hashtextextended(:lock_key, 0))"),
            {"lock_key": f"usage:{scope.scope_key}:{feature_key}"},
        )
