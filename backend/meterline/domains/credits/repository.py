"""Credit repository backed by credit_transaction and credit_position."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import and_, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.credits.protocols import CreditRepositoryProtocol
from meterline.domains.credits.types import ZERO, CreditPosition
from meterline.domains.idempotency.types import OperationKind
from meterline.models._base import utc_now
from meterline.models.credit_position import CreditPosition as CreditPositionModel
from meterline.models.credit_transaction import CreditTransaction as CreditTransactionModel
from meterline.schemas.credit import CreditTransaction, CreditTransactionType
from meterline.schemas.scope import Scope, scope_from_ids


def _position_to_domain(row: CreditPositionModel) -> CreditPosition:
    return CreditPosition(
        scope=scope_from_ids(row.agency_id, row.sub_account_id),
        feature_key=row.feature_key,
        currency=row.currency,
        balance=row.balance,
        reserved=row.reserved,
        lifetime_credited=row.lifetime_credited,
        last_sequence=row.last_sequence,
        next_expiry_at=row.next_expiry_at,
        updated_at=row.modified_at,
    )


def _transaction_to_schema(row: CreditTransactionModel) -> CreditTransaction:
    return CreditTransaction(
        id=row.id,
        scope=scope_from_ids(row.agency_id, row.sub_account_id),
        feature_key=row.feature_key,
        type=CreditTransactionType(row.type),
        amount=row.amount,
        balance_after=row.balance_after,
        description=row.description or "",
        reference=row.reference,
        idempotency_key=row.idempotency_key,
        created_at=row.created_at,
        expires_at=row.expires_at,
        metadata=row.transaction_metadata or {},
    )


def _position_key(scope: Scope, feature_key: str):
    return and_(
        CreditPositionModel.scope_key == scope.scope_key,
        CreditPositionModel.feature_key == feature_key,
    )


class CreditRepository(CreditRepositoryProtocol):
    """Row-locking credit storage via direct queries."""

    async def lock_position(
        self, db: AsyncSession, *, scope: Scope, feature_key: str, currency: str
    ) -> CreditPosition:
        """Lock the position row for update, creating it when missing.

        The insert is a no-op when the row exists; the subsequent
        SELECT ... FOR UPDATE serializes every writer on this (scope, feature).
        """
        now = utc_now()
        create_stmt = (
            pg_insert(CreditPositionModel)
            .values(
                id=uuid4(),
                scope_kind=scope.kind,
                scope_key=scope.scope_key,
                agency_id=scope.agency_id,
                sub_account_id=scope.sub_account_id,
                feature_key=feature_key,
                balance=ZERO,
                reserved=ZERO,
                lifetime_credited=ZERO,
                currency=currency,
                last_sequence=0,
                created_at=now,
                modified_at=now,
            )
            .on_conflict_do_nothing(index_elements=["scope_key", "feature_key"])
        )
        await db.execute(create_stmt)

        query = (
            select(CreditPositionModel)
            .where(_position_key(scope, feature_key))
            .with_for_update()
        )
        row = (await db.execute(query)).scalar_one()
        return _position_to_domain(row)

    async def get_position(
        self, db: AsyncSession, *, scope: Scope, feature_key: str
    ) -> Optional[CreditPosition]:
        """Read a position without locking."""
        query = select(CreditPositionModel).where(_position_key(scope, feature_key))
        row = (await db.execute(query)).scalar_one_or_none()
        return _position_to_domain(row) if row else None

    async def list_positions(self, db: AsyncSession, *, scope: Scope) -> list[CreditPosition]:
        """Every position of a scope, ordered by feature."""
        query = (
            select(CreditPositionModel)
            .where(CreditPositionModel.scope_key == scope.scope_key)
            .order_by(CreditPositionModel.feature_key)
        )
        result = await db.execute(query)
        return [_position_to_domain(row) for row in result.scalars().all()]

    async def save_position(self, db: AsyncSession, *, position: CreditPosition) -> None:
        """Write back a locked position."""
        stmt = (
            update(CreditPositionModel)
            .where(_position_key(position.scope, position.feature_key))
            .values(
                balance=position.balance,
                reserved=position.reserved,
                lifetime_credited=position.lifetime_credited,
                last_sequence=position.last_sequence,
                next_expiry_at=position.next_expiry_at,
                modified_at=position.updated_at or utc_now(),
            )
        )
        await db.execute(stmt)

    async def add_transaction(
        self,
        db: AsyncSession,
        *,
        transaction: CreditTransaction,
        sequence: int,
        operation_kind: OperationKind,
    ) -> CreditTransaction:
        """Append one transaction row."""
        row = CreditTransactionModel(
            id=transaction.id,
            scope_kind=transaction.scope.kind,
            scope_key=transaction.scope.scope_key,
            agency_id=transaction.scope.agency_id,
            sub_account_id=transaction.scope.sub_account_id,
            feature_key=transaction.feature_key,
            sequence=sequence,
            type=transaction.type.value,
            amount=transaction.amount,
            balance_after=transaction.balance_after,
            description=transaction.description,
            reference=transaction.reference,
            operation_kind=operation_kind.value,
            idempotency_key=transaction.idempotency_key,
            expires_at=transaction.expires_at,
            transaction_metadata=dict(transaction.metadata),
            created_at=transaction.created_at,
            modified_at=transaction.created_at,
        )
        db.add(row)
        await db.flush()
        return transaction

    async def list_transactions(
        self, db: AsyncSession, *, scope: Scope, feature_key: str
    ) -> list[CreditTransaction]:
        """Full log of one (scope, feature), in sequence order."""
        query = (
            select(CreditTransactionModel)
            .where(
                CreditTransactionModel.scope_key == scope.scope_key,
                CreditTransactionModel.feature_key == feature_key,
            )
            .order_by(CreditTransactionModel.sequence)
        )
        result = await db.execute(query)
        return [_transaction_to_schema(row) for row in result.scalars().all()]

    async def recent_transactions(
        self,
        db: AsyncSession,
        *,
        scope: Scope,
        feature_key: Optional[str] = None,
        limit: int = 50,
    ) -> list[CreditTransaction]:
        """Newest transactions first, optionally for one feature."""
        query = select(CreditTransactionModel).where(
            CreditTransactionModel.scope_key == scope.scope_key
        )
        if feature_key is not None:
            query = query.where(CreditTransactionModel.feature_key == feature_key)
        query = query.order_by(
            CreditTransactionModel.created_at.desc(), CreditTransactionModel.sequence.desc()
        ).limit(limit)
        result = await db.execute(query)
        return [_transaction_to_schema(row) for row in result.scalars().all()]

    async def sum_amounts(self, db: AsyncSession, *, scope: Scope, feature_key: str) -> Decimal:
        """Signed sum of the log, computed by the store."""
        stmt = select(func.coalesce(func.sum(CreditTransactionModel.amount), 0)).where(
            CreditTransactionModel.scope_key == scope.scope_key,
            CreditTransactionModel.feature_key == feature_key,
        )
        result = await db.execute(stmt)
        return Decimal(result.scalar_one())

    async def list_due_positions(
        self, db: AsyncSession, *, as_of: datetime, limit: int = 500
    ) -> list[CreditPosition]:
        """Positions whose next expiry is at or before ``as_of``."""
        query = (
            select(CreditPositionModel)
            .where(CreditPositionModel.next_expiry_at <= as_of)
            .order_by(CreditPositionModel.next_expiry_at)
            .limit(limit)
        )
        result = await db.execute(query)
        return [_position_to_domain(row) for row in result.scalars().all()]
