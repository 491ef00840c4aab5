"""Idempotency repository backed by the idempotency_record table."""

from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import and_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.idempotency.protocols import IdempotencyRepositoryProtocol
from meterline.domains.idempotency.types import (
    IdempotencyClaim,
    IdempotencyStatus,
    OperationKind,
)
from meterline.models._base import utc_now
from meterline.models.idempotency_record import IdempotencyRecord


class IdempotencyRepository(IdempotencyRepositoryProtocol):
    """Claims keys with INSERT ... ON CONFLICT DO NOTHING.

    A concurrent claimer blocks on the unique index until the first
    transaction resolves, then either sees the committed record or takes over
    the key if the first one rolled back.
    """

    @staticmethod
    def _key_filter(scope_key: str, kind: OperationKind, idempotency_key: str):
        return and_(
            IdempotencyRecord.scope_key == scope_key,
            IdempotencyRecord.operation_kind == kind.value,
            IdempotencyRecord.idempotency_key == idempotency_key,
        )

    async def claim(
        self,
        db: AsyncSession,
        *,
        scope_key: str,
        kind: OperationKind,
        idempotency_key: str,
        fingerprint: Optional[str],
    ) -> IdempotencyClaim:
        """Insert an in-flight record for the key, or describe the existing one."""
        now = utc_now()
        stmt = (
            pg_insert(IdempotencyRecord)
            .values(
                id=uuid4(),
                scope_key=scope_key,
                operation_kind=kind.value,
                idempotency_key=idempotency_key,
                status=IdempotencyStatus.IN_FLIGHT.value,
                fingerprint=fingerprint,
                created_at=now,
                modified_at=now,
            )
            .on_conflict_do_nothing(
                index_elements=["scope_key", "operation_kind", "idempotency_key"]
            )
            .returning(IdempotencyRecord.id)
        )
        inserted = (await db.execute(stmt)).scalar_one_or_none()
        if inserted is not None:
            return IdempotencyClaim(claimed=True)

        query = select(IdempotencyRecord).where(
            self._key_filter(scope_key, kind, idempotency_key)
        )
        record = (await db.execute(query)).scalar_one()
        return IdempotencyClaim(
            claimed=False,
            status=IdempotencyStatus(record.status),
            fingerprint=record.fingerprint,
            result=record.result,
        )

    async def complete(
        self,
        db: AsyncSession,
        *,
        scope_key: str,
        kind: OperationKind,
        idempotency_key: str,
        result: Any,
    ) -> None:
        """Mark a claimed key completed and store its JSON result."""
        stmt = (
            update(IdempotencyRecord)
            .where(self._key_filter(scope_key, kind, idempotency_key))
            .values(
                status=IdempotencyStatus.COMPLETED.value,
                result=result,
                modified_at=utc_now(),
            )
        )
        await db.execute(stmt)
