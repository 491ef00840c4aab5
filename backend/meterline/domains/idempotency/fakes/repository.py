"""Fake idempotency repository for testing."""

import copy
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.idempotency.protocols import IdempotencyRepositoryProtocol
from meterline.domains.idempotency.types import (
    IdempotencyClaim,
    IdempotencyStatus,
    OperationKind,
)

_Key = tuple[str, str, str]


class FakeIdempotencyRepository(IdempotencyRepositoryProtocol):
    """In-memory fake for IdempotencyRepositoryProtocol.

    Register it with a ``FakeSessionFactory`` so a rolled-back unit of work
    also drops its claim.
    """

    def __init__(self) -> None:
        """Initialize empty in-memory store."""
        self._records: dict[_Key, dict[str, Any]] = {}
        self._calls: list[tuple] = []

    def seed_in_flight(
        self,
        scope_key: str,
        kind: OperationKind,
        idempotency_key: str,
        fingerprint: Optional[str] = None,
    ) -> None:
        """Pretend another worker holds the key and has not finished."""
        self._records[(scope_key, kind.value, idempotency_key)] = {
            "status": IdempotencyStatus.IN_FLIGHT,
            "fingerprint": fingerprint,
            "result": None,
        }

    def call_count(self, method: str) -> int:
        """Return the number of times a method was called."""
        return sum(1 for name, *_ in self._calls if name == method)

    def snapshot(self) -> dict[_Key, dict[str, Any]]:
        """Return a deep copy of the records."""
        return copy.deepcopy(self._records)

    def restore(self, state: dict[_Key, dict[str, Any]]) -> None:
        """Replace the records with a snapshot."""
        self._records = copy.deepcopy(state)

    async def claim(
        self,
        db: AsyncSession,
        *,
        scope_key: str,
        kind: OperationKind,
        idempotency_key: str,
        fingerprint: Optional[str],
    ) -> IdempotencyClaim:
        """Claim the key in memory."""
        self._calls.append(("claim", scope_key, kind, idempotency_key))
        key = (scope_key, kind.value, idempotency_key)
        existing = self._records.get(key)
        if existing is None:
            self._records[key] = {
                "status": IdempotencyStatus.IN_FLIGHT,
                "fingerprint": fingerprint,
                "result": None,
            }
            return IdempotencyClaim(claimed=True)
        return IdempotencyClaim(
            claimed=False,
            status=existing["status"],
            fingerprint=existing["fingerprint"],
            result=copy.deepcopy(existing["result"]),
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
        """Store the result in memory."""
        self._calls.append(("complete", scope_key, kind, idempotency_key))
        record = self._records[(scope_key, kind.value, idempotency_key)]
        record["status"] = IdempotencyStatus.COMPLETED
        record["result"] = copy.deepcopy(result)
