"""Idempotency guard: one reusable wrapper for every mutating operation.

Callers hand the guard an async ``operation(db)``. The guard claims the key,
runs the operation in the same transaction, stores the JSON-dumped result,
and commits. A second call with the same key returns the stored result,
revalidated into ``result_type``, without running anything.
"""

from typing import Any, Optional, TypeVar

from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession

from meterline.core.exceptions import InvalidRequestError
from meterline.core.logging import logger
from meterline.db.session import SessionFactory, get_db_context
from meterline.db.transaction import atomic, retry_on_conflict
from meterline.domains.idempotency.exceptions import (
    IdempotencyInFlightError,
    IdempotencyKeyReusedError,
)
from meterline.domains.idempotency.protocols import (
    IdempotencyGuardProtocol,
    IdempotencyRepositoryProtocol,
    Operation,
)
from meterline.domains.idempotency.types import (
    IdempotencyClaim,
    IdempotencyStatus,
    OperationKind,
)
from meterline.schemas.scope import Scope

T = TypeVar("T")


class IdempotencyGuard(IdempotencyGuardProtocol):
    """Exactly-once executor keyed by (scope, operation kind, idempotency key)."""

    def __init__(
        self,
        repo: IdempotencyRepositoryProtocol,
        session_factory: SessionFactory = get_db_context,
        max_attempts: Optional[int] = None,
        retry_wait_seconds: Optional[float] = None,
    ) -> None:
        """Initialize the guard with its record store and session source."""
        self._repo = repo
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._retry_wait_seconds = retry_wait_seconds
        self._adapters: dict[Any, TypeAdapter] = {}

    async def execute(
        self,
        scope: Scope,
        kind: OperationKind,
        idempotency_key: str,
        operation: Operation[T],
        result_type: Any,
        fingerprint: Optional[str] = None,
    ) -> T:
        """Run ``operation`` in a new atomic unit, or return its stored result.

        Lock conflicts re-run the whole unit, claim included, up to the
        configured attempt limit.
        """
        _require_key(idempotency_key)

        @retry_on_conflict(self._max_attempts, self._retry_wait_seconds)
        async def _attempt() -> T:
            async with atomic(self._session_factory) as db:
                return await self.run_in(
                    db, scope, kind, idempotency_key, operation, result_type, fingerprint
                )

        return await _attempt()

    async def run_in(
        self,
        db: AsyncSession,
        scope: Scope,
        kind: OperationKind,
        idempotency_key: str,
        operation: Operation[T],
        result_type: Any,
        fingerprint: Optional[str] = None,
    ) -> T:
        """Same as ``execute`` but inside a unit of work the caller already opened."""
        _require_key(idempotency_key)
        claim = await self._repo.claim(
            db,
            scope_key=scope.scope_key,
            kind=kind,
            idempotency_key=idempotency_key,
            fingerprint=fingerprint,
        )
        if not claim.claimed:
            return self._replay(claim, scope, kind, idempotency_key, result_type, fingerprint)

        result = await operation(db)
        adapter = self._adapter(result_type)
        await self._repo.complete(
            db,
            scope_key=scope.scope_key,
            kind=kind,
            idempotency_key=idempotency_key,
            result=adapter.dump_python(result, mode="json"),
        )
        return result

    def _replay(
        self,
        claim: IdempotencyClaim,
        scope: Scope,
        kind: OperationKind,
        idempotency_key: str,
        result_type: Any,
        fingerprint: Optional[str],
    ) -> Any:
        if claim.status != IdempotencyStatus.COMPLETED:
            raise IdempotencyInFlightError(kind.value, idempotency_key)
        if fingerprint and claim.fingerprint and fingerprint != claim.fingerprint:
            raise IdempotencyKeyReusedError(kind.value, idempotency_key)

        logger.with_context(scope=scope.scope_key, kind=kind.value).debug(
            f"Replaying stored result for idempotency key '{idempotency_key}'"
        )
        return self._adapter(result_type).validate_python(claim.result)

    def _adapter(self, result_type: Any) -> TypeAdapter:
        adapter = self._adapters.get(result_type)
        if adapter is None:
            adapter = TypeAdapter(result_type)
            self._adapters[result_type] = adapter
        return adapter


def _require_key(idempotency_key: Optional[str]) -> None:
    if not idempotency_key or not idempotency_key.strip():
        raise InvalidRequestError("An idempotency key is required for this operation")
