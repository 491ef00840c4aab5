"""Idempotency domain protocols."""

from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.idempotency.types import IdempotencyClaim, OperationKind
from meterline.schemas.scope import Scope

T = TypeVar("T")

Operation = Callable[[AsyncSession], Awaitable[T]]


@runtime_checkable
class IdempotencyRepositoryProtocol(Protocol):
    """Data access for idempotency records."""

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
        ...

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
        ...


@runtime_checkable
class IdempotencyGuardProtocol(Protocol):
    """Runs a mutation at most once per (scope, kind, key).

    The claim, the mutation and the stored outcome share one transaction, so
    a failed mutation releases the key and a committed one is replayed.
    """

    async def execute(
        self,
        scope: Scope,
        kind: OperationKind,
        idempotency_key: str,
        operation: Operation[T],
        result_type: Any,
        fingerprint: Optional[str] = None,
    ) -> T:
        """Run ``operation`` in a new atomic unit, or return its stored result."""
        ...

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
        ...
