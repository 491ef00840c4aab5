"""Credits domain protocols."""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.credits.types import CreditPosition
from meterline.domains.idempotency.types import OperationKind
from meterline.schemas.credit import (
    AggregatedCreditBalance,
    CreditBalance,
    CreditGrantResult,
    CreditSweepResult,
    CreditTransaction,
    CreditTransactionType,
    CreditTransfer,
)
from meterline.schemas.scope import Scope


@runtime_checkable
class CreditRepositoryProtocol(Protocol):
    """Data access for credit transactions and their materialized positions."""

    async def lock_position(
        self, db: AsyncSession, *, scope: Scope, feature_key: str, currency: str
    ) -> CreditPosition:
        """Lock the position row for update, creating it when missing."""
        ...

    async def get_position(
        self, db: AsyncSession, *, scope: Scope, feature_key: str
    ) -> Optional[CreditPosition]:
        """Read a position without locking."""
        ...

    async def list_positions(self, db: AsyncSession, *, scope: Scope) -> list[CreditPosition]:
        """Every position of a scope, ordered by feature."""
        ...

    async def save_position(self, db: AsyncSession, *, position: CreditPosition) -> None:
        """Write back a locked position."""
        ...

    async def add_transaction(
        self,
        db: AsyncSession,
        *,
        transaction: CreditTransaction,
        sequence: int,
        operation_kind: OperationKind,
    ) -> CreditTransaction:
        """Append one transaction row."""
        ...

    async def list_transactions(
        self, db: AsyncSession, *, scope: Scope, feature_key: str
    ) -> list[CreditTransaction]:
        """Full log of one (scope, feature), in sequence order."""
        ...

    async def recent_transactions(
        self,
        db: AsyncSession,
        *,
        scope: Scope,
        feature_key: Optional[str] = None,
        limit: int = 50,
    ) -> list[CreditTransaction]:
        """Newest transactions first, optionally for one feature."""
        ...

    async def sum_amounts(self, db: AsyncSession, *, scope: Scope, feature_key: str) -> Decimal:
        """Signed sum of the log, computed by the store."""
        ...

    async def list_due_positions(
        self, db: AsyncSession, *, as_of: datetime, limit: int = 500
    ) -> list[CreditPosition]:
        """Positions whose next expiry is at or before ``as_of``."""
        ...


@runtime_checkable
class CreditLedgerProtocol(Protocol):
    """Append-only credit ledger with materialized positions."""

    async def apply_transaction(
        self,
        scope: Scope,
        feature_key: str,
        type: CreditTransactionType,
        amount: Decimal,
        idempotency_key: str,
        expires_at: Optional[datetime] = None,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        currency: Optional[str] = None,
    ) -> CreditTransaction:
        """Apply one transaction, at most once per idempotency key."""
        ...

    async def apply_in(
        self,
        db: AsyncSession,
        scope: Scope,
        feature_key: str,
        type: CreditTransactionType,
        amount: Decimal,
        idempotency_key: str,
        description: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> CreditTransaction:
        """Apply inside a unit of work the caller already opened."""
        ...

    async def transfer(
        self,
        from_scope: Scope,
        to_scope: Scope,
        feature_key: str,
        amount: Decimal,
        idempotency_key: str,
        description: Optional[str] = None,
    ) -> CreditTransfer:
        """Move credits between two scopes of one agency."""
        ...

    async def get_balance(self, scope: Scope, feature_key: str) -> CreditBalance:
        """Balance for one feature; converts expired lots first."""
        ...

    async def get_available(
        self,
        scope: Scope,
        feature_key: str,
        as_of: Optional[datetime] = None,
        db: Optional[AsyncSession] = None,
    ) -> Decimal:
        """Spendable credits at ``as_of``, without writing anything."""
        ...

    async def get_aggregated_balance(self, scope: Scope) -> AggregatedCreditBalance:
        """Balances of every feature of a scope, in one currency."""
        ...

    async def list_transactions(
        self, scope: Scope, feature_key: Optional[str] = None, limit: int = 50
    ) -> list[CreditTransaction]:
        """Credit history, newest first."""
        ...

    async def replay_balance(self, scope: Scope, feature_key: str) -> Decimal:
        """Signed sum of the log; the oracle the cached balance must match."""
        ...

    async def expire_due(
        self, scope: Scope, feature_key: str, as_of: Optional[datetime] = None
    ) -> list[CreditTransaction]:
        """Write one EXPIRY for every expired lot that still holds credits."""
        ...


@runtime_checkable
class CreditExpirySweeperProtocol(Protocol):
    """Scheduled conversion of expired lots into EXPIRY transactions."""

    async def sweep(self, as_of: Optional[datetime] = None) -> CreditSweepResult:
        """Expire every due position."""
        ...


@runtime_checkable
class RecurringCreditGranterProtocol(Protocol):
    """Issues the per-period recurring credit grant of each entitlement."""

    async def grant(self, scope: Scope, as_of: Optional[datetime] = None) -> CreditGrantResult:
        """Grant this period's credits for one scope."""
        ...

    async def grant_all(self, as_of: Optional[datetime] = None) -> CreditGrantResult:
        """Grant this period's credits for every scope that has a recurring grant."""
        ...
