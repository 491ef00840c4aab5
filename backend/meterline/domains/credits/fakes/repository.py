"""Fake credit repository for testing."""

import copy
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.credits.protocols import CreditRepositoryProtocol
from meterline.domains.credits.types import ZERO, CreditPosition
from meterline.domains.idempotency.types import OperationKind
from meterline.schemas.credit import CreditTransaction
from meterline.schemas.scope import Scope

_Key = tuple[str, str]


class FakeCreditRepository(CreditRepositoryProtocol):
    """In-memory fake for CreditRepositoryProtocol.

    Positions are handed out as copies, like rows loaded into a fresh session,
    so a ledger only changes stored state through ``save_position``.
    """

    def __init__(self) -> None:
        """Initialize empty in-memory store."""
        self._positions: dict[_Key, CreditPosition] = {}
        self._transactions: list[tuple[int, CreditTransaction]] = []
        self._kinds: dict[UUID, OperationKind] = {}
        self._calls: list[tuple] = []

    def call_count(self, method: str) -> int:
        """Return the number of times a method was called."""
        return sum(1 for name, *_ in self._calls if name == method)

    def position(self, scope: Scope, feature_key: str) -> Optional[CreditPosition]:
        """Stored position, for assertions."""
        return self._positions.get((scope.scope_key, feature_key))

    def corrupt_balance(self, scope: Scope, feature_key: str, balance: Decimal) -> None:
        """Make the cached balance disagree with the log."""
        stored = self._positions[(scope.scope_key, feature_key)]
        self._positions[(scope.scope_key, feature_key)] = replace(stored, balance=balance)

    @property
    def transactions(self) -> list[CreditTransaction]:
        """Every stored transaction, in insertion order."""
        return [tx for _, tx in self._transactions]

    def snapshot(self) -> tuple[dict[_Key, CreditPosition], list[tuple[int, CreditTransaction]]]:
        """Return a deep copy of positions and transactions."""
        return copy.deepcopy(self._positions), list(self._transactions)

    def restore(
        self, state: tuple[dict[_Key, CreditPosition], list[tuple[int, CreditTransaction]]]
    ) -> None:
        """Replace positions and transactions with a snapshot."""
        positions, transactions = state
        self._positions = copy.deepcopy(positions)
        self._transactions = list(transactions)

    def _log(self, scope: Scope, feature_key: str) -> list[tuple[int, CreditTransaction]]:
        return sorted(
            (
                (seq, tx)
                for seq, tx in self._transactions
                if tx.scope.scope_key == scope.scope_key and tx.feature_key == feature_key
            ),
            key=lambda item: item[0],
        )

    async def lock_position(
        self, db: AsyncSession, *, scope: Scope, feature_key: str, currency: str
    ) -> CreditPosition:
        """Return the position, creating it when missing."""
        self._calls.append(("lock_position", scope, feature_key))
        key = (scope.scope_key, feature_key)
        if key not in self._positions:
            self._positions[key] = CreditPosition(
                scope=scope, feature_key=feature_key, currency=currency
            )
        return replace(self._positions[key])

    async def get_position(
        self, db: AsyncSession, *, scope: Scope, feature_key: str
    ) -> Optional[CreditPosition]:
        """Return a copy of the position, if any."""
        self._calls.append(("get_position", scope, feature_key))
        stored = self._positions.get((scope.scope_key, feature_key))
        return replace(stored) if stored else None

    async def list_positions(self, db: AsyncSession, *, scope: Scope) -> list[CreditPosition]:
        """Every position of a scope, ordered by feature."""
        self._calls.append(("list_positions", scope))
        return [
            replace(position)
            for (scope_key, _), position in sorted(self._positions.items())
            if scope_key == scope.scope_key
        ]

    async def save_position(self, db: AsyncSession, *, position: CreditPosition) -> None:
        """Store a copy of the position."""
        self._calls.append(("save_position", position.scope, position.feature_key))
        self._positions[(position.scope.scope_key, position.feature_key)] = replace(position)

    async def add_transaction(
        self,
        db: AsyncSession,
        *,
        transaction: CreditTransaction,
        sequence: int,
        operation_kind: OperationKind,
    ) -> CreditTransaction:
        """Append one transaction.

        Sequences are unique per (scope, feature), and idempotency keys per
        (scope, operation kind), like the table's unique indexes.
        """
        self._calls.append(("add_transaction", transaction, sequence))
        taken = {seq for seq, _ in self._log(transaction.scope, transaction.feature_key)}
        if sequence in taken:
            raise ValueError(f"Duplicate sequence {sequence} for {transaction.feature_key}")
        for _, existing in self._transactions:
            if (
                existing.scope.scope_key == transaction.scope.scope_key
                and existing.idempotency_key == transaction.idempotency_key
                and self._kinds.get(existing.id) == operation_kind
            ):
                raise IntegrityError(
                    "INSERT INTO credit_transaction",
                    None,
                    Exception("uq_credit_transaction_idempotency"),
                )
        self._kinds[transaction.id] = operation_kind
        self._transactions.append((sequence, transaction))
        return transaction

    async def list_transactions(
        self, db: AsyncSession, *, scope: Scope, feature_key: str
    ) -> list[CreditTransaction]:
        """Full log of one (scope, feature), in sequence order."""
        self._calls.append(("list_transactions", scope, feature_key))
        return [tx for _, tx in self._log(scope, feature_key)]

    async def recent_transactions(
        self,
        db: AsyncSession,
        *,
        scope: Scope,
        feature_key: Optional[str] = None,
        limit: int = 50,
    ) -> list[CreditTransaction]:
        """Newest transactions first."""
        self._calls.append(("recent_transactions", scope, feature_key, limit))
        matched = [
            (seq, tx)
            for seq, tx in self._transactions
            if tx.scope.scope_key == scope.scope_key
            and (feature_key is None or tx.feature_key == feature_key)
        ]
        matched.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
        return [tx for _, tx in matched[:limit]]

    async def sum_amounts(self, db: AsyncSession, *, scope: Scope, feature_key: str) -> Decimal:
        """Signed sum of the log."""
        self._calls.append(("sum_amounts", scope, feature_key))
        return sum((tx.amount for _, tx in self._log(scope, feature_key)), ZERO)

    async def list_due_positions(
        self, db: AsyncSession, *, as_of: datetime, limit: int = 500
    ) -> list[CreditPosition]:
        """Positions whose next expiry is at or before ``as_of``."""
        self._calls.append(("list_due_positions", as_of))
        due = [
            p for p in self._positions.values() if p.next_expiry_at and p.next_expiry_at <= as_of
        ]
        due.sort(key=lambda p: p.next_expiry_at)
        return [replace(p) for p in due[:limit]]
