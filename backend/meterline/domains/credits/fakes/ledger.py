"""Fake credit ledger for testing.

Keeps one configurable available amount per (scope, feature) and records
every write, without lots or expiry.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.credits.exceptions import InsufficientBalanceError
from meterline.domains.credits.protocols import CreditLedgerProtocol
from meterline.domains.credits.types import ZERO, signed_amount
from meterline.schemas.credit import (
    AggregatedCreditBalance,
    CreditBalance,
    CreditTransaction,
    CreditTransactionType,
    CreditTransfer,
)
from meterline.schemas.scope import Scope


class FakeCreditLedger(CreditLedgerProtocol):
    """Test implementation of CreditLedgerProtocol.

    Usage:
        credits = FakeCreditLedger()
        credits.set_available(scope, "exports", Decimal("100"))

        check = await evaluator.check(scope, "exports", quantity=10)
        assert credits.available_calls == [(scope.scope_key, "exports")]
    """

    def __init__(self) -> None:
        """Initialize with no credits anywhere."""
        self._available: dict[tuple[str, str], Decimal] = {}
        self.applied: list[CreditTransaction] = []
        self.available_calls: list[tuple[str, str]] = []

    def set_available(self, scope: Scope, feature_key: str, amount: Decimal) -> None:
        """Configure what ``get_available`` returns."""
        self._available[(scope.scope_key, feature_key)] = Decimal(amount)

    def _apply(
        self,
        scope: Scope,
        feature_key: str,
        tx_type: CreditTransactionType,
        amount: Decimal,
        idempotency_key: str,
        description: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> CreditTransaction:
        key = (scope.scope_key, feature_key)
        signed = signed_amount(CreditTransactionType(tx_type), amount)
        current = self._available.get(key, ZERO)
        if signed < ZERO and -signed > current:
            raise InsufficientBalanceError(feature_key, -signed, current)
        self._available[key] = current + signed
        tx = CreditTransaction(
            id=uuid4(),
            scope=scope,
            feature_key=feature_key,
            type=tx_type,
            amount=signed,
            balance_after=current + signed,
            description=description or "",
            idempotency_key=idempotency_key,
            created_at=datetime.now(timezone.utc),
            metadata=metadata or {},
        )
        self.applied.append(tx)
        return tx

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
        """Apply in memory; no idempotency."""
        return self._apply(scope, feature_key, type, amount, idempotency_key, description, metadata)

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
        """Same as ``apply_transaction``; the session is ignored."""
        return self._apply(scope, feature_key, type, amount, idempotency_key, description, metadata)

    async def transfer(
        self,
        from_scope: Scope,
        to_scope: Scope,
        feature_key: str,
        amount: Decimal,
        idempotency_key: str,
        description: Optional[str] = None,
    ) -> CreditTransfer:
        """Move the configured amount between scopes."""
        return CreditTransfer(
            outgoing=self._apply(
                from_scope,
                feature_key,
                CreditTransactionType.TRANSFER,
                -Decimal(amount),
                idempotency_key,
            ),
            incoming=self._apply(
                to_scope,
                feature_key,
                CreditTransactionType.TRANSFER,
                Decimal(amount),
                idempotency_key,
            ),
        )

    async def get_balance(self, scope: Scope, feature_key: str) -> CreditBalance:
        """Balance equal to the configured amount."""
        amount = self._available.get((scope.scope_key, feature_key), ZERO)
        return CreditBalance(
            feature_key=feature_key,
            balance=amount,
            available=amount,
            currency="CREDITS",
            last_updated=datetime.now(timezone.utc),
        )

    async def get_available(
        self,
        scope: Scope,
        feature_key: str,
        as_of: Optional[datetime] = None,
        db: Optional[AsyncSession] = None,
    ) -> Decimal:
        """Return the configured amount, 0 by default."""
        self.available_calls.append((scope.scope_key, feature_key))
        return self._available.get((scope.scope_key, feature_key), ZERO)

    async def get_aggregated_balance(self, scope: Scope) -> AggregatedCreditBalance:
        """Sum of the configured amounts for the scope."""
        balances = [
            await self.get_balance(scope, feature_key)
            for scope_key, feature_key in sorted(self._available)
            if scope_key == scope.scope_key
        ]
        remaining = sum((b.balance for b in balances), ZERO)
        return AggregatedCreditBalance(
            total=remaining,
            used=ZERO,
            remaining=remaining,
            reserved=ZERO,
            currency="CREDITS",
            balances=balances,
        )

    async def list_transactions(
        self, scope: Scope, feature_key: Optional[str] = None, limit: int = 50
    ) -> list[CreditTransaction]:
        """Applied transactions, newest first."""
        matched = [
            tx
            for tx in reversed(self.applied)
            if tx.scope.scope_key == scope.scope_key
            and (feature_key is None or tx.feature_key == feature_key)
        ]
        return matched[:limit]

    async def replay_balance(self, scope: Scope, feature_key: str) -> Decimal:
        """Signed sum of the applied transactions."""
        return sum(
            (
                tx.amount
                for tx in self.applied
                if tx.scope.scope_key == scope.scope_key and tx.feature_key == feature_key
            ),
            ZERO,
        )

    async def expire_due(
        self, scope: Scope, feature_key: str, as_of: Optional[datetime] = None
    ) -> list[CreditTransaction]:
        """Nothing ever expires here."""
        return []
