"""Credits domain types and pure business logic.

The ledger is an append-only list of signed transactions. Everything derived
from it (balance, lots, expiry, availability) is computed here by replaying
that list, with no IO, so the same code serves writes, reads and tests.

Lots
----
Every positive transaction opens a lot. Debits drain lots in FIFO-by-expiry
order: the live lot that expires soonest goes first, non-expiring lots go
last, and lots already expired at the debit's timestamp are skipped. An
EXPIRY that references a lot drains exactly that lot. A debit larger than
every lot leaves a deficit that later credits pay off first.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from meterline.core.exceptions import InvalidRequestError
from meterline.schemas.credit import CreditTransaction, CreditTransactionType
from meterline.schemas.scope import Scope

ZERO = Decimal("0")

# Matches the Numeric(20, 6) ledger columns.
CREDIT_PLACES = 6
CREDIT_QUANTUM = Decimal(1).scaleb(-CREDIT_PLACES)
MAX_CREDIT_AMOUNT = Decimal(10) ** (20 - CREDIT_PLACES)

CREDIT_TYPES: frozenset[CreditTransactionType] = frozenset(
    {CreditTransactionType.PURCHASE, CreditTransactionType.BONUS, CreditTransactionType.REFUND}
)
DEBIT_TYPES: frozenset[CreditTransactionType] = frozenset(
    {CreditTransactionType.DEDUCTION, CreditTransactionType.EXPIRY}
)
SIGNED_TYPES: frozenset[CreditTransactionType] = frozenset(
    {CreditTransactionType.TRANSFER, CreditTransactionType.ADJUSTMENT}
)
EXPIRING_TYPES: frozenset[CreditTransactionType] = frozenset(
    {CreditTransactionType.PURCHASE, CreditTransactionType.BONUS}
)


def require_storable(amount: Decimal) -> Decimal:
    """Reject amounts the ledger columns would round or overflow.

    ``balance_after`` is computed in Python at full precision, so an amount
    that storage rounds would leave the stored log disagreeing with its own
    running balance.
    """
    amount = Decimal(amount)
    if not amount.is_finite():
        raise InvalidRequestError("Amount must be a finite number")
    if abs(amount) >= MAX_CREDIT_AMOUNT:
        raise InvalidRequestError(f"Amount must be below {MAX_CREDIT_AMOUNT}")
    if amount != amount.quantize(CREDIT_QUANTUM):
        raise InvalidRequestError(f"Amount supports at most {CREDIT_PLACES} decimal places")
    return amount


def transfer_in_key(from_scope: Scope, idempotency_key: str) -> str:
    """Key of a transfer's incoming leg, filed in the target scope."""
    return f"in:{from_scope.scope_key}:{idempotency_key}"


def signed_amount(tx_type: CreditTransactionType, amount: Decimal) -> Decimal:
    """Apply the sign convention for ``tx_type`` to a caller-supplied amount.

    PURCHASE, BONUS and REFUND take a positive magnitude and credit it.
    DEDUCTION and EXPIRY take a positive magnitude and debit it. TRANSFER and
    ADJUSTMENT take an explicit non-zero signed amount.
    """
    amount = require_storable(amount)
    if tx_type in SIGNED_TYPES:
        if amount == ZERO:
            raise InvalidRequestError(f"{tx_type.value} amount must be non-zero")
        return amount
    if amount <= ZERO:
        raise InvalidRequestError(f"{tx_type.value} amount must be a positive magnitude")
    if tx_type in DEBIT_TYPES:
        return -amount
    return amount


@dataclass
class CreditLot:
    """Credits added by one positive transaction, and how many are left."""

    transaction_id: UUID
    granted: Decimal
    remaining: Decimal
    expires_at: Optional[datetime]
    sequence: int

    def is_expired(self, moment: datetime) -> bool:
        """Whether the lot has expired at ``moment``."""
        return self.expires_at is not None and self.expires_at <= moment

    def drain(self, wanted: Decimal) -> Decimal:
        """Take up to ``wanted`` credits; returns how many were taken."""
        taken = min(self.remaining, wanted)
        self.remaining -= taken
        return taken


@dataclass
class LedgerState:
    """Replayed state of one (scope, feature) credit log."""

    balance: Decimal = ZERO
    total_granted: Decimal = ZERO
    deficit: Decimal = ZERO
    transaction_count: int = 0
    lots: list[CreditLot] = field(default_factory=list)

    def apply(self, tx: CreditTransaction) -> None:
        """Fold one transaction into the state."""
        self.transaction_count += 1
        self.balance += tx.amount
        if tx.amount > ZERO:
            self._credit(tx)
        else:
            lot_ref = tx.reference if tx.type == CreditTransactionType.EXPIRY else None
            self._debit(-tx.amount, tx.created_at, lot_ref)

    def _credit(self, tx: CreditTransaction) -> None:
        self.total_granted += tx.amount
        remainder = tx.amount
        if self.deficit > ZERO:
            paid = min(self.deficit, remainder)
            self.deficit -= paid
            remainder -= paid
        self.lots.append(
            CreditLot(
                transaction_id=tx.id,
                granted=tx.amount,
                remaining=remainder,
                expires_at=tx.expires_at,
                sequence=self.transaction_count,
            )
        )

    def _debit(self, amount: Decimal, at: datetime, lot_ref: Optional[str]) -> None:
        wanted = amount
        if lot_ref is not None:
            for lot in self.lots:
                if str(lot.transaction_id) == lot_ref:
                    wanted -= lot.drain(wanted)
                    break

        live = sorted(
            (lot for lot in self.lots if lot.remaining > ZERO and not lot.is_expired(at)),
            key=_fifo_key,
        )
        expired = sorted(
            (lot for lot in self.lots if lot.remaining > ZERO and lot.is_expired(at)),
            key=_fifo_key,
        )
        for lot in live + expired:
            if wanted <= ZERO:
                break
            wanted -= lot.drain(wanted)

        if wanted > ZERO:
            self.deficit += wanted

    def pending_expiries(self, as_of: datetime) -> list[CreditLot]:
        """Expired lots that still hold credits, soonest expiry first."""
        return sorted(
            (lot for lot in self.lots if lot.remaining > ZERO and lot.is_expired(as_of)),
            key=_fifo_key,
        )

    def pending_expired_amount(self, as_of: datetime) -> Decimal:
        """Credits that have expired but are not yet written off."""
        return sum((lot.remaining for lot in self.pending_expiries(as_of)), ZERO)

    def available(self, as_of: datetime, reserved: Decimal = ZERO) -> Decimal:
        """Spendable credits: balance less reservations and expired lots."""
        return self.balance - reserved - self.pending_expired_amount(as_of)

    def next_expiry_at(self) -> Optional[datetime]:
        """Earliest expiry among lots that still hold credits, expired or not."""
        dates = [lot.expires_at for lot in self.lots if lot.remaining > ZERO and lot.expires_at]
        return min(dates) if dates else None

    def earliest_live_expiry(self, as_of: datetime) -> Optional[datetime]:
        """Earliest expiry among lots still live at ``as_of``."""
        dates = [
            lot.expires_at
            for lot in self.lots
            if lot.remaining > ZERO and lot.expires_at and not lot.is_expired(as_of)
        ]
        return min(dates) if dates else None


def _fifo_key(lot: CreditLot) -> tuple:
    # Non-expiring lots sort after every dated lot.
    return (
        lot.expires_at is None,
        lot.expires_at.timestamp() if lot.expires_at else 0.0,
        lot.sequence,
    )


def replay(transactions: Iterable[CreditTransaction]) -> LedgerState:
    """Rebuild the state from a log in sequence order."""
    state = LedgerState()
    for tx in transactions:
        state.apply(tx)
    return state


@dataclass
class CreditPosition:
    """Materialized running position for one (scope, feature).

    A cache over the transaction log; ``balance`` must equal the replayed sum.
    """

    scope: Scope
    feature_key: str
    currency: str
    balance: Decimal = ZERO
    reserved: Decimal = ZERO
    lifetime_credited: Decimal = ZERO
    last_sequence: int = 0
    next_expiry_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
