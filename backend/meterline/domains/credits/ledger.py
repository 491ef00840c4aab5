"""Credit ledger: append-only signed transactions over locked positions.

Every write runs in one atomic unit under the idempotency guard:

1. lock the (scope, feature) position row,
2. replay the log into lots,
3. write off lots that have expired,
4. enforce the balance policy,
5. append the transaction with its ``balance_after``,
6. write the position back.

Reads recompute from the log and never take row locks. A read that finds
expired lots still holding credits converts them, in a separate unit, before
answering.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.core.exceptions import InvalidRequestError, PermissionException
from meterline.core.logging import logger
from meterline.db.session import SessionFactory, get_db_context
from meterline.db.transaction import atomic, retry_on_conflict
from meterline.domains.credits.exceptions import InsufficientBalanceError, MixedCurrencyError
from meterline.domains.credits.protocols import CreditLedgerProtocol, CreditRepositoryProtocol
from meterline.domains.credits.types import (
    EXPIRING_TYPES,
    ZERO,
    CreditPosition,
    LedgerState,
    replay,
    require_storable,
    signed_amount,
    transfer_in_key,
)
from meterline.domains.idempotency.protocols import IdempotencyGuardProtocol
from meterline.domains.idempotency.types import OperationKind, fingerprint_request
from meterline.domains.usage.types import as_utc
from meterline.models._base import utc_now
from meterline.schemas.credit import (
    AggregatedCreditBalance,
    CreditBalance,
    CreditTransaction,
    CreditTransactionType,
    CreditTransfer,
)
from meterline.schemas.scope import Scope, same_tenant

_Locked = tuple[CreditPosition, LedgerState]


def _amount_text(amount: Decimal) -> str:
    return format(Decimal(amount).normalize(), "f")


class CreditLedger(CreditLedgerProtocol):
    """Prepaid credit ledger with FIFO-by-expiry lots."""

    def __init__(
        self,
        credit_repo: CreditRepositoryProtocol,
        guard: IdempotencyGuardProtocol,
        session_factory: SessionFactory = get_db_context,
        clock: Callable[[], datetime] = utc_now,
        allow_negative_balance: bool = False,
        default_currency: str = "CREDITS",
        history_max_limit: int = 500,
        max_attempts: Optional[int] = None,
        retry_wait_seconds: Optional[float] = None,
    ) -> None:
        """Initialize the ledger with its repository, guard and policy."""
        self._repo = credit_repo
        self._guard = guard
        self._session_factory = session_factory
        self._clock = clock
        self._allow_negative = allow_negative_balance
        self._default_currency = default_currency
        self._history_max_limit = history_max_limit
        self._max_attempts = max_attempts
        self._retry_wait_seconds = retry_wait_seconds

    def _now(self) -> datetime:
        return as_utc(self._clock())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

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
        """Apply one transaction, at most once per idempotency key.

        Raises:
            InvalidRequestError: bad amount or sign, or ``expires_at`` on a
                type other than PURCHASE and BONUS.
            InsufficientBalanceError: the debit exceeds what the position covers.
            MixedCurrencyError: ``currency`` differs from the position's.
        """
        tx_type = CreditTransactionType(type)
        signed = signed_amount(tx_type, amount)
        if expires_at is not None and tx_type not in EXPIRING_TYPES:
            raise InvalidRequestError(f"expires_at is not allowed on {tx_type.value} transactions")
        expiry = as_utc(expires_at) if expires_at is not None else None

        async def _operation(db: AsyncSession) -> CreditTransaction:
            return await self._write(
                db,
                scope,
                feature_key,
                tx_type,
                signed,
                idempotency_key,
                expires_at=expiry,
                description=description,
                reference=reference,
                metadata=metadata,
                currency=currency,
            )

        return await self._guard.execute(
            scope,
            OperationKind.for_credit(tx_type),
            idempotency_key,
            _operation,
            CreditTransaction,
            fingerprint=fingerprint_request(
                feature_key=feature_key,
                type=tx_type.value,
                amount=_amount_text(signed),
                expires_at=expiry.isoformat() if expiry else None,
                currency=currency,
            ),
        )

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
        tx_type = CreditTransactionType(type)
        signed = signed_amount(tx_type, amount)
        return await self._guard.run_in(
            db,
            scope,
            OperationKind.for_credit(tx_type),
            idempotency_key,
            lambda inner: self._write(
                inner,
                scope,
                feature_key,
                tx_type,
                signed,
                idempotency_key,
                description=description,
                metadata=metadata,
            ),
            CreditTransaction,
            fingerprint=fingerprint_request(
                feature_key=feature_key,
                type=tx_type.value,
                amount=_amount_text(signed),
                expires_at=None,
                currency=None,
            ),
        )

    async def transfer(
        self,
        from_scope: Scope,
        to_scope: Scope,
        feature_key: str,
        amount: Decimal,
        idempotency_key: str,
        description: Optional[str] = None,
    ) -> CreditTransfer:
        """Move credits between two scopes of one agency.

        Both TRANSFER rows are written in one unit. Positions are locked in
        scope-key order so opposite transfers cannot deadlock. The outgoing
        row carries the caller's key; the incoming row carries
        ``transfer_in_key(from_scope, key)``.
        """
        if not same_tenant(from_scope, to_scope):
            raise PermissionException("Credits can only be transferred within one agency")
        if from_scope.scope_key == to_scope.scope_key:
            raise InvalidRequestError("Cannot transfer credits to the same scope")
        magnitude = require_storable(amount)
        if magnitude <= ZERO:
            raise InvalidRequestError("Transfer amount must be a positive magnitude")

        async def _operation(db: AsyncSession) -> CreditTransfer:
            now = self._now()
            locked: dict[str, _Locked] = {}
            for scope in sorted((from_scope, to_scope), key=lambda s: s.scope_key):
                locked[scope.scope_key] = await self._lock_and_replay(db, scope, feature_key)
            source, source_state = locked[from_scope.scope_key]
            target, target_state = locked[to_scope.scope_key]
            if source.currency != target.currency:
                raise MixedCurrencyError([source.currency, target.currency])

            await self._write_off_expired(db, source, source_state, now)
            await self._write_off_expired(db, target, target_state, now)
            self._enforce_policy(
                feature_key, CreditTransactionType.TRANSFER, -magnitude, source, source_state, now
            )

            outgoing = await self._append(
                db,
                source,
                source_state,
                CreditTransactionType.TRANSFER,
                -magnitude,
                idempotency_key,
                now,
                description=description or f"Transfer to {to_scope.scope_key}",
                reference=to_scope.scope_key,
            )
            # The incoming leg is claimed under its own key in the target scope.
            incoming_key = transfer_in_key(from_scope, idempotency_key)
            incoming = await self._guard.run_in(
                db,
                to_scope,
                OperationKind.CREDIT_TRANSFER,
                incoming_key,
                lambda inner: self._append(
                    inner,
                    target,
                    target_state,
                    CreditTransactionType.TRANSFER,
                    magnitude,
                    incoming_key,
                    now,
                    description=description or f"Transfer from {from_scope.scope_key}",
                    reference=from_scope.scope_key,
                ),
                CreditTransaction,
                fingerprint=fingerprint_request(
                    feature_key=feature_key,
                    from_scope=from_scope.scope_key,
                    amount=_amount_text(magnitude),
                ),
            )
            await self._save(db, source, source_state, now)
            await self._save(db, target, target_state, now)
            logger.with_context(scope=from_scope.scope_key, feature_key=feature_key).info(
                f"Transferred {magnitude} credits to {to_scope.scope_key}"
            )
            return CreditTransfer(outgoing=outgoing, incoming=incoming)

        return await self._guard.execute(
            from_scope,
            OperationKind.CREDIT_TRANSFER,
            idempotency_key,
            _operation,
            CreditTransfer,
            fingerprint=fingerprint_request(
                feature_key=feature_key,
                to_scope=to_scope.scope_key,
                amount=_amount_text(magnitude),
            ),
        )

    async def expire_due(
        self, scope: Scope, feature_key: str, as_of: Optional[datetime] = None
    ) -> list[CreditTransaction]:
        """Write one EXPIRY for every expired lot that still holds credits.

        ``as_of`` never runs ahead of the clock: credits cannot be expired early.
        """
        now = self._now()
        moment = min(as_utc(as_of), now) if as_of is not None else now

        @retry_on_conflict(self._max_attempts, self._retry_wait_seconds)
        async def _attempt() -> list[CreditTransaction]:
            async with atomic(self._session_factory) as db:
                position, state = await self._lock_and_replay(db, scope, feature_key)
                converted = await self._write_off_expired(db, position, state, moment)
                if converted:
                    await self._save(db, position, state, moment)
                return converted

        return await _attempt()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, scope: Scope, feature_key: str) -> CreditBalance:
        """Balance for one feature; converts expired lots first."""
        now = self._now()
        position, state = await self._read(scope, feature_key)
        if state.pending_expiries(now):
            await self.expire_due(scope, feature_key, now)
            position, state = await self._read(scope, feature_key)
        return self._to_balance(feature_key, position, state, now)

    async def get_available(
        self,
        scope: Scope,
        feature_key: str,
        as_of: Optional[datetime] = None,
        db: Optional[AsyncSession] = None,
    ) -> Decimal:
        """Spendable credits at ``as_of``, without writing anything.

        Reads through ``db`` when given.
        """
        moment = as_utc(as_of) if as_of is not None else self._now()
        position, state = await self._read(scope, feature_key, db)
        return state.available(moment, position.reserved if position else ZERO)

    async def get_aggregated_balance(self, scope: Scope) -> AggregatedCreditBalance:
        """Balances of every feature of a scope, in one currency."""
        now = self._now()
        snapshot = await self._read_scope(scope)
        currencies = {position.currency for position, _ in snapshot.values()}
        if len(currencies) > 1:
            raise MixedCurrencyError(currencies)

        for feature_key, (_, state) in list(snapshot.items()):
            if state.pending_expiries(now):
                await self.expire_due(scope, feature_key, now)
                snapshot[feature_key] = await self._read(scope, feature_key)

        balances = [
            self._to_balance(feature_key, position, state, now)
            for feature_key, (position, state) in sorted(snapshot.items())
        ]
        total = sum((state.total_granted for _, state in snapshot.values()), ZERO)
        return AggregatedCreditBalance(
            total=total,
            used=total - sum((b.balance for b in balances), ZERO),
            remaining=sum((b.available for b in balances), ZERO),
            reserved=sum((b.reserved for b in balances), ZERO),
            currency=next(iter(currencies)) if currencies else self._default_currency,
            balances=balances,
        )

    async def list_transactions(
        self, scope: Scope, feature_key: Optional[str] = None, limit: int = 50
    ) -> list[CreditTransaction]:
        """Credit history, newest first."""
        if limit < 1:
            raise InvalidRequestError("limit must be at least 1")
        async with self._session_factory() as db:
            return await self._repo.recent_transactions(
                db,
                scope=scope,
                feature_key=feature_key,
                limit=min(limit, self._history_max_limit),
            )

    async def replay_balance(self, scope: Scope, feature_key: str) -> Decimal:
        """Signed sum of the log; the oracle the cached balance must match."""
        async with self._session_factory() as db:
            return await self._repo.sum_amounts(db, scope=scope, feature_key=feature_key)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _read(
        self, scope: Scope, feature_key: str, db: Optional[AsyncSession] = None
    ) -> tuple[Optional[CreditPosition], LedgerState]:
        if db is None:
            async with self._session_factory() as session:
                return await self._read(scope, feature_key, session)

        position = await self._repo.get_position(db, scope=scope, feature_key=feature_key)
        if position is None:
            return None, LedgerState()
        state = replay(await self._repo.list_transactions(db, scope=scope, feature_key=feature_key))
        logger.with_context(scope=scope.scope_key, feature_key=feature_key).debug(
            f"Replayed {state.transaction_count} credit transactions, balance={state.balance}"
        )
        return position, state

    async def _read_scope(self, scope: Scope) -> dict[str, _Locked]:
        snapshot: dict[str, _Locked] = {}
        async with self._session_factory() as db:
            for position in await self._repo.list_positions(db, scope=scope):
                log = await self._repo.list_transactions(
                    db, scope=scope, feature_key=position.feature_key
                )
                snapshot[position.feature_key] = (position, replay(log))
        return snapshot

    async def _lock_and_replay(
        self,
        db: AsyncSession,
        scope: Scope,
        feature_key: str,
        currency: Optional[str] = None,
    ) -> _Locked:
        position = await self._repo.lock_position(
            db,
            scope=scope,
            feature_key=feature_key,
            currency=currency or self._default_currency,
        )
        if currency is not None and position.currency != currency:
            raise MixedCurrencyError([position.currency, currency])

        state = replay(await self._repo.list_transactions(db, scope=scope, feature_key=feature_key))
        if state.balance != position.balance or state.transaction_count != position.last_sequence:
            logger.with_context(scope=scope.scope_key, feature_key=feature_key).warning(
                f"Credit position drifted from its log (cached={position.balance}, "
                f"replayed={state.balance}); rebuilding from the log"
            )
            position.balance = state.balance
            position.last_sequence = state.transaction_count
        return position, state

    async def _write(
        self,
        db: AsyncSession,
        scope: Scope,
        feature_key: str,
        tx_type: CreditTransactionType,
        signed: Decimal,
        idempotency_key: str,
        expires_at: Optional[datetime] = None,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        currency: Optional[str] = None,
    ) -> CreditTransaction:
        now = self._now()
        position, state = await self._lock_and_replay(db, scope, feature_key, currency)
        await self._write_off_expired(db, position, state, now)
        self._enforce_policy(feature_key, tx_type, signed, position, state, now)

        tx = await self._append(
            db,
            position,
            state,
            tx_type,
            signed,
            idempotency_key,
            now,
            expires_at=expires_at,
            description=description,
            reference=reference,
            metadata=metadata,
        )
        await self._save(db, position, state, now)
        logger.with_context(scope=scope.scope_key, feature_key=feature_key).info(
            f"Applied {tx_type.value} {signed} (balance_after={tx.balance_after}) "
            f"key='{idempotency_key}'"
        )
        return tx

    def _enforce_policy(
        self,
        feature_key: str,
        tx_type: CreditTransactionType,
        signed: Decimal,
        position: CreditPosition,
        state: LedgerState,
        now: datetime,
    ) -> None:
        if self._allow_negative or signed >= ZERO:
            return
        # Spending is checked against what is available; write-offs against the
        # booked balance, since they may remove credits that are not spendable.
        if tx_type in (CreditTransactionType.DEDUCTION, CreditTransactionType.TRANSFER):
            cover = state.available(now, position.reserved)
        else:
            cover = state.balance
        if -signed > cover:
            raise InsufficientBalanceError(feature_key, -signed, max(cover, ZERO))

    async def _write_off_expired(
        self,
        db: AsyncSession,
        position: CreditPosition,
        state: LedgerState,
        now: datetime,
    ) -> list[CreditTransaction]:
        converted: list[CreditTransaction] = []
        for lot in state.pending_expiries(now):
            lot_ref = str(lot.transaction_id)
            remaining = lot.remaining

            async def _expire(inner: AsyncSession, lot_ref=lot_ref, remaining=remaining):
                return await self._append(
                    inner,
                    position,
                    state,
                    CreditTransactionType.EXPIRY,
                    -remaining,
                    f"expire:{lot_ref}",
                    now,
                    description=f"Expired credits from lot {lot_ref}",
                    reference=lot_ref,
                )

            tx = await self._guard.run_in(
                db,
                position.scope,
                OperationKind.CREDIT_EXPIRY,
                f"expire:{lot_ref}",
                _expire,
                CreditTransaction,
            )
            converted.append(tx)

        if converted:
            logger.with_context(
                scope=position.scope.scope_key, feature_key=position.feature_key
            ).info(f"Expired {len(converted)} credit lot(s)")
        return converted

    async def _append(
        self,
        db: AsyncSession,
        position: CreditPosition,
        state: LedgerState,
        tx_type: CreditTransactionType,
        signed: Decimal,
        idempotency_key: str,
        now: datetime,
        expires_at: Optional[datetime] = None,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> CreditTransaction:
        tx = CreditTransaction(
            id=uuid4(),
            scope=position.scope,
            feature_key=position.feature_key,
            type=tx_type,
            amount=signed,
            balance_after=state.balance + signed,
            description=description or "",
            reference=reference,
            idempotency_key=idempotency_key,
            created_at=now,
            expires_at=expires_at,
            metadata=metadata or {},
        )
        position.last_sequence += 1
        await self._repo.add_transaction(
            db,
            transaction=tx,
            sequence=position.last_sequence,
            operation_kind=OperationKind.for_credit(tx_type),
        )
        state.apply(tx)
        return tx

    async def _save(
        self,
        db: AsyncSession,
        position: CreditPosition,
        state: LedgerState,
        now: datetime,
    ) -> None:
        position.balance = state.balance
        position.lifetime_credited = state.total_granted
        position.next_expiry_at = state.next_expiry_at()
        position.updated_at = now
        await self._repo.save_position(db, position=position)

    def _to_balance(
        self,
        feature_key: str,
        position: Optional[CreditPosition],
        state: LedgerState,
        now: datetime,
    ) -> CreditBalance:
        reserved = position.reserved if position else ZERO
        return CreditBalance(
            feature_key=feature_key,
            balance=state.balance,
            reserved=reserved,
            available=state.available(now, reserved),
            expires_at=state.earliest_live_expiry(now),
            currency=position.currency if position else self._default_currency,
            last_updated=(position.updated_at if position and position.updated_at else now),
        )
