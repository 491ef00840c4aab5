"""Unit tests for CreditLedger."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from meterline.core.exceptions import InvalidRequestError, PermissionException
from meterline.domains.credits.exceptions import InsufficientBalanceError, MixedCurrencyError
from meterline.domains.credits.tests.conftest import (
    NOW,
    OTHER_AGENCY_SCOPE,
    _deduct,
    _make_ledger,
    _purchase,
)
from meterline.domains.idempotency.exceptions import IdempotencyKeyReusedError
from meterline.schemas.credit import CreditTransactionType
from meterline.schemas.scope import SubAccountScope


def _types(repo) -> list[CreditTransactionType]:
    return [tx.type for tx in repo.transactions]


# ---------------------------------------------------------------------------
# apply_transaction
# ---------------------------------------------------------------------------


class TestApplyTransaction:
    @pytest.mark.asyncio
    async def test_purchase_credits_the_balance(self, scope):
        ledger, repo, *_ = _make_ledger()

        tx = await _purchase(ledger, scope, 500, "tx1")
        balance = await ledger.get_balance(scope, "exports")

        assert tx.amount == Decimal("500")
        assert tx.balance_after == Decimal("500")
        assert tx.created_at == NOW
        assert balance.balance == balance.available == Decimal("500")
        assert balance.currency == "CREDITS"

    @pytest.mark.asyncio
    async def test_replayed_key_applies_once(self, scope):
        ledger, repo, *_ = _make_ledger()

        first = await _purchase(ledger, scope, 500, "tx1")
        second = await _purchase(ledger, scope, 500, "tx1")

        assert second == first
        assert len(repo.transactions) == 1
        assert (await ledger.get_balance(scope, "exports")).balance == Decimal("500")
        assert await ledger.replay_balance(scope, "exports") == Decimal("500")

    @pytest.mark.asyncio
    async def test_reused_key_with_different_amount_is_rejected(self, scope):
        ledger, repo, *_ = _make_ledger()
        await _purchase(ledger, scope, 500, "tx1")

        with pytest.raises(IdempotencyKeyReusedError):
            await _purchase(ledger, scope, 600, "tx1")
        assert len(repo.transactions) == 1

    @pytest.mark.asyncio
    async def test_same_key_under_another_type_is_a_new_transaction(self, scope):
        ledger, *_ = _make_ledger()

        await _purchase(ledger, scope, 500, "tx1")
        await ledger.apply_transaction(
            scope, "exports", CreditTransactionType.BONUS, Decimal("500"), "tx1"
        )

        assert await ledger.replay_balance(scope, "exports") == Decimal("1000")

    @pytest.mark.asyncio
    async def test_debits_are_stored_negative(self, scope):
        ledger, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")

        tx = await _deduct(ledger, scope, 30, "d1")

        assert tx.amount == Decimal("-30")
        assert tx.balance_after == Decimal("70")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "tx_type, amount",
        [
            (CreditTransactionType.PURCHASE, Decimal("0")),
            (CreditTransactionType.DEDUCTION, Decimal("-5")),
            (CreditTransactionType.ADJUSTMENT, Decimal("0")),
            (CreditTransactionType.REFUND, Decimal("NaN")),
            (CreditTransactionType.PURCHASE, Decimal("1.0000004")),
            (CreditTransactionType.BONUS, Decimal("1e14")),
        ],
    )
    async def test_invalid_amounts_are_rejected(self, scope, tx_type, amount):
        ledger, repo, *_ = _make_ledger()

        with pytest.raises(InvalidRequestError):
            await ledger.apply_transaction(scope, "exports", tx_type, amount, "k1")
        assert repo.transactions == []

    @pytest.mark.asyncio
    async def test_running_balance_matches_log_at_full_precision(self, scope):
        ledger, repo, *_ = _make_ledger()

        await _purchase(ledger, scope, "1.000001", "p1")
        await _purchase(ledger, scope, "1.0000010", "p2")

        assert [tx.balance_after for tx in repo.transactions] == [
            Decimal("1.000001"),
            Decimal("2.000002"),
        ]
        assert await ledger.replay_balance(scope, "exports") == Decimal("2.000002")

    @pytest.mark.asyncio
    async def test_expiry_date_only_on_purchase_and_bonus(self, scope):
        ledger, *_ = _make_ledger()

        with pytest.raises(InvalidRequestError):
            await ledger.apply_transaction(
                scope,
                "exports",
                CreditTransactionType.REFUND,
                Decimal("10"),
                "r1",
                expires_at=NOW + timedelta(days=1),
            )

    @pytest.mark.asyncio
    async def test_currency_mismatch_on_one_feature_is_rejected(self, scope):
        ledger, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1", currency="USD")

        with pytest.raises(MixedCurrencyError) as exc_info:
            await _purchase(ledger, scope, 100, "p2", currency="EUR")
        assert exc_info.value.currencies == ["EUR", "USD"]

    @pytest.mark.asyncio
    async def test_drifted_position_is_rebuilt_from_the_log(self, scope):
        ledger, repo, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")
        repo.corrupt_balance(scope, "exports", Decimal("999"))

        tx = await _purchase(ledger, scope, 50, "p2")

        assert tx.balance_after == Decimal("150")
        assert repo.position(scope, "exports").balance == Decimal("150")


# ---------------------------------------------------------------------------
# Balance policy
# ---------------------------------------------------------------------------


class TestBalancePolicy:
    @pytest.mark.asyncio
    async def test_overdraft_is_rejected_and_leaves_balance_unchanged(self, scope):
        ledger, repo, sessions, _ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await _deduct(ledger, scope, 150, "d1")

        assert exc_info.value.requested == Decimal("150")
        assert exc_info.value.available == Decimal("100")
        assert (await ledger.get_balance(scope, "exports")).balance == Decimal("100")
        assert len(repo.transactions) == 1
        assert sessions.rollbacks == 1

    @pytest.mark.asyncio
    async def test_rejected_key_can_be_retried_after_top_up(self, scope):
        ledger, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")
        with pytest.raises(InsufficientBalanceError):
            await _deduct(ledger, scope, 150, "d1")

        await _purchase(ledger, scope, 100, "p2")
        tx = await _deduct(ledger, scope, 150, "d1")

        assert tx.balance_after == Decimal("50")

    @pytest.mark.asyncio
    async def test_concurrent_deductions_never_overdraw(self, scope):
        ledger, repo, *_ = _make_ledger()
        await _purchase(ledger, scope, 1000, "p1")

        results = await asyncio.gather(
            _deduct(ledger, scope, 600, "d1"),
            _deduct(ledger, scope, 600, "d2"),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, InsufficientBalanceError)]
        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(failures) == 1
        assert len(successes) == 1
        assert (await ledger.get_balance(scope, "exports")).balance == Decimal("400")
        assert await ledger.replay_balance(scope, "exports") == Decimal("400")
        assert _types(repo) == [CreditTransactionType.PURCHASE, CreditTransactionType.DEDUCTION]

    @pytest.mark.asyncio
    async def test_negative_adjustment_is_checked_against_balance(self, scope):
        ledger, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")

        with pytest.raises(InsufficientBalanceError):
            await ledger.apply_transaction(
                scope, "exports", CreditTransactionType.ADJUSTMENT, Decimal("-150"), "a1"
            )
        tx = await ledger.apply_transaction(
            scope, "exports", CreditTransactionType.ADJUSTMENT, Decimal("-40"), "a2"
        )

        assert tx.balance_after == Decimal("60")

    @pytest.mark.asyncio
    async def test_negative_balance_allowed_when_configured(self, scope):
        ledger, *_ = _make_ledger(allow_negative_balance=True)

        debit = await _deduct(ledger, scope, 50, "d1")
        credit = await _purchase(ledger, scope, 80, "p1")
        balance = await ledger.get_balance(scope, "exports")

        assert debit.balance_after == Decimal("-50")
        assert credit.balance_after == Decimal("30")
        assert balance.available == Decimal("30")


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expired_purchase_becomes_one_expiry(self, scope):
        ledger, repo, *_ = _make_ledger()
        await _purchase(ledger, scope, 1000, "p1", expires_at=NOW - timedelta(days=1))

        assert await ledger.get_available(scope, "exports") == Decimal("0")

        first = await ledger.get_balance(scope, "exports")
        second = await ledger.get_balance(scope, "exports")

        expiries = [tx for tx in repo.transactions if tx.type == CreditTransactionType.EXPIRY]
        assert len(expiries) == 1
        assert expiries[0].amount == Decimal("-1000")
        assert expiries[0].idempotency_key == f"expire:{repo.transactions[0].id}"
        assert first.balance == second.balance == Decimal("0")
        assert first.available == Decimal("0")
        assert await ledger.replay_balance(scope, "exports") == Decimal("0")

    @pytest.mark.asyncio
    async def test_debits_drain_soonest_expiring_lot_first(self, scope):
        ledger, repo, _, clock = _make_ledger()
        lot_a = await _purchase(ledger, scope, 100, "a", expires_at=NOW + timedelta(days=10))
        await _purchase(ledger, scope, 100, "b")
        await _purchase(ledger, scope, 100, "c", expires_at=NOW + timedelta(days=5))
        await _deduct(ledger, scope, 150, "d1")

        clock.advance(days=6)
        mid = await ledger.get_balance(scope, "exports")
        assert mid.balance == Decimal("150")
        assert mid.expires_at == NOW + timedelta(days=10)

        clock.advance(days=5)
        after = await ledger.get_balance(scope, "exports")

        expiry = repo.transactions[-1]
        assert expiry.type == CreditTransactionType.EXPIRY
        assert expiry.amount == Decimal("-50")
        assert expiry.reference == str(lot_a.id)
        assert after.balance == after.available == Decimal("100")
        assert after.expires_at is None

    @pytest.mark.asyncio
    async def test_write_converts_expired_lots_before_debiting(self, scope):
        ledger, repo, _, clock = _make_ledger()
        await _purchase(ledger, scope, 100, "x", expires_at=NOW + timedelta(days=1))
        await _purchase(ledger, scope, 100, "y")
        clock.advance(days=2)

        tx = await _deduct(ledger, scope, 50, "d1")

        assert tx.balance_after == Decimal("50")
        assert _types(repo) == [
            CreditTransactionType.PURCHASE,
            CreditTransactionType.PURCHASE,
            CreditTransactionType.EXPIRY,
            CreditTransactionType.DEDUCTION,
        ]

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back_its_expiries(self, scope):
        ledger, repo, _, clock = _make_ledger()
        await _purchase(ledger, scope, 100, "x", expires_at=NOW + timedelta(days=1))
        clock.advance(days=2)

        with pytest.raises(InsufficientBalanceError):
            await _deduct(ledger, scope, 10, "d1")
        assert len(repo.transactions) == 1

        balance = await ledger.get_balance(scope, "exports")
        assert balance.balance == Decimal("0")
        assert _types(repo) == [CreditTransactionType.PURCHASE, CreditTransactionType.EXPIRY]

    @pytest.mark.asyncio
    async def test_expire_due_cannot_run_ahead_of_the_clock(self, scope):
        ledger, repo, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "x", expires_at=NOW + timedelta(days=1))

        expired = await ledger.expire_due(scope, "exports", as_of=NOW + timedelta(days=30))

        assert expired == []
        assert len(repo.transactions) == 1


# ---------------------------------------------------------------------------
# transfer
# ---------------------------------------------------------------------------


class TestTransfer:
    @pytest.mark.asyncio
    async def test_transfer_writes_both_legs(self, scope, sub_scope):
        ledger, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")

        result = await ledger.transfer(scope, sub_scope, "exports", Decimal("40"), "t1")

        assert result.outgoing.amount == Decimal("-40")
        assert result.outgoing.reference == sub_scope.scope_key
        assert result.incoming.amount == Decimal("40")
        assert result.incoming.reference == scope.scope_key
        assert (await ledger.get_balance(scope, "exports")).balance == Decimal("60")
        assert (await ledger.get_balance(sub_scope, "exports")).balance == Decimal("40")

    @pytest.mark.asyncio
    async def test_transfer_is_idempotent(self, scope, sub_scope):
        ledger, repo, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")

        first = await ledger.transfer(scope, sub_scope, "exports", Decimal("40"), "t1")
        second = await ledger.transfer(scope, sub_scope, "exports", Decimal("40"), "t1")

        assert second == first
        assert len(repo.transactions) == 3

    @pytest.mark.asyncio
    async def test_incoming_leg_is_keyed_in_the_target_scope(self, scope, sub_scope):
        ledger, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")

        result = await ledger.transfer(scope, sub_scope, "exports", Decimal("40"), "t1")

        assert result.outgoing.idempotency_key == "t1"
        assert result.incoming.idempotency_key == f"in:{scope.scope_key}:t1"

    @pytest.mark.asyncio
    async def test_target_can_reuse_the_key_for_its_own_transfer(self, scope, sub_scope):
        ledger, repo, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")
        await ledger.transfer(scope, sub_scope, "exports", Decimal("40"), "t1")

        back = await ledger.transfer(sub_scope, scope, "exports", Decimal("10"), "t1")

        assert back.outgoing.amount == Decimal("-10")
        assert len(repo.transactions) == 5
        assert (await ledger.get_balance(scope, "exports")).balance == Decimal("70")
        assert (await ledger.get_balance(sub_scope, "exports")).balance == Decimal("30")

    @pytest.mark.asyncio
    async def test_transfer_amount_beyond_six_places_is_rejected(self, scope, sub_scope):
        ledger, repo, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")

        with pytest.raises(InvalidRequestError):
            await ledger.transfer(scope, sub_scope, "exports", Decimal("0.0000001"), "t1")
        assert len(repo.transactions) == 1

    @pytest.mark.asyncio
    async def test_transfer_across_agencies_is_forbidden(self, scope):
        ledger, *_ = _make_ledger()

        with pytest.raises(PermissionException):
            await ledger.transfer(scope, OTHER_AGENCY_SCOPE, "exports", Decimal("1"), "t1")

    @pytest.mark.asyncio
    async def test_transfer_to_same_scope_is_rejected(self, scope):
        ledger, *_ = _make_ledger()

        with pytest.raises(InvalidRequestError):
            await ledger.transfer(scope, scope, "exports", Decimal("1"), "t1")

    @pytest.mark.asyncio
    async def test_insufficient_transfer_writes_nothing(self, scope, sub_scope):
        ledger, repo, *_ = _make_ledger()

        with pytest.raises(InsufficientBalanceError):
            await ledger.transfer(scope, sub_scope, "exports", Decimal("10"), "t1")
        assert repo.transactions == []


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    @pytest.mark.asyncio
    async def test_balance_of_unknown_feature_is_zero(self, scope):
        ledger, *_ = _make_ledger()

        balance = await ledger.get_balance(scope, "exports")

        assert balance.balance == balance.available == Decimal("0")
        assert balance.currency == "CREDITS"
        assert balance.last_updated == NOW

    @pytest.mark.asyncio
    async def test_colons_in_ids_do_not_merge_scopes(self):
        ledger, *_ = _make_ledger()
        eu_agency = SubAccountScope(agency_id="acme:eu", sub_account_id="s1")
        lookalike = SubAccountScope(agency_id="acme", sub_account_id="eu:s1")

        await _purchase(ledger, eu_agency, 500, "p1")

        assert (await ledger.get_balance(lookalike, "exports")).balance == Decimal("0")
        assert (await ledger.get_balance(eu_agency, "exports")).balance == Decimal("500")

    @pytest.mark.asyncio
    async def test_aggregated_balance_sums_features(self, scope):
        ledger, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1", feature_key="a")
        await _purchase(ledger, scope, 50, "p2", feature_key="b")
        await _deduct(ledger, scope, 30, "d1", feature_key="a")

        aggregated = await ledger.get_aggregated_balance(scope)

        assert aggregated.total == Decimal("150")
        assert aggregated.used == Decimal("30")
        assert aggregated.remaining == Decimal("120")
        assert aggregated.currency == "CREDITS"
        assert [b.feature_key for b in aggregated.balances] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_aggregated_balance_of_empty_scope(self, scope):
        ledger, *_ = _make_ledger()

        aggregated = await ledger.get_aggregated_balance(scope)

        assert aggregated.total == aggregated.remaining == Decimal("0")
        assert aggregated.balances == []

    @pytest.mark.asyncio
    async def test_aggregated_balance_rejects_mixed_currencies(self, scope):
        ledger, *_ = _make_ledger()
        await _purchase(ledger, scope, 100, "p1", feature_key="a", currency="USD")
        await _purchase(ledger, scope, 100, "p2", feature_key="b", currency="EUR")

        with pytest.raises(MixedCurrencyError):
            await ledger.get_aggregated_balance(scope)

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, scope):
        ledger, _, _, clock = _make_ledger()
        await _purchase(ledger, scope, 100, "p1")
        clock.advance(minutes=1)
        await _purchase(ledger, scope, 100, "p2", feature_key="reports")
        clock.advance(minutes=1)
        await _deduct(ledger, scope, 10, "d1")

        everything = await ledger.list_transactions(scope)
        exports = await ledger.list_transactions(scope, feature_key="exports")
        latest = await ledger.list_transactions(scope, limit=1)

        assert [tx.idempotency_key for tx in everything] == ["d1", "p2", "p1"]
        assert [tx.idempotency_key for tx in exports] == ["d1", "p1"]
        assert [tx.idempotency_key for tx in latest] == ["d1"]

    @pytest.mark.asyncio
    async def test_history_limit_is_clamped(self, scope):
        ledger, *_ = _make_ledger(history_max_limit=2)
        for i in range(3):
            await _purchase(ledger, scope, 10, f"p{i}")

        assert len(await ledger.list_transactions(scope, limit=50)) == 2
        with pytest.raises(InvalidRequestError):
            await ledger.list_transactions(scope, limit=0)
