"""Unit tests for CreditExpirySweeper."""

from datetime import timedelta
from decimal import Decimal

import pytest

from meterline.db.transaction import LockConflictError
from meterline.domains.credits.sweeper import CreditExpirySweeper
from meterline.domains.credits.tests.conftest import NOW, _make_ledger, _purchase


class _ContendedLedger:
    """Delegates to a real ledger but reports one scope as locked."""

    def __init__(self, inner, contended_scope_key: str) -> None:
        self._inner = inner
        self._contended = contended_scope_key

    async def expire_due(self, scope, feature_key, as_of=None):
        if scope.scope_key == self._contended:
            raise LockConflictError(sqlstate="55P03")
        return await self._inner.expire_due(scope, feature_key, as_of)


async def _seed(ledger, scope, sub_scope):
    await _purchase(ledger, scope, 100, "a", expires_at=NOW + timedelta(days=1))
    await _purchase(ledger, sub_scope, 50, "b", expires_at=NOW + timedelta(days=2))
    await _purchase(ledger, scope, 10, "c", feature_key="reports")


# ---------------------------------------------------------------------------
# sweep
# ---------------------------------------------------------------------------


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_expires_every_due_position_once(self, scope, sub_scope):
        ledger, repo, sessions, clock = _make_ledger()
        sweeper = CreditExpirySweeper(repo, ledger, session_factory=sessions, clock=clock)
        await _seed(ledger, scope, sub_scope)
        clock.advance(days=3)

        first = await sweeper.sweep()
        second = await sweeper.sweep()

        assert first.positions_checked == 2
        assert sorted(tx.amount for tx in first.expired) == [Decimal("-100"), Decimal("-50")]
        assert second.positions_checked == 0
        assert second.expired == []
        assert await ledger.replay_balance(scope, "exports") == Decimal("0")
        assert await ledger.replay_balance(sub_scope, "exports") == Decimal("0")
        assert await ledger.replay_balance(scope, "reports") == Decimal("10")

    @pytest.mark.asyncio
    async def test_sweep_leaves_positions_that_are_not_due(self, scope, sub_scope):
        ledger, repo, sessions, clock = _make_ledger()
        sweeper = CreditExpirySweeper(repo, ledger, session_factory=sessions, clock=clock)
        await _seed(ledger, scope, sub_scope)
        clock.advance(hours=36)

        result = await sweeper.sweep()

        assert result.positions_checked == 1
        assert [tx.scope for tx in result.expired] == [scope]
        assert await ledger.replay_balance(sub_scope, "exports") == Decimal("50")

    @pytest.mark.asyncio
    async def test_contended_position_is_left_for_next_sweep(self, scope, sub_scope):
        ledger, repo, sessions, clock = _make_ledger()
        await _seed(ledger, scope, sub_scope)
        clock.advance(days=3)
        contended = CreditExpirySweeper(
            repo,
            _ContendedLedger(ledger, scope.scope_key),
            session_factory=sessions,
            clock=clock,
        )

        partial = await contended.sweep()
        retry = await CreditExpirySweeper(
            repo, ledger, session_factory=sessions, clock=clock
        ).sweep()

        assert partial.positions_checked == 2
        assert [tx.scope for tx in partial.expired] == [sub_scope]
        assert retry.positions_checked == 1
        assert [tx.scope for tx in retry.expired] == [scope]
