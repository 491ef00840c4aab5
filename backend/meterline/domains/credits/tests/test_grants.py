"""Unit tests for RecurringCreditGranter."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from meterline.domains.credits.grants import RecurringCreditGranter
from meterline.domains.credits.tests.conftest import OTHER_AGENCY_SCOPE, _make_ledger
from meterline.domains.entitlements.fakes.repository import FakeEntitlementRepository
from meterline.schemas.credit import CreditTransactionType
from meterline.schemas.entitlement import Entitlement


def _entitlement(**overrides) -> Entitlement:
    defaults = dict(feature_key="exports", limit=100, recurring_credit_grant=Decimal("250"))
    defaults.update(overrides)
    return Entitlement(**defaults)


def _make_granter():
    ledger, repo, sessions, clock = _make_ledger()
    entitlements = FakeEntitlementRepository()
    granter = RecurringCreditGranter(entitlements, ledger, session_factory=sessions, clock=clock)
    return granter, entitlements, ledger, repo, clock


# ---------------------------------------------------------------------------
# grant
# ---------------------------------------------------------------------------


class TestGrant:
    @pytest.mark.asyncio
    async def test_grant_issues_one_bonus_per_period(self, scope):
        granter, entitlements, ledger, repo, _ = _make_granter()
        entitlements.seed(scope, _entitlement())

        first = await granter.grant(scope)
        second = await granter.grant(scope)

        [bonus] = first.granted
        assert bonus.type == CreditTransactionType.BONUS
        assert bonus.amount == Decimal("250")
        assert bonus.idempotency_key == "grant:exports:2026-03-01T00:00:00+00:00"
        assert bonus.expires_at == datetime(2026, 4, 1, tzinfo=timezone.utc)
        assert second.granted == first.granted
        assert len(repo.transactions) == 1

    @pytest.mark.asyncio
    async def test_unused_grant_expires_when_the_next_one_arrives(self, scope):
        granter, entitlements, ledger, repo, clock = _make_granter()
        entitlements.seed(scope, _entitlement())
        await granter.grant(scope)

        clock.now = datetime(2026, 4, 2, tzinfo=timezone.utc)
        await granter.grant(scope)
        balance = await ledger.get_balance(scope, "exports")

        assert balance.balance == Decimal("250")
        assert [tx.type for tx in repo.transactions] == [
            CreditTransactionType.BONUS,
            CreditTransactionType.EXPIRY,
            CreditTransactionType.BONUS,
        ]

    @pytest.mark.asyncio
    async def test_rollover_grants_never_expire(self, scope):
        granter, entitlements, ledger, _, clock = _make_granter()
        entitlements.seed(scope, _entitlement(rollover_credits=True))

        first = await granter.grant(scope)
        clock.now = datetime(2026, 4, 2, tzinfo=timezone.utc)
        await granter.grant(scope)

        assert first.granted[0].expires_at is None
        assert (await ledger.get_balance(scope, "exports")).balance == Decimal("500")

    @pytest.mark.asyncio
    async def test_entitlements_without_active_grant_are_skipped(self, scope):
        granter, entitlements, *_ = _make_granter()
        entitlements.seed(
            scope,
            _entitlement(feature_key="seats", recurring_credit_grant=None),
            _entitlement(feature_key="reports", enabled=False),
        )

        result = await granter.grant(scope)

        assert result.granted == []

    @pytest.mark.asyncio
    async def test_grant_all_covers_every_scope_with_a_grant(self, scope, sub_scope):
        granter, entitlements, *_ = _make_granter()
        entitlements.seed(scope, _entitlement())
        entitlements.seed(sub_scope, _entitlement(recurring_credit_grant=Decimal("20")))
        entitlements.seed(OTHER_AGENCY_SCOPE, _entitlement(recurring_credit_grant=None))

        result = await granter.grant_all()

        assert sorted((tx.scope.scope_key, tx.amount) for tx in result.granted) == [
            (scope.scope_key, Decimal("250")),
            (sub_scope.scope_key, Decimal("20")),
        ]

    @pytest.mark.asyncio
    async def test_grant_all_keeps_going_after_a_failed_scope(self, scope, sub_scope):
        granter, entitlements, *_ = _make_granter()
        entitlements.seed(scope, _entitlement(recurring_credit_grant=Decimal("0.0000001")))
        entitlements.seed(sub_scope, _entitlement(recurring_credit_grant=Decimal("20")))

        result = await granter.grant_all()

        assert [(tx.scope.scope_key, tx.amount) for tx in result.granted] == [
            (sub_scope.scope_key, Decimal("20")),
        ]
        assert result.failed_scopes == [scope.scope_key]
