"""Credits domain test fixtures and helpers."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from meterline.core.fakes import FakeClock
from meterline.db.fakes import FakeSessionFactory
from meterline.domains.credits.fakes.repository import FakeCreditRepository
from meterline.domains.credits.ledger import CreditLedger
from meterline.domains.idempotency.fakes.repository import FakeIdempotencyRepository
from meterline.domains.idempotency.guard import IdempotencyGuard
from meterline.schemas.credit import CreditTransactionType
from meterline.schemas.scope import AgencyScope, SubAccountScope

AGENCY_SCOPE = AgencyScope(agency_id="agency-1")
SUB_SCOPE = SubAccountScope(agency_id="agency-1", sub_account_id="sub-1")
OTHER_AGENCY_SCOPE = AgencyScope(agency_id="agency-2")

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_ledger(
    *,
    clock: Optional[FakeClock] = None,
    allow_negative_balance: bool = False,
    history_max_limit: int = 100,
) -> tuple[CreditLedger, FakeCreditRepository, FakeSessionFactory, FakeClock]:
    """Build a CreditLedger wired to fakes. Returns (ledger, repo, sessions, clock)."""
    clock = clock or FakeClock(NOW)
    idempotency_repo = FakeIdempotencyRepository()
    credit_repo = FakeCreditRepository()
    sessions = FakeSessionFactory(idempotency_repo, credit_repo)
    guard = IdempotencyGuard(
        repo=idempotency_repo,
        session_factory=sessions,
        max_attempts=3,
        retry_wait_seconds=0,
    )
    ledger = CreditLedger(
        credit_repo=credit_repo,
        guard=guard,
        session_factory=sessions,
        clock=clock,
        allow_negative_balance=allow_negative_balance,
        default_currency="CREDITS",
        history_max_limit=history_max_limit,
        max_attempts=3,
        retry_wait_seconds=0,
    )
    return ledger, credit_repo, sessions, clock


async def _purchase(ledger, scope, amount, key, feature_key="exports", **kwargs):
    return await ledger.apply_transaction(
        scope, feature_key, CreditTransactionType.PURCHASE, Decimal(amount), key, **kwargs
    )


async def _deduct(ledger, scope, amount, key, feature_key="exports"):
    return await ledger.apply_transaction(
        scope, feature_key, CreditTransactionType.DEDUCTION, Decimal(amount), key
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def scope():
    return AGENCY_SCOPE


@pytest.fixture
def sub_scope():
    return SUB_SCOPE
