"""Root conftest for pytest configuration and shared fixtures.

This conftest is loaded before both testpaths (tests/ and meterline/),
making its fixtures available to centralized tests AND colocated domain tests.
"""

import os
from datetime import datetime, timezone

import pytest


# ---------------------------------------------------------------------------
# Environment variables: must be set before any meterline module import.
# Uses setdefault so real env vars (CI) are never overridden.
# ---------------------------------------------------------------------------
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("POSTGRES_HOST", "localhost")
os.environ.setdefault("POSTGRES_USER", "test_user")
os.environ.setdefault("POSTGRES_PASSWORD", "test_password")
os.environ.setdefault("POSTGRES_DB", "test_db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

TEST_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Shared fake fixtures: individual in-memory stores
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_clock():
    """Settable clock pinned to a fixed UTC instant."""
    from meterline.core.fakes import FakeClock

    return FakeClock(TEST_NOW)


@pytest.fixture
def fake_entitlement_repo():
    """Fake EntitlementRepository; seed per scope with ``seed(scope, *ents)``."""
    from meterline.domains.entitlements.fakes import FakeEntitlementRepository

    return FakeEntitlementRepository()


@pytest.fixture
def fake_idempotency_repo():
    """Fake IdempotencyRepository that stores claims in memory."""
    from meterline.domains.idempotency.fakes import FakeIdempotencyRepository

    return FakeIdempotencyRepository()


@pytest.fixture
def fake_usage_repo():
    """Fake UsageEventRepository that stores events in memory."""
    from meterline.domains.usage.fakes import FakeUsageEventRepository

    return FakeUsageEventRepository()


@pytest.fixture
def fake_credit_repo():
    """Fake CreditRepository that stores positions and transactions in memory."""
    from meterline.domains.credits.fakes import FakeCreditRepository

    return FakeCreditRepository()


@pytest.fixture
def fake_sessions(fake_idempotency_repo, fake_usage_repo, fake_credit_repo):
    """FakeSessionFactory that rolls the writable stores back together."""
    from meterline.db.fakes import FakeSessionFactory

    return FakeSessionFactory(fake_idempotency_repo, fake_usage_repo, fake_credit_repo)


# ---------------------------------------------------------------------------
# Test container: real services wired over the in-memory stores
# ---------------------------------------------------------------------------


@pytest.fixture
def test_container(
    fake_clock,
    fake_entitlement_repo,
    fake_idempotency_repo,
    fake_usage_repo,
    fake_credit_repo,
    fake_sessions,
):
    """A Container of the real services on top of fakes.

    Use this when testing code that receives a Container or individual
    protocols via dependency injection.

    For partial overrides, use container.replace():
        stub_container = test_container.replace(credit_ledger=FakeCreditLedger())
    """
    from meterline.core.config.enums import UsageRollupPolicy
    from meterline.core.container import Container
    from meterline.domains.aggregation.service import AggregationService
    from meterline.domains.credits.grants import RecurringCreditGranter
    from meterline.domains.credits.ledger import CreditLedger
    from meterline.domains.credits.sweeper import CreditExpirySweeper
    from meterline.domains.entitlements.evaluator import EntitlementEvaluator
    from meterline.domains.idempotency.guard import IdempotencyGuard
    from meterline.domains.usage.ledger import UsageLedger

    guard = IdempotencyGuard(
        repo=fake_idempotency_repo,
        session_factory=fake_sessions,
        max_attempts=3,
        retry_wait_seconds=0,
    )
    usage_ledger = UsageLedger(
        usage_repo=fake_usage_repo,
        entitlement_repo=fake_entitlement_repo,
        guard=guard,
        session_factory=fake_sessions,
        clock=fake_clock,
    )
    credit_ledger = CreditLedger(
        credit_repo=fake_credit_repo,
        guard=guard,
        session_factory=fake_sessions,
        clock=fake_clock,
        max_attempts=3,
        retry_wait_seconds=0,
    )
    evaluator = EntitlementEvaluator(
        entitlement_repo=fake_entitlement_repo,
        usage_ledger=usage_ledger,
        credit_ledger=credit_ledger,
        session_factory=fake_sessions,
        clock=fake_clock,
    )
    aggregation_service = AggregationService(
        usage_ledger=usage_ledger,
        usage_repo=fake_usage_repo,
        evaluator=evaluator,
        entitlement_repo=fake_entitlement_repo,
        credit_ledger=credit_ledger,
        guard=guard,
        session_factory=fake_sessions,
        rollup_policy=UsageRollupPolicy.AGENCY_ONLY,
    )

    return Container(
        idempotency_repo=fake_idempotency_repo,
        usage_repo=fake_usage_repo,
        entitlement_repo=fake_entitlement_repo,
        credit_repo=fake_credit_repo,
        idempotency_guard=guard,
        usage_ledger=usage_ledger,
        credit_ledger=credit_ledger,
        entitlement_evaluator=evaluator,
        aggregation_service=aggregation_service,
        expiry_sweeper=CreditExpirySweeper(
            credit_repo=fake_credit_repo,
            credit_ledger=credit_ledger,
            session_factory=fake_sessions,
            clock=fake_clock,
        ),
        credit_granter=RecurringCreditGranter(
            entitlement_repo=fake_entitlement_repo,
            credit_ledger=credit_ledger,
            session_factory=fake_sessions,
            clock=fake_clock,
        ),
    )
