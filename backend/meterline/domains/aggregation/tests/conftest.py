"""Aggregation domain test fixtures and helpers."""

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from meterline.core.config.enums import UsageRollupPolicy
from meterline.core.fakes import FakeClock
from meterline.db.fakes import FakeSessionFactory
from meterline.domains.aggregation.service import AggregationService
from meterline.domains.credits.fakes.repository import FakeCreditRepository
from meterline.domains.credits.ledger import CreditLedger
from meterline.domains.entitlements.evaluator import EntitlementEvaluator
from meterline.domains.entitlements.fakes.repository import FakeEntitlementRepository
from meterline.domains.idempotency.fakes.repository import FakeIdempotencyRepository
from meterline.domains.idempotency.guard import IdempotencyGuard
from meterline.domains.usage.fakes.repository import FakeUsageEventRepository
from meterline.domains.usage.ledger import UsageLedger
from meterline.schemas.entitlement import Entitlement, MeteringType
from meterline.schemas.scope import AgencyScope, Scope, SubAccountScope
from meterline.schemas.usage import UsageEvent

AGENCY_SCOPE = AgencyScope(agency_id="agency-1")
SUB_SCOPE = SubAccountScope(agency_id="agency-1", sub_account_id="sub-1")

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@dataclass
class _Stack:
    """The service plus the fakes behind it."""

    service: AggregationService
    entitlements: FakeEntitlementRepository
    events: FakeUsageEventRepository
    credits: FakeCreditRepository
    credit_ledger: CreditLedger
    sessions: FakeSessionFactory
    clock: FakeClock

    def seed_usage(self, scope: Scope, feature_key: str, count: int, quantity: int = 1) -> None:
        self.events.seed(
            *(
                UsageEvent(
                    id=uuid4(),
                    scope=scope,
                    feature_key=feature_key,
                    quantity=quantity,
                    idempotency_key=f"seed-{uuid4()}",
                    created_at=self.clock.now,
                )
                for _ in range(count)
            )
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_entitlement(**overrides) -> Entitlement:
    """SUM-metered ``tokens`` with a monthly hard limit of 100 unless overridden."""
    defaults = dict(
        feature_key="tokens",
        title="Tokens",
        unit="tokens",
        limit=100,
        metering_type=MeteringType.SUM,
    )
    defaults.update(overrides)
    return Entitlement(**defaults)


def _make_stack(
    *entitlements: Entitlement,
    rollup_policy: UsageRollupPolicy = UsageRollupPolicy.AGENCY_ONLY,
) -> _Stack:
    """Wire the real services over in-memory fakes, agency entitlements seeded."""
    clock = FakeClock(NOW)
    entitlement_repo = FakeEntitlementRepository()
    entitlement_repo.seed(AGENCY_SCOPE, *(entitlements or (_make_entitlement(),)))
    idempotency_repo = FakeIdempotencyRepository()
    usage_repo = FakeUsageEventRepository()
    credit_repo = FakeCreditRepository()
    sessions = FakeSessionFactory(idempotency_repo, usage_repo, credit_repo)

    guard = IdempotencyGuard(
        repo=idempotency_repo, session_factory=sessions, max_attempts=3, retry_wait_seconds=0
    )
    usage_ledger = UsageLedger(
        usage_repo=usage_repo,
        entitlement_repo=entitlement_repo,
        guard=guard,
        session_factory=sessions,
        clock=clock,
    )
    credit_ledger = CreditLedger(
        credit_repo=credit_repo,
        guard=guard,
        session_factory=sessions,
        clock=clock,
        max_attempts=3,
        retry_wait_seconds=0,
    )
    evaluator = EntitlementEvaluator(
        entitlement_repo=entitlement_repo,
        usage_ledger=usage_ledger,
        credit_ledger=credit_ledger,
        session_factory=sessions,
        clock=clock,
    )
    service = AggregationService(
        usage_ledger=usage_ledger,
        usage_repo=usage_repo,
        evaluator=evaluator,
        entitlement_repo=entitlement_repo,
        credit_ledger=credit_ledger,
        guard=guard,
        session_factory=sessions,
        rollup_policy=rollup_policy,
    )
    return _Stack(
        service=service,
        entitlements=entitlement_repo,
        events=usage_repo,
        credits=credit_repo,
        credit_ledger=credit_ledger,
        sessions=sessions,
        clock=clock,
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
