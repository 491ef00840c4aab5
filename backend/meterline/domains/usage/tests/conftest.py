"""Usage domain test fixtures and helpers."""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import pytest

from meterline.core.fakes import FakeClock
from meterline.db.fakes import FakeSessionFactory
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


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_entitlement(**overrides) -> Entitlement:
    defaults = dict(feature_key="exports", title="Exports", unit="exports", limit=100)
    defaults.update(overrides)
    return Entitlement(**defaults)


def _make_event(
    scope: Scope,
    created_at: datetime,
    feature_key: str = "exports",
    quantity: int = 1,
) -> UsageEvent:
    return UsageEvent(
        id=uuid4(),
        scope=scope,
        feature_key=feature_key,
        quantity=quantity,
        idempotency_key=f"seed-{uuid4()}",
        created_at=created_at,
    )


def _make_usage_ledger(
    *entitlements: Entitlement,
    clock: Optional[FakeClock] = None,
) -> tuple[UsageLedger, FakeUsageEventRepository, FakeSessionFactory]:
    """Build a UsageLedger wired to fakes. Returns (ledger, events, sessions).

    Entitlements default to ``exports`` (COUNT) and ``tokens`` (SUM), both
    configured on the agency.
    """
    if not entitlements:
        entitlements = (
            _make_entitlement(),
            _make_entitlement(
                feature_key="tokens", title="Tokens", metering_type=MeteringType.SUM, limit=10_000
            ),
        )
    entitlement_repo = FakeEntitlementRepository()
    entitlement_repo.seed(AGENCY_SCOPE, *entitlements)
    idempotency_repo = FakeIdempotencyRepository()
    usage_repo = FakeUsageEventRepository()
    sessions = FakeSessionFactory(idempotency_repo, usage_repo)
    guard = IdempotencyGuard(
        repo=idempotency_repo,
        session_factory=sessions,
        max_attempts=3,
        retry_wait_seconds=0,
    )
    ledger = UsageLedger(
        usage_repo=usage_repo,
        entitlement_repo=entitlement_repo,
        guard=guard,
        session_factory=sessions,
        clock=clock or FakeClock(NOW),
    )
    return ledger, usage_repo, sessions


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def scope():
    return AGENCY_SCOPE


@pytest.fixture
def sub_scope():
    return SUB_SCOPE
