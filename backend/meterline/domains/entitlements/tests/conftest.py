"""Entitlements domain test fixtures and helpers."""

from decimal import Decimal
from typing import Optional

import pytest

from meterline.db.fakes import FakeSessionFactory
from meterline.domains.credits.fakes.ledger import FakeCreditLedger
from meterline.domains.entitlements.evaluator import EntitlementEvaluator
from meterline.domains.entitlements.fakes.repository import FakeEntitlementRepository
from meterline.domains.usage.fakes.ledger import FakeUsageLedger
from meterline.schemas.entitlement import Entitlement
from meterline.schemas.scope import AgencyScope

AGENCY_SCOPE = AgencyScope(agency_id="agency-1")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_entitlement(**overrides) -> Entitlement:
    """Monthly hard limit of 100 on ``exports`` unless overridden."""
    defaults = dict(feature_key="exports", title="Exports", limit=100)
    defaults.update(overrides)
    return Entitlement(**defaults)


def _make_evaluator(
    *entitlements: Entitlement,
    usage: int = 0,
    credits: Optional[Decimal] = None,
) -> tuple[EntitlementEvaluator, FakeUsageLedger, FakeCreditLedger]:
    """Build an evaluator over fakes. Returns (evaluator, usage_ledger, credit_ledger)."""
    repo = FakeEntitlementRepository()
    repo.seed(AGENCY_SCOPE, *entitlements)
    usage_ledger = FakeUsageLedger()
    credit_ledger = FakeCreditLedger()
    for entitlement in entitlements:
        usage_ledger.set_usage(AGENCY_SCOPE, entitlement.feature_key, usage)
        if credits is not None:
            credit_ledger.set_available(AGENCY_SCOPE, entitlement.feature_key, credits)
    evaluator = EntitlementEvaluator(
        entitlement_repo=repo,
        usage_ledger=usage_ledger,
        credit_ledger=credit_ledger,
        session_factory=FakeSessionFactory(),
    )
    return evaluator, usage_ledger, credit_ledger


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def scope():
    return AGENCY_SCOPE
