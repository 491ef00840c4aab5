"""Aggregation domain protocols."""

from typing import Optional, Protocol, runtime_checkable

from meterline.schemas.credit import AggregatedCreditBalance, CreditTransaction
from meterline.schemas.entitlement import EntitlementCheck, EntitlementsResponse, UsagePeriod
from meterline.schemas.scope import Scope
from meterline.schemas.usage import ConsumeResult, UsageSummary


@runtime_checkable
class AggregationServiceProtocol(Protocol):
    """Read-side facade over usage, entitlements and credits for one scope."""

    async def get_usage_summary(
        self, scope: Scope, period: UsagePeriod = UsagePeriod.MONTHLY, periods_back: int = 0
    ) -> UsageSummary:
        """Usage of every metered entitlement in one window."""
        ...

    async def get_entitlements(self, scope: Scope) -> EntitlementsResponse:
        """Effective entitlements for the scope."""
        ...

    async def check_entitlement(
        self, scope: Scope, feature_key: str, quantity: int = 1
    ) -> EntitlementCheck:
        """Whether ``quantity`` more units of ``feature_key`` would be allowed."""
        ...

    async def get_credit_balance(self, scope: Scope) -> AggregatedCreditBalance:
        """Credit balances of every feature of the scope."""
        ...

    async def get_credit_history(
        self, scope: Scope, feature_key: Optional[str] = None, limit: int = 50
    ) -> list[CreditTransaction]:
        """Credit transactions, newest first."""
        ...

    async def consume_usage(
        self,
        scope: Scope,
        feature_key: str,
        quantity: int,
        idempotency_key: str,
        action_key: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> ConsumeResult:
        """Check, record and pay for usage in one step."""
        ...
