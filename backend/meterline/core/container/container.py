"""Dependency Injection Container.

The container is an immutable dataclass that holds protocol implementations.
It has no construction logic; that belongs in the factory.

- Container serves, factory builds
- Fields are protocol types
- Tests construct it directly with fakes
"""

from dataclasses import dataclass, replace
from typing import Any

from meterline.domains.aggregation.protocols import AggregationServiceProtocol
from meterline.domains.credits.protocols import (
    CreditExpirySweeperProtocol,
    CreditLedgerProtocol,
    CreditRepositoryProtocol,
    RecurringCreditGranterProtocol,
)
from meterline.domains.entitlements.protocols import (
    EntitlementEvaluatorProtocol,
    EntitlementRepositoryProtocol,
)
from meterline.domains.idempotency.protocols import (
    IdempotencyGuardProtocol,
    IdempotencyRepositoryProtocol,
)
from meterline.domains.usage.protocols import UsageEventRepositoryProtocol, UsageLedgerProtocol


@dataclass(frozen=True)
class Container:
    """Immutable container holding all protocol implementations.

    Usage:
        # Production: use the global container built by the factory
        from meterline.core.container import container
        balance = await container.credit_ledger.get_balance(scope, "exports")

        # FastAPI endpoints: use Inject() to pull individual protocols
        from meterline.api.deps import Inject
        async def my_endpoint(ledger: CreditLedgerProtocol = Inject(CreditLedgerProtocol)):
            ...
    """

    # Repositories
    idempotency_repo: IdempotencyRepositoryProtocol
    usage_repo: UsageEventRepositoryProtocol
    entitlement_repo: EntitlementRepositoryProtocol
    credit_repo: CreditRepositoryProtocol

    # Cross-cutting write guard
    idempotency_guard: IdempotencyGuardProtocol

    # Domain services
    usage_ledger: UsageLedgerProtocol
    credit_ledger: CreditLedgerProtocol
    entitlement_evaluator: EntitlementEvaluatorProtocol
    aggregation_service: AggregationServiceProtocol

    # Scheduled jobs
    expiry_sweeper: CreditExpirySweeperProtocol
    credit_granter: RecurringCreditGranterProtocol

    def replace(self, **changes: Any) -> "Container":
        """Create a new container with some dependencies replaced.

            modified = container.replace(credit_ledger=FakeCreditLedger())
        """
        return replace(self, **changes)
