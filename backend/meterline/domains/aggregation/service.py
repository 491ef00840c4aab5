"""Aggregation service: the scope-level view the API serves.

Combines the usage ledger, the entitlement evaluator and the credit ledger.
The agency rollup policy is decided here, once, and passed down explicitly;
sub-account scopes are never rolled up.
"""

from typing import Optional

from meterline.core.config.enums import UsageRollupPolicy
from meterline.core.logging import logger
from meterline.db.session import SessionFactory, get_db_context
from meterline.domains.aggregation.protocols import AggregationServiceProtocol
from meterline.domains.credits.protocols import CreditLedgerProtocol
from meterline.domains.entitlements.protocols import (
    EntitlementEvaluatorProtocol,
    EntitlementRepositoryProtocol,
)
from meterline.domains.idempotency.protocols import IdempotencyGuardProtocol
from meterline.domains.idempotency.types import OperationKind, fingerprint_request
from meterline.domains.usage.exceptions import UsageLimitExceededError
from meterline.domains.usage.protocols import UsageEventRepositoryProtocol, UsageLedgerProtocol
from meterline.schemas.credit import (
    AggregatedCreditBalance,
    CreditTransaction,
    CreditTransactionType,
)
from meterline.schemas.entitlement import (
    EntitlementCheck,
    EntitlementsResponse,
    MeteringType,
    OverageMode,
    UsagePeriod,
)
from meterline.schemas.scope import AgencyScope, Scope
from meterline.schemas.usage import ConsumeResult, UsageSummary


class AggregationService(AggregationServiceProtocol):
    """Scope-level usage, entitlement and credit views."""

    def __init__(
        self,
        usage_ledger: UsageLedgerProtocol,
        usage_repo: UsageEventRepositoryProtocol,
        evaluator: EntitlementEvaluatorProtocol,
        entitlement_repo: EntitlementRepositoryProtocol,
        credit_ledger: CreditLedgerProtocol,
        guard: IdempotencyGuardProtocol,
        session_factory: SessionFactory = get_db_context,
        rollup_policy: UsageRollupPolicy = UsageRollupPolicy.AGENCY_ONLY,
    ) -> None:
        """Initialize the service with its collaborators and rollup policy."""
        self._usage_ledger = usage_ledger
        self._usage_repo = usage_repo
        self._evaluator = evaluator
        self._entitlement_repo = entitlement_repo
        self._credit_ledger = credit_ledger
        self._guard = guard
        self._session_factory = session_factory
        self._rollup_policy = UsageRollupPolicy(rollup_policy)

    def _include_sub_accounts(self, scope: Scope) -> bool:
        return (
            self._rollup_policy == UsageRollupPolicy.INCLUDE_SUB_ACCOUNTS
            and isinstance(scope, AgencyScope)
        )

    async def get_usage_summary(
        self, scope: Scope, period: UsagePeriod = UsagePeriod.MONTHLY, periods_back: int = 0
    ) -> UsageSummary:
        """Usage of every metered entitlement in one window."""
        return await self._usage_ledger.summarize_all(
            scope,
            period,
            periods_back=periods_back,
            include_sub_accounts=self._include_sub_accounts(scope),
        )

    async def get_entitlements(self, scope: Scope) -> EntitlementsResponse:
        """Effective entitlements for the scope, sub-account overrides applied."""
        async with self._session_factory() as db:
            entitlements = await self._entitlement_repo.list_for_scope(db, scope=scope)
        return EntitlementsResponse(
            scope=scope, entitlements={key: entitlements[key] for key in sorted(entitlements)}
        )

    async def check_entitlement(
        self, scope: Scope, feature_key: str, quantity: int = 1
    ) -> EntitlementCheck:
        """Whether ``quantity`` more units of ``feature_key`` would be allowed."""
        return await self._evaluator.check(
            scope,
            feature_key,
            quantity,
            include_sub_accounts=self._include_sub_accounts(scope),
        )

    async def get_credit_balance(self, scope: Scope) -> AggregatedCreditBalance:
        """Credit balances of every feature of the scope."""
        return await self._credit_ledger.get_aggregated_balance(scope)

    async def get_credit_history(
        self, scope: Scope, feature_key: Optional[str] = None, limit: int = 50
    ) -> list[CreditTransaction]:
        """Credit transactions, newest first."""
        return await self._credit_ledger.list_transactions(scope, feature_key, limit)

    async def consume_usage(
        self,
        scope: Scope,
        feature_key: str,
        quantity: int,
        idempotency_key: str,
        action_key: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> ConsumeResult:
        """Check, record and pay for usage in one step.

        The check, the event and any credit-backed overage debit form one unit
        under the caller's key: a retry returns the first result even once the
        limit has since been reached. The unit takes a lock on (scope, feature)
        before checking, so concurrent consumers are checked one at a time
        against each other's recorded usage.

        Raises:
            UsageLimitExceededError: the check denied the action.
        """
        async with self._session_factory() as db:
            entitlement = await self._entitlement_repo.get(
                db, scope=scope, feature_key=feature_key
            )
        counted = 1 if entitlement and entitlement.metering_type == MeteringType.COUNT else quantity

        async def _operation(db) -> ConsumeResult:
            await self._usage_repo.lock_feature(db, scope=scope, feature_key=feature_key)
            check = await self._evaluator.evaluate(
                scope,
                entitlement,
                counted,
                include_sub_accounts=self._include_sub_accounts(scope),
                db=db,
            )
            if not check.allowed:
                raise UsageLimitExceededError(feature_key, check)
            event = await self._usage_ledger.record_in(
                db, scope, entitlement, quantity, idempotency_key, action_key, metadata
            )
            overage_tx = None
            if (
                check.is_overage
                and entitlement.overage_mode == OverageMode.INTERNAL_CREDITS
                and check.credits_required > 0
            ):
                overage_tx = await self._credit_ledger.apply_in(
                    db,
                    scope,
                    feature_key,
                    CreditTransactionType.DEDUCTION,
                    check.credits_required,
                    f"{idempotency_key}:overage",
                    description=f"Overage of {check.overage_units} {entitlement.unit}",
                    metadata={"usage_event_id": str(event.id)},
                )
            logger.with_context(scope=scope.scope_key, feature_key=feature_key).info(
                f"Consumed {event.quantity} {entitlement.unit} "
                f"(overage_units={check.overage_units}, credits={check.credits_required})"
            )
            return ConsumeResult(check=check, event=event, overage_transaction=overage_tx)

        return await self._guard.execute(
            scope,
            OperationKind.USAGE_CONSUME,
            idempotency_key,
            _operation,
            ConsumeResult,
            fingerprint=fingerprint_request(
                feature_key=feature_key, quantity=counted, action_key=action_key
            ),
        )
