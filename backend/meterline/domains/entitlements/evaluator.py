"""Entitlement evaluator: decides allow/deny for a metered action.

The decision is a pure function of the entitlement, the usage in the current
window and, for credit-backed overage, the spendable credit balance. The
evaluator never writes; recording the usage and debiting the overage is the
caller's job.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.core.exceptions import InvalidRequestError
from meterline.core.logging import logger
from meterline.db.session import SessionFactory, get_db_context
from meterline.domains.credits.protocols import CreditLedgerProtocol
from meterline.domains.entitlements.protocols import (
    EntitlementEvaluatorProtocol,
    EntitlementRepositoryProtocol,
)
from meterline.domains.usage.protocols import UsageLedgerProtocol
from meterline.domains.usage.types import as_utc
from meterline.models._base import utc_now
from meterline.schemas.entitlement import (
    Entitlement,
    EntitlementCheck,
    LimitEnforcement,
    MeteringType,
    OverageMode,
)
from meterline.schemas.scope import Scope


def overage_units(current: int, quantity: int, limit: int) -> int:
    """Units of this request that land above the limit."""
    return max(0, min(quantity, current + quantity - limit))


class EntitlementEvaluator(EntitlementEvaluatorProtocol):
    """Evaluates checks in fixed precedence order.

    1. no_entitlement
    2. disabled
    3. unlimited
    4. granted (feature flag without metering)
    5. within_limit
    6. over limit, resolved by overage mode and enforcement
    """

    def __init__(
        self,
        entitlement_repo: EntitlementRepositoryProtocol,
        usage_ledger: UsageLedgerProtocol,
        credit_ledger: CreditLedgerProtocol,
        session_factory: SessionFactory = get_db_context,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the evaluator with its read-side collaborators."""
        self._entitlement_repo = entitlement_repo
        self._usage_ledger = usage_ledger
        self._credit_ledger = credit_ledger
        self._session_factory = session_factory
        self._clock = clock

    async def check(
        self,
        scope: Scope,
        feature_key: str,
        quantity: int = 1,
        as_of: Optional[datetime] = None,
        include_sub_accounts: bool = False,
    ) -> EntitlementCheck:
        """Evaluate ``quantity`` units of ``feature_key`` for ``scope``."""
        async with self._session_factory() as db:
            entitlement = await self._entitlement_repo.get(
                db, scope=scope, feature_key=feature_key
            )
        return await self.evaluate(scope, entitlement, quantity, as_of, include_sub_accounts)

    async def evaluate(
        self,
        scope: Scope,
        entitlement: Optional[Entitlement],
        quantity: int = 1,
        as_of: Optional[datetime] = None,
        include_sub_accounts: bool = False,
        db: Optional[AsyncSession] = None,
    ) -> EntitlementCheck:
        """Same as ``check`` for an entitlement the caller already loaded.

        With ``db`` every read goes through the caller's unit of work.
        """
        if quantity < 1:
            raise InvalidRequestError("quantity must be at least 1")

        if entitlement is None:
            return EntitlementCheck(allowed=False, reason="no_entitlement")
        if not entitlement.enabled:
            return EntitlementCheck(allowed=False, reason="disabled")
        if entitlement.is_unlimited:
            return EntitlementCheck(allowed=True, reason="unlimited")
        if entitlement.metering_type == MeteringType.NONE:
            return EntitlementCheck(allowed=True, reason="granted", limit=entitlement.limit)

        moment = as_utc(as_of or self._clock())
        current = await self._usage_ledger.current_usage(
            scope,
            entitlement.feature_key,
            entitlement.period,
            metering_type=entitlement.metering_type,
            as_of=moment,
            include_sub_accounts=include_sub_accounts,
            db=db,
        )
        limit = entitlement.limit

        if current + quantity <= limit:
            return EntitlementCheck(
                allowed=True,
                reason="within_limit",
                current_usage=current,
                limit=limit,
                remaining=limit - current - quantity,
            )

        check = await self._over_limit(scope, entitlement, current, quantity, moment, db)
        logger.with_context(scope=scope.scope_key, feature_key=entitlement.feature_key).debug(
            f"Over limit ({current}+{quantity} > {limit}): allowed={check.allowed}"
        )
        return check

    async def _over_limit(
        self,
        scope: Scope,
        entitlement: Entitlement,
        current: int,
        quantity: int,
        moment: datetime,
        db: Optional[AsyncSession] = None,
    ) -> EntitlementCheck:
        limit = entitlement.limit
        units = overage_units(current, quantity, limit)
        remaining = max(0, limit - current)
        base = dict(current_usage=current, limit=limit, overage_units=units)

        if entitlement.overage_mode == OverageMode.INTERNAL_CREDITS:
            required = Decimal(units) * entitlement.credits_per_unit
            available = await self._credit_ledger.get_available(
                scope, entitlement.feature_key, as_of=moment, db=db
            )
            if available >= required:
                return EntitlementCheck(
                    allowed=True,
                    reason="within_limit",
                    remaining=0,
                    is_overage=True,
                    credits_required=required,
                    **base,
                )
            # Not enough credits: plain enforcement decides, nothing is debited.
            return EntitlementCheck(
                allowed=entitlement.enforcement == LimitEnforcement.SOFT,
                reason="over_limit",
                remaining=remaining,
                is_overage=entitlement.enforcement == LimitEnforcement.SOFT,
                **base,
            )

        if (
            entitlement.overage_mode == OverageMode.STRIPE_METERED
            or entitlement.enforcement == LimitEnforcement.SOFT
        ):
            return EntitlementCheck(
                allowed=True, reason="over_limit", remaining=0, is_overage=True, **base
            )

        return EntitlementCheck(allowed=False, reason="over_limit", remaining=remaining, **base)
