"""Per-period recurring credit grants."""

from datetime import datetime
from typing import Callable, Optional

from meterline.core.exceptions import InvalidStateError, MeterlineException
from meterline.core.logging import logger
from meterline.db.session import SessionFactory, get_db_context
from meterline.domains.credits.protocols import (
    CreditLedgerProtocol,
    RecurringCreditGranterProtocol,
)
from meterline.domains.entitlements.protocols import EntitlementRepositoryProtocol
from meterline.domains.usage.types import as_utc, get_usage_window
from meterline.models._base import utc_now
from meterline.schemas.credit import CreditGrantResult, CreditTransaction, CreditTransactionType
from meterline.schemas.scope import Scope


class RecurringCreditGranter(RecurringCreditGranterProtocol):
    """Issues recurring BONUS credits once per entitlement period."""

    def __init__(
        self,
        entitlement_repo: EntitlementRepositoryProtocol,
        credit_ledger: CreditLedgerProtocol,
        session_factory: SessionFactory = get_db_context,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the granter with the entitlement source and the ledger."""
        self._entitlement_repo = entitlement_repo
        self._ledger = credit_ledger
        self._session_factory = session_factory
        self._clock = clock

    async def grant(self, scope: Scope, as_of: Optional[datetime] = None) -> CreditGrantResult:
        """Grant this period's credits for one scope.

        Keyed by ``grant:<feature>:<period start>``, so running the job twice in
        one period grants once. Without rollover the bonus expires when the
        period ends.
        """
        moment = as_utc(as_of or self._clock())
        async with self._session_factory() as db:
            entitlements = await self._entitlement_repo.list_for_scope(db, scope=scope)

        granted: list[CreditTransaction] = []
        for feature_key in sorted(entitlements):
            entitlement = entitlements[feature_key]
            if not entitlement.enabled or not entitlement.recurring_credit_grant:
                continue
            window = get_usage_window(entitlement.period, moment)
            tx = await self._ledger.apply_transaction(
                scope,
                feature_key,
                CreditTransactionType.BONUS,
                entitlement.recurring_credit_grant,
                f"grant:{feature_key}:{window.period_start.isoformat()}",
                expires_at=None if entitlement.rollover_credits else window.period_end,
                description=f"Recurring {entitlement.period.value.lower()} credit grant",
            )
            granted.append(tx)
        return CreditGrantResult(granted=granted)

    async def grant_all(self, as_of: Optional[datetime] = None) -> CreditGrantResult:
        """Grant this period's credits for every scope that has a recurring grant.

        A scope whose grant fails is logged and reported in ``failed_scopes``;
        the remaining scopes are still granted.
        """
        async with self._session_factory() as db:
            scopes = await self._entitlement_repo.list_scopes_with_recurring_grants(db)

        granted: list[CreditTransaction] = []
        failed: list[str] = []
        for scope in scopes:
            try:
                result = await self.grant(scope, as_of)
            except (MeterlineException, InvalidStateError) as exc:
                logger.with_context(scope=scope.scope_key).error(
                    f"Recurring credit grant failed: {exc}"
                )
                failed.append(scope.scope_key)
                continue
            granted.extend(result.granted)
        logger.info(
            f"Recurring grant run covered {len(scopes)} scopes, {len(granted)} grants, "
            f"{len(failed)} failed"
        )
        return CreditGrantResult(granted=granted, failed_scopes=failed)
