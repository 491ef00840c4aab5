"""Fake entitlement evaluator for testing."""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.entitlements.protocols import EntitlementEvaluatorProtocol
from meterline.schemas.entitlement import Entitlement, EntitlementCheck
from meterline.schemas.scope import Scope


class FakeEntitlementEvaluator(EntitlementEvaluatorProtocol):
    """Test implementation of EntitlementEvaluatorProtocol.

    Returns a configured check per feature, ``no_entitlement`` otherwise.

    Usage:
        evaluator = FakeEntitlementEvaluator()
        evaluator.set_check("exports", EntitlementCheck(allowed=True, reason="within_limit"))
    """

    def __init__(self) -> None:
        """Initialize with no configured checks."""
        self._checks: dict[str, EntitlementCheck] = {}
        self.calls: list[tuple[str, str, int]] = []

    def set_check(self, feature_key: str, check: EntitlementCheck) -> None:
        """Configure the check returned for ``feature_key``."""
        self._checks[feature_key] = check

    async def check(
        self,
        scope: Scope,
        feature_key: str,
        quantity: int = 1,
        as_of: Optional[datetime] = None,
        include_sub_accounts: bool = False,
    ) -> EntitlementCheck:
        """Return the configured check."""
        self.calls.append((scope.scope_key, feature_key, quantity))
        return self._checks.get(
            feature_key, EntitlementCheck(allowed=False, reason="no_entitlement")
        )

    async def evaluate(
        self,
        scope: Scope,
        entitlement: Optional[Entitlement],
        quantity: int = 1,
        as_of: Optional[datetime] = None,
        include_sub_accounts: bool = False,
        db: Optional[AsyncSession] = None,
    ) -> EntitlementCheck:
        """Return the configured check for the entitlement's feature."""
        if entitlement is None:
            return EntitlementCheck(allowed=False, reason="no_entitlement")
        return await self.check(scope, entitlement.feature_key, quantity, as_of)
