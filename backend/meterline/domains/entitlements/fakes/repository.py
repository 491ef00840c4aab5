"""Fake entitlement repository for testing."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.entitlements.protocols import EntitlementRepositoryProtocol
from meterline.schemas.entitlement import Entitlement
from meterline.schemas.scope import Scope, scope_from_ids

_Key = tuple[str, Optional[str]]


class FakeEntitlementRepository(EntitlementRepositoryProtocol):
    """In-memory fake for EntitlementRepositoryProtocol.

    Seeding an agency scope configures the agency row; seeding a sub-account
    scope configures an override for that sub-account only.
    """

    def __init__(self) -> None:
        """Initialize empty in-memory store."""
        self._rows: dict[_Key, dict[str, Entitlement]] = {}
        self._calls: list[tuple] = []

    def seed(self, scope: Scope, *entitlements: Entitlement) -> None:
        """Configure entitlements for a scope."""
        rows = self._rows.setdefault((scope.agency_id, scope.sub_account_id), {})
        for entitlement in entitlements:
            rows[entitlement.feature_key] = entitlement

    def call_count(self, method: str) -> int:
        """Return the number of times a method was called."""
        return sum(1 for name, *_ in self._calls if name == method)

    def _effective(self, scope: Scope) -> dict[str, Entitlement]:
        effective = dict(self._rows.get((scope.agency_id, None), {}))
        if scope.sub_account_id:
            effective.update(self._rows.get((scope.agency_id, scope.sub_account_id), {}))
        return effective

    async def get(
        self, db: AsyncSession, *, scope: Scope, feature_key: str
    ) -> Optional[Entitlement]:
        """Effective entitlement for one feature, or None."""
        self._calls.append(("get", scope, feature_key))
        return self._effective(scope).get(feature_key)

    async def list_for_scope(self, db: AsyncSession, *, scope: Scope) -> dict[str, Entitlement]:
        """Every effective entitlement for the scope, keyed by feature."""
        self._calls.append(("list_for_scope", scope))
        return self._effective(scope)

    async def list_scopes_with_recurring_grants(self, db: AsyncSession) -> list[Scope]:
        """Scopes that have at least one entitlement with a recurring credit grant."""
        self._calls.append(("list_scopes_with_recurring_grants",))
        return [
            scope_from_ids(agency_id, sub_id)
            for (agency_id, sub_id), rows in sorted(
                self._rows.items(), key=lambda item: (item[0][0], item[0][1] or "")
            )
            if any(e.recurring_credit_grant and e.enabled for e in rows.values())
        ]
