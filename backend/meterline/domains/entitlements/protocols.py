"""Entitlements domain protocols."""

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from meterline.schemas.entitlement import Entitlement, EntitlementCheck
from meterline.schemas.scope import Scope


@runtime_checkable
class EntitlementRepositoryProtocol(Protocol):
    """Read-only access to the plan-configuration store.

    Lookups are by the scope's tenant. A sub-account scope sees its own
    override row when one exists and the agency row otherwise.
    """

    async def get(
        self, db: AsyncSession, *, scope: Scope, feature_key: str
    ) -> Optional[Entitlement]:
        """Effective entitlement for one feature, or None."""
        ...

    async def list_for_scope(self, db: AsyncSession, *, scope: Scope) -> dict[str, Entitlement]:
        """Every effective entitlement for the scope, keyed by feature."""
        ...

    async def list_scopes_with_recurring_grants(self, db: AsyncSession) -> list[Scope]:
        """Scopes that have at least one entitlement with a recurring credit grant."""
        ...


@runtime_checkable
class EntitlementEvaluatorProtocol(Protocol):
    """Decides whether an action is allowed. Never writes."""

    async def check(
        self,
        scope: Scope,
        feature_key: str,
        quantity: int = 1,
        as_of: Optional[datetime] = None,
        include_sub_accounts: bool = False,
    ) -> EntitlementCheck:
        """Evaluate ``quantity`` units of ``feature_key`` for ``scope``."""
        ...

    async def evaluate(
        self,
        scope: Scope,
        entitlement: Optional[Entitlement],
        quantity: int = 1,
        as_of: Optional[datetime] = None,
        include_sub_accounts: bool = False,
        db: Optional[AsyncSession] = None,
    ) -> EntitlementCheck:
        """Same as ``check`` for an entitlement the caller already loaded."""
        ...
