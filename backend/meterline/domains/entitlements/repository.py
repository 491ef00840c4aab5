"""Entitlement repository backed by the plan-configuration table."""

from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from meterline.domains.entitlements.protocols import EntitlementRepositoryProtocol
from meterline.models.entitlement import Entitlement as EntitlementModel
from meterline.schemas.entitlement import Entitlement
from meterline.schemas.scope import Scope, scope_from_ids


def _rows_for_scope(scope: Scope):
    """Agency rows, plus the sub-account's override rows when scoped to one."""
    agency_rows = EntitlementModel.sub_account_id.is_(None)
    if scope.sub_account_id:
        sub_rows = EntitlementModel.sub_account_id == scope.sub_account_id
        return and_(EntitlementModel.agency_id == scope.agency_id, or_(agency_rows, sub_rows))
    return and_(EntitlementModel.agency_id == scope.agency_id, agency_rows)


def _effective(rows: list[EntitlementModel]) -> dict[str, Entitlement]:
    """Collapse agency and override rows; the override wins per feature."""
    effective: dict[str, Entitlement] = {}
    # Agency rows first so sub-account rows overwrite them.
    for row in sorted(rows, key=lambda r: r.sub_account_id is not None):
        effective[row.feature_key] = Entitlement.model_validate(row)
    return effective


class EntitlementRepository(EntitlementRepositoryProtocol):
    """Reads effective entitlements via direct queries."""

    async def get(
        self, db: AsyncSession, *, scope: Scope, feature_key: str
    ) -> Optional[Entitlement]:
        """Effective entitlement for one feature, or None."""
        query = select(EntitlementModel).where(
            _rows_for_scope(scope), EntitlementModel.feature_key == feature_key
        )
        result = await db.execute(query)
        return _effective(list(result.scalars().all())).get(feature_key)

    async def list_for_scope(self, db: AsyncSession, *, scope: Scope) -> dict[str, Entitlement]:
        """Every effective entitlement for the scope, keyed by feature."""
        result = await db.execute(select(EntitlementModel).where(_rows_for_scope(scope)))
        return _effective(list(result.scalars().all()))

    async def list_scopes_with_recurring_grants(self, db: AsyncSession) -> list[Scope]:
        """Scopes that have at least one entitlement with a recurring credit grant."""
        query = (
            select(EntitlementModel.agency_id, EntitlementModel.sub_account_id)
            .where(
                EntitlementModel.recurring_credit_grant.is_not(None),
                EntitlementModel.enabled.is_(True),
            )
            .distinct()
            .order_by(EntitlementModel.agency_id, EntitlementModel.sub_account_id)
        )
        result = await db.execute(query)
        return [scope_from_ids(agency_id, sub_id) for agency_id, sub_id in result.all()]
