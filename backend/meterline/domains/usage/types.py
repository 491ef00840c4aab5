"""Usage domain types and pure business logic.

Window arithmetic, quantity rules and metric derivation used by the ledger,
the evaluator and their tests. No IO: everything here is deterministic.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

from dateutil.relativedelta import MO, relativedelta

from meterline.core.exceptions import InvalidRequestError
from meterline.schemas.entitlement import Entitlement, MeteringType, UsagePeriod
from meterline.schemas.usage import UsageEvent, UsageMetric, UsageWindow

# One whole period, used both to find the window end and to walk back in time.
_PERIOD_STEP: dict[UsagePeriod, relativedelta] = {
    UsagePeriod.DAILY: relativedelta(days=1),
    UsagePeriod.WEEKLY: relativedelta(weeks=1),
    UsagePeriod.MONTHLY: relativedelta(months=1),
    UsagePeriod.YEARLY: relativedelta(years=1),
}


def as_utc(moment: datetime) -> datetime:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _period_start(period: UsagePeriod, moment: datetime) -> datetime:
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == UsagePeriod.DAILY:
        return day
    if period == UsagePeriod.WEEKLY:
        # MO(-1) stays on the same day when it already is a Monday
        return day + relativedelta(weekday=MO(-1))
    if period == UsagePeriod.YEARLY:
        return day.replace(month=1, day=1)
    return day.replace(day=1)


def get_usage_window(
    period: UsagePeriod,
    as_of: Optional[datetime] = None,
    periods_back: int = 0,
) -> UsageWindow:
    """Calendar-aligned UTC window ``[start, end)`` containing ``as_of``.

    DAILY is the UTC day, WEEKLY the Monday-based week, MONTHLY the calendar
    month and YEARLY the calendar year. ``periods_back`` walks back that many
    whole periods.
    """
    if periods_back < 0:
        raise InvalidRequestError("periods_back cannot be negative")
    moment = as_utc(as_of or datetime.now(timezone.utc))
    step = _PERIOD_STEP[period]
    start = _period_start(period, moment) - step * periods_back
    return UsageWindow(period_start=start, period_end=start + step)


def resolve_recorded_quantity(entitlement: Entitlement, quantity: int) -> int:
    """Quantity a usage event is stored with.

    COUNT metering always stores 1. SUM metering stores the requested quantity,
    which must be positive. Features that are not metered cannot be recorded.
    """
    if entitlement.metering_type == MeteringType.NONE:
        raise InvalidRequestError(f"Feature '{entitlement.feature_key}' is not metered")
    if entitlement.metering_type == MeteringType.COUNT:
        return 1
    if quantity is None or quantity <= 0:
        raise InvalidRequestError("Quantity must be greater than 0")
    return int(quantity)


def aggregate_events(events: Iterable[UsageEvent], metering_type: MeteringType) -> int:
    """Reduce events to the scalar a limit is compared against."""
    if metering_type == MeteringType.NONE:
        return 0
    if metering_type == MeteringType.COUNT:
        return sum(1 for _ in events)
    return sum(event.quantity for event in events)


def build_usage_metric(
    entitlement: Entitlement, current: int, period: Optional[UsagePeriod] = None
) -> UsageMetric:
    """Derive the display metric for one feature.

    ``percentage`` is None for unlimited or zero limits; it is presentational
    only and never feeds an allow/deny decision.
    """
    if entitlement.is_unlimited or entitlement.limit is None:
        limit_value: object = "unlimited"
        percentage = None
        overage = 0
    else:
        limit_value = entitlement.limit
        percentage = round(current / entitlement.limit * 100, 2) if entitlement.limit else None
        overage = max(0, current - entitlement.limit)

    return UsageMetric(
        key=entitlement.feature_key,
        name=entitlement.title or entitlement.feature_key,
        description=entitlement.description,
        current=current,
        limit=limit_value,
        unit=entitlement.unit,
        period=period or entitlement.period,
        percentage=percentage,
        is_overage=overage > 0,
        overage_amount=overage,
    )
