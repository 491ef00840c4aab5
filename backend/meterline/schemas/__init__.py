"""Schemas for the application."""

from .credit import (
    AggregatedCreditBalance,
    CreditBalance,
    CreditGrantResult,
    CreditSweepResult,
    CreditTransaction,
    CreditTransactionRequest,
    CreditTransactionType,
    CreditTransfer,
    CreditTransferRequest,
)
from .entitlement import (
    Entitlement,
    EntitlementCheck,
    EntitlementCheckRequest,
    EntitlementsResponse,
    LimitEnforcement,
    MeteringType,
    OverageMode,
    UsagePeriod,
)
from .scope import (
    AgencyScope,
    Scope,
    ScopeKind,
    SubAccountScope,
    parse_scope,
    same_tenant,
    scope_from_ids,
)
from .usage import (
    ConsumeResult,
    RecordUsageRequest,
    UsageEvent,
    UsageMetric,
    UsageSummary,
    UsageWindow,
)
