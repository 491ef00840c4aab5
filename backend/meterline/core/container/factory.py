"""Container Factory.

All construction logic lives here. The factory reads settings and builds the
container; broken wiring fails at startup, not on the first request.
"""

from meterline.core.config import Settings
from meterline.core.container.container import Container
from meterline.core.logging import logger
from meterline.db.session import SessionFactory, get_db_context
from meterline.domains.aggregation.service import AggregationService
from meterline.domains.credits.grants import RecurringCreditGranter
from meterline.domains.credits.ledger import CreditLedger
from meterline.domains.credits.repository import CreditRepository
from meterline.domains.credits.sweeper import CreditExpirySweeper
from meterline.domains.entitlements.evaluator import EntitlementEvaluator
from meterline.domains.entitlements.repository import EntitlementRepository
from meterline.domains.idempotency.guard import IdempotencyGuard
from meterline.domains.idempotency.repository import IdempotencyRepository
from meterline.domains.usage.ledger import UsageLedger
from meterline.domains.usage.repository import UsageEventRepository


def create_container(
    settings: Settings, session_factory: SessionFactory = get_db_context
) -> Container:
    """Build the container from settings.

    This is the single source of truth for dependency wiring.

    Args:
        settings: Application settings (from core/config)
        session_factory: Session source shared by every service

    Returns:
        Fully constructed Container ready for use
    """
    # -----------------------------------------------------------------
    # Repositories (direct SQL, no state of their own)
    # -----------------------------------------------------------------
    idempotency_repo = IdempotencyRepository()
    usage_repo = UsageEventRepository()
    entitlement_repo = EntitlementRepository()
    credit_repo = CreditRepository()

    # -----------------------------------------------------------------
    # Idempotency guard, shared by every mutating operation
    # -----------------------------------------------------------------
    guard = IdempotencyGuard(
        repo=idempotency_repo,
        session_factory=session_factory,
        max_attempts=settings.LEDGER_TX_MAX_ATTEMPTS,
        retry_wait_seconds=settings.LEDGER_TX_RETRY_WAIT_SECONDS,
    )

    # -----------------------------------------------------------------
    # Ledgers
    # -----------------------------------------------------------------
    usage_ledger = UsageLedger(
        usage_repo=usage_repo,
        entitlement_repo=entitlement_repo,
        guard=guard,
        session_factory=session_factory,
    )
    credit_ledger = CreditLedger(
        credit_repo=credit_repo,
        guard=guard,
        session_factory=session_factory,
        allow_negative_balance=settings.LEDGER_ALLOW_NEGATIVE_BALANCE,
        default_currency=settings.CREDIT_DEFAULT_CURRENCY,
        history_max_limit=settings.CREDIT_HISTORY_MAX_LIMIT,
        max_attempts=settings.LEDGER_TX_MAX_ATTEMPTS,
        retry_wait_seconds=settings.LEDGER_TX_RETRY_WAIT_SECONDS,
    )

    # -----------------------------------------------------------------
    # Evaluation and the scope-level facade
    # -----------------------------------------------------------------
    evaluator = EntitlementEvaluator(
        entitlement_repo=entitlement_repo,
        usage_ledger=usage_ledger,
        credit_ledger=credit_ledger,
        session_factory=session_factory,
    )
    aggregation_service = AggregationService(
        usage_ledger=usage_ledger,
        usage_repo=usage_repo,
        evaluator=evaluator,
        entitlement_repo=entitlement_repo,
        credit_ledger=credit_ledger,
        guard=guard,
        session_factory=session_factory,
        rollup_policy=settings.USAGE_ROLLUP_POLICY,
    )

    # -----------------------------------------------------------------
    # Scheduled jobs
    # -----------------------------------------------------------------
    expiry_sweeper = CreditExpirySweeper(
        credit_repo=credit_repo,
        credit_ledger=credit_ledger,
        session_factory=session_factory,
    )
    credit_granter = RecurringCreditGranter(
        entitlement_repo=entitlement_repo,
        credit_ledger=credit_ledger,
        session_factory=session_factory,
    )

    logger.info(
        f"Container built (rollup={settings.USAGE_ROLLUP_POLICY.value}, "
        f"allow_negative_balance={settings.LEDGER_ALLOW_NEGATIVE_BALANCE})"
    )
    return Container(
        idempotency_repo=idempotency_repo,
        usage_repo=usage_repo,
        entitlement_repo=entitlement_repo,
        credit_repo=credit_repo,
        idempotency_guard=guard,
        usage_ledger=usage_ledger,
        credit_ledger=credit_ledger,
        entitlement_evaluator=evaluator,
        aggregation_service=aggregation_service,
        expiry_sweeper=expiry_sweeper,
        credit_granter=credit_granter,
    )
