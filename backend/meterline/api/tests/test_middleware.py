"""Unit tests for exception handlers in middleware.py.

Calls handlers directly to cover mappings that no endpoint test triggers.
"""

import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from meterline.api.middleware import (
    conflict_exception_handler,
    insufficient_balance_exception_handler,
    meterline_exception_handler,
    not_found_exception_handler,
    storage_failure_exception_handler,
    usage_limit_exceeded_exception_handler,
)
from meterline.core.exceptions import (
    ConflictException,
    MeterlineException,
    NotFoundException,
    StorageFailureError,
)
from meterline.domains.credits.exceptions import InsufficientBalanceError
from meterline.domains.idempotency.exceptions import IdempotencyInFlightError
from meterline.domains.usage.exceptions import UsageLimitExceededError
from meterline.schemas.entitlement import EntitlementCheck


@pytest.mark.asyncio
async def test_conflict_returns_409_with_retry_after():
    response = await conflict_exception_handler(
        MagicMock(), ConflictException("busy", retry_after=2.5)
    )
    assert response.status_code == 409
    assert response.headers["Retry-After"] == "3"


@pytest.mark.asyncio
async def test_sub_second_retry_after_rounds_up_to_one():
    response = await conflict_exception_handler(
        MagicMock(), IdempotencyInFlightError("usage.consume", "req-1")
    )
    assert response.status_code == 409
    assert int(response.headers["Retry-After"]) >= 1


@pytest.mark.asyncio
async def test_insufficient_balance_returns_402():
    exc = InsufficientBalanceError("exports", Decimal("25"), Decimal("10"))
    response = await insufficient_balance_exception_handler(MagicMock(), exc)
    assert response.status_code == 402
    body = json.loads(response.body)
    assert body["requested"] == "25"
    assert body["available"] == "10"


@pytest.mark.asyncio
async def test_usage_limit_exceeded_carries_the_check():
    check = EntitlementCheck(
        allowed=False, reason="over_limit", current_usage=10, limit=10, remaining=0
    )
    response = await usage_limit_exceeded_exception_handler(
        MagicMock(), UsageLimitExceededError("exports", check)
    )
    assert response.status_code == 429
    body = json.loads(response.body)
    assert body["check"]["reason"] == "over_limit"
    assert "10/10" in body["detail"]


@pytest.mark.asyncio
async def test_not_found_returns_404():
    response = await not_found_exception_handler(MagicMock(), NotFoundException("gone"))
    assert response.status_code == 404
    assert b"gone" in response.body


@pytest.mark.asyncio
async def test_storage_failure_returns_503():
    response = await storage_failure_exception_handler(
        MagicMock(), StorageFailureError("aborted")
    )
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_unmapped_meterline_exception_returns_500():
    response = await meterline_exception_handler(MagicMock(), MeterlineException("unexpected"))
    assert response.status_code == 500
    assert b"unexpected" in response.body
