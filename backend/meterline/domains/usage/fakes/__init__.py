"""Fake implementations for usage domain testing."""

from meterline.domains.usage.fakes.ledger import FakeUsageLedger
from meterline.domains.usage.fakes.repository import FakeUsageEventRepository

__all__ = ["FakeUsageEventRepository", "FakeUsageLedger"]
