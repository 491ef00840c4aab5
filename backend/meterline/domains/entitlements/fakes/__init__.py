"""Fake implementations for entitlements domain testing."""

from meterline.domains.entitlements.fakes.evaluator import FakeEntitlementEvaluator
from meterline.domains.entitlements.fakes.repository import FakeEntitlementRepository

__all__ = ["FakeEntitlementEvaluator", "FakeEntitlementRepository"]
