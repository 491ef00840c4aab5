"""Fake implementations for idempotency domain testing."""

from meterline.domains.idempotency.fakes.repository import FakeIdempotencyRepository

__all__ = ["FakeIdempotencyRepository"]
