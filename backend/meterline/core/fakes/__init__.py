"""Fake implementations for core services."""

from meterline.core.fakes.clock import FakeClock

__all__ = ["FakeClock"]
