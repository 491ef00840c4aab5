"""Fake database plumbing for testing."""

from meterline.db.fakes.session import FakeSession, FakeSessionFactory

__all__ = ["FakeSession", "FakeSessionFactory"]
