"""Settable clock for testing."""

from datetime import datetime, timedelta


class FakeClock:
    """Callable clock shared by every service under test.

    Usage:
        clock = FakeClock(datetime(2026, 3, 15, tzinfo=timezone.utc))
        ledger = CreditLedger(..., clock=clock)
        clock.advance(days=2)
    """

    def __init__(self, now: datetime) -> None:
        """Start the clock at ``now``."""
        self.now = now

    def __call__(self) -> datetime:
        """Return the current fake time."""
        return self.now

    def advance(self, **kwargs) -> None:
        """Move forward by ``timedelta(**kwargs)``."""
        self.now += timedelta(**kwargs)
