"""Credits domain fakes."""

from meterline.domains.credits.fakes.ledger import FakeCreditLedger
from meterline.domains.credits.fakes.repository import FakeCreditRepository

__all__ = ["FakeCreditLedger", "FakeCreditRepository"]
