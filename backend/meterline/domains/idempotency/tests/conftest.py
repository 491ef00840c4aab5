"""Idempotency domain test fixtures and helpers."""

from typing import Optional

import pytest

from meterline.db.fakes import FakeSessionFactory
from meterline.domains.idempotency.fakes.repository import FakeIdempotencyRepository
from meterline.domains.idempotency.guard import IdempotencyGuard
from meterline.schemas.scope import AgencyScope

AGENCY_SCOPE = AgencyScope(agency_id="agency-1")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_guard(
    *,
    repo: Optional[FakeIdempotencyRepository] = None,
    max_attempts: int = 3,
) -> tuple[IdempotencyGuard, FakeIdempotencyRepository, FakeSessionFactory]:
    """Build an IdempotencyGuard wired to fakes. Returns (guard, repo, sessions)."""
    repo = repo or FakeIdempotencyRepository()
    sessions = FakeSessionFactory(repo)
    guard = IdempotencyGuard(
        repo=repo,
        session_factory=sessions,
        max_attempts=max_attempts,
        retry_wait_seconds=0,
    )
    return guard, repo, sessions


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def scope():
    return AGENCY_SCOPE
