"""API test fixtures.

Provides an async HTTP client wired to the FastAPI app with the DI container
overridden. Available to all colocated API tests under api/.

Pattern:
    1. Override get_container -> returns test_container (real services on fakes)
    2. Identity headers select the scope, as the upstream auth layer would
    3. Test hits the endpoint, asserts on HTTP response + fake state
"""

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from meterline.api.deps import get_container

TEST_AGENCY_ID = "agency-1"
TEST_SUB_ACCOUNT_ID = "sub-1"


@pytest_asyncio.fixture
async def client(test_container):
    """Async HTTP client acting for the test agency."""
    from meterline.main import app

    app.dependency_overrides[get_container] = lambda: test_container

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test/v1",
        headers={"X-Agency-ID": TEST_AGENCY_ID},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
