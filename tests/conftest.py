from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from profile_harvest.main import app
from profile_harvest.services.admission import AdmissionGate
from profile_harvest.services.engine import EngineManager
from profile_harvest.services.scraper import get_scraper
from tests.fakes import FakePlaywrightFactory, make_settings


class StubScraper:
    """API-level stand-in for UserScraper."""

    def __init__(self):
        self.engine = EngineManager(make_settings(), playwright_factory=FakePlaywrightFactory())
        self.gate = AdmissionGate(3, strict=True)
        self.search = AsyncMock(return_value=[])
        self.search_batch = AsyncMock(return_value=[])
        self.fetch_profile = AsyncMock(return_value=None)


@pytest.fixture
def test_settings():
    return make_settings()


@pytest.fixture
def stub_scraper() -> StubScraper:
    return StubScraper()


@pytest_asyncio.fixture
async def client(stub_scraper):
    app.dependency_overrides[get_scraper] = lambda: stub_scraper
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
